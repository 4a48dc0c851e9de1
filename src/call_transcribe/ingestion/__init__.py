"""Discovery of recent recordings on the remote store."""
