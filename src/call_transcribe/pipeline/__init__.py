"""Per-run orchestration of the recording pipeline."""
