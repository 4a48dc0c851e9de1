"""Adapters for the external collaborators called by the pipeline stages."""
