"""Command line interface for media-ingest."""
