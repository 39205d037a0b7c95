"""Command-line interface for attachment-purge."""
