"""Settings for attachment-purge."""
