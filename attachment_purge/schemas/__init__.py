"""Pydantic schemas for records, backups and purge results."""
