"""Batched, resumable directory backups to object storage."""

__version__ = "0.1.0"
