"""Core configuration, errors, storage and ownership helpers."""
