"""Render job state, persistence and submission."""
