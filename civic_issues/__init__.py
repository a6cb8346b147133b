"""Civic issue reporting service: intake, triage workflow and statistics."""

__version__ = "1.0.0"
