"""Command-line interface for the meeting job engine."""
