"""Meeting Jobs - job scheduling and resource governance for meeting-transcript analysis."""

__version__ = "0.1.0"
