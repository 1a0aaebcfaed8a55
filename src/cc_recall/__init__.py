"""cc-recall: search and rank Claude Code session history."""

__version__ = "0.1.0"
