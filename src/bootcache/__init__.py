"""Boot-time cache priming and resume refresh for the social client."""

__version__ = "0.1.0"
