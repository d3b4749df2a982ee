"""lifestory - AI-written biographies from a person's digital activity."""

__version__ = "0.1.0"
