"""Multi-account relay for the MANUS conversational task API."""

__version__ = "0.1.0"
