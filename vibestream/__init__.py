"""vibestream: short-form video ingestion pipeline + feed API."""

__version__ = "0.1.0"
