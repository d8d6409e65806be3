"""Personal Video Library: semantic search and topic discovery for a video collection."""

__version__ = "0.1.0"
