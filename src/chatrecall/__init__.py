"""chatrecall - chat history import, deduplication and semantic retrieval."""

__version__ = "0.1.0"
