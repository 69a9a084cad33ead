"""Resumable, content-addressed chunked upload service"""

__version__ = "1.0.0"
