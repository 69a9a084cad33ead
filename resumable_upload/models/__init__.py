"""Models module exports"""
from .database import HashIndexEntry

__all__ = ["HashIndexEntry"]
