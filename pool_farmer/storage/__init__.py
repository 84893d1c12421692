"""Persistence backends."""
from .sqlite import SQLiteStorage

__all__ = ["SQLiteStorage"]
