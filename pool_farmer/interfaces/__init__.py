"""Protocol interfaces for the pool farming engine."""
from .notifier import Notifier
from .pool_source import PoolSource
from .storage import Storage

__all__ = ["Notifier", "PoolSource", "Storage"]
