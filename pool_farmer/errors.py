"""Engine exception types."""


class PoolSourceError(RuntimeError):
    """Pool data could not be fetched (timeout, connection error, non-2xx, bad payload)."""


class StorageError(RuntimeError):
    """A read or write against the persistence backend failed."""


class StorageConnectionError(StorageError):
    """The persistence backend could not be opened."""
