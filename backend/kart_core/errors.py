from __future__ import annotations


class KartTimerError(Exception):
    """Base class for errors raised by the timing core."""


class ConstraintViolation(KartTimerError, ValueError):
    """Input rejected before it reaches storage (empty names, bad lap times)."""


class RecordNotFound(KartTimerError, LookupError):
    pass


class StorageError(KartTimerError, RuntimeError):
    pass


class StorageUnavailable(StorageError):
    """The database or profile file could not be opened or initialised."""


class WriteFailed(StorageError):
    """A write did not complete. Safe to retry; nothing was committed."""
