"""Kart lap-timing core: stopwatches, session storage and driver profiles."""

from .drivers import Driver, DriverRoster
from .errors import (
    ConstraintViolation,
    KartTimerError,
    RecordNotFound,
    StorageError,
    StorageUnavailable,
    WriteFailed,
)
from .formatting import format_created_at, format_duration
from .session import (
    DriverLaps,
    Lap,
    MultipleDriverEntry,
    MultipleLap,
    MultipleSession,
    Session,
    WeatherCondition,
    fastest_lap,
    is_fastest_lap,
)
from .stopwatch import Stopwatch, TimingBoard, TimingSession
from .store import SessionStore

__all__ = [
    "ConstraintViolation",
    "Driver",
    "DriverLaps",
    "DriverRoster",
    "KartTimerError",
    "Lap",
    "MultipleDriverEntry",
    "MultipleLap",
    "MultipleSession",
    "RecordNotFound",
    "Session",
    "SessionStore",
    "Stopwatch",
    "StorageError",
    "StorageUnavailable",
    "TimingBoard",
    "TimingSession",
    "WeatherCondition",
    "WriteFailed",
    "fastest_lap",
    "format_created_at",
    "format_duration",
    "is_fastest_lap",
]
