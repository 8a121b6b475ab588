from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, List, Optional, Sequence, TypeVar

from .errors import ConstraintViolation


class WeatherCondition(IntEnum):
    """Track conditions recorded with a single-driver session.

    Stored in the ``sessions.isWet`` column as its integer value.
    """

    DRY = 0
    WET = 1
    GREASY = 2

    @property
    def label(self) -> str:
        return self.name

    @classmethod
    def from_code(cls, code: int | None) -> "WeatherCondition":
        # Unknown codes display as dry, matching rows written by older builds.
        try:
            return cls(int(code or 0))
        except ValueError:
            return cls.DRY

    @classmethod
    def parse(cls, value: "WeatherCondition | int | str") -> "WeatherCondition":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls[key]
            raise ConstraintViolation(f"unknown weather condition '{value}'")
        try:
            return cls(int(value))
        except (TypeError, ValueError) as exc:
            raise ConstraintViolation(f"unknown weather condition '{value}'") from exc


@dataclass(frozen=True)
class Lap:
    id: int
    lap_time: float  # seconds
    lap_number: int  # 1-based, recording order


@dataclass(frozen=True)
class MultipleLap:
    id: int
    lap_time: float
    lap_number: int


LapT = TypeVar("LapT", Lap, MultipleLap)


def fastest_lap(laps: Sequence[LapT]) -> Optional[LapT]:
    """Return the lap with the lowest time, the first one found on a tie."""

    best: Optional[LapT] = None
    for lap in laps:
        if best is None or lap.lap_time < best.lap_time:
            best = lap
    return best


def is_fastest_lap(lap: Lap | MultipleLap, laps: Sequence[Lap | MultipleLap]) -> bool:
    """Compare by value, so every lap equal to the best time counts as fastest."""

    best = fastest_lap(laps)
    return best is not None and lap.lap_time == best.lap_time


def validate_lap_times(lap_times: Iterable[float]) -> List[float]:
    values: List[float] = []
    for index, raw in enumerate(lap_times, start=1):
        try:
            value = float(raw)
        except (TypeError, ValueError) as exc:
            raise ConstraintViolation(f"lap {index} has a non-numeric time '{raw}'") from exc
        if not math.isfinite(value) or value < 0:
            raise ConstraintViolation(f"lap {index} has an invalid time {raw!r}")
        values.append(value)
    return values


def require_text(value: str | None, label: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ConstraintViolation(f"{label} is required")
    return cleaned


class _LapSummary:
    laps: List

    @property
    def lap_count(self) -> int:
        return len(self.laps)

    @property
    def best_lap(self):
        return fastest_lap(self.laps)

    @property
    def best_lap_time(self) -> Optional[float]:
        best = self.best_lap
        return best.lap_time if best is not None else None


@dataclass
class Session(_LapSummary):
    """A completed single-driver timing run.

    ``created_at`` is the raw SQLite ``CURRENT_TIMESTAMP`` text
    (``YYYY-MM-DD HH:MM:SS``, UTC).
    """

    id: int
    session_name: str
    driver_name: str
    kart_number: str
    weather: WeatherCondition
    created_at: str
    laps: List[Lap] = field(default_factory=list)


@dataclass
class MultipleDriverEntry(_LapSummary):
    id: int
    driver_name: str
    kart_number: str
    laps: List[MultipleLap] = field(default_factory=list)


@dataclass
class MultipleSession:
    """A completed run covering up to four karts timed side by side."""

    id: int
    session_name: str
    created_at: str
    drivers: List[MultipleDriverEntry] = field(default_factory=list)

    @property
    def driver_count(self) -> int:
        return len(self.drivers)


@dataclass
class DriverLaps:
    """Lap times for one kart, as handed to the store when saving a board."""

    driver_name: str
    kart_number: str
    lap_times: List[float] = field(default_factory=list)
