from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol

from .errors import ConstraintViolation
from .session import DriverLaps, WeatherCondition, require_text

logger = logging.getLogger(__name__)

SINGLE_TICK_INTERVAL = 0.05
BOARD_TICK_INTERVAL = 0.01
BOARD_SLOTS = 4
DEFAULT_BOARD_SESSION_NAME = "Practice Session"


class Ticker(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TickerFactory = Callable[[float, Callable[[], None]], Ticker]


class RepeatingTicker:
    """Calls ``callback`` every ``interval`` seconds on a daemon thread until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self.callback = callback
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name="stopwatch-tick", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._stopped.set()

    def _run(self) -> None:
        while not self._stopped.wait(self.interval):
            self.callback()


class Stopwatch:
    """Elapsed-time counter advanced by a periodic tick, with a lap list.

    Elapsed time is an integer tick count times the interval, so repeated
    ticks do not accumulate float error.
    """

    def __init__(self, tick_interval: float = SINGLE_TICK_INTERVAL, ticker_factory: TickerFactory | None = None) -> None:
        if tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        self.tick_interval = tick_interval
        self._ticker_factory: TickerFactory = ticker_factory or RepeatingTicker
        self._ticker: Optional[Ticker] = None
        self._ticks = 0
        self._laps: List[float] = []
        self._running = False
        self._lock = threading.RLock()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def elapsed(self) -> float:
        return round(self._ticks * self.tick_interval, 6)

    @property
    def laps(self) -> List[float]:
        with self._lock:
            return list(self._laps)

    @property
    def last_lap(self) -> Optional[float]:
        with self._lock:
            return self._laps[-1] if self._laps else None

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._ticker = self._ticker_factory(self.tick_interval, self.tick)
            self._ticker.start()

    def tick(self) -> None:
        with self._lock:
            if self._running:
                self._ticks += 1

    def lap(self) -> Optional[float]:
        """Record the current elapsed time as a lap and restart the count.

        Ignored when the stopwatch is not running.
        """

        with self._lock:
            if not self._running:
                return None
            lap_time = self.elapsed
            self._laps.append(lap_time)
            self._ticks = 0
            return lap_time

    def stop(self) -> None:
        with self._lock:
            self._running = False
            if self._ticker is not None:
                self._ticker.cancel()
                self._ticker = None

    def reset(self) -> None:
        with self._lock:
            self.stop()
            self._ticks = 0
            self._laps = []


class TimingSession:
    """Single-driver timing run: one stopwatch plus the metadata it is saved with."""

    def __init__(self, ticker_factory: TickerFactory | None = None, tick_interval: float = SINGLE_TICK_INTERVAL) -> None:
        self.stopwatch = Stopwatch(tick_interval=tick_interval, ticker_factory=ticker_factory)
        self.session_name = ""
        self.driver_name: Optional[str] = None
        self.kart_number = ""
        self.weather = WeatherCondition.DRY
        self._lock = threading.RLock()

    @property
    def has_driver(self) -> bool:
        return bool(self.driver_name)

    def configure(
        self,
        session_name: str | None = None,
        driver_name: str | None = None,
        kart_number: str | None = None,
        weather: WeatherCondition | int | str | None = None,
    ) -> None:
        with self._lock:
            if weather is not None:
                weather = WeatherCondition.parse(weather)
            if session_name is not None:
                self.session_name = session_name
            if driver_name is not None:
                self.driver_name = driver_name.strip() or None
                self.kart_number = (kart_number or "").strip()
            elif kart_number is not None:
                self.kart_number = kart_number.strip()
            if weather is not None:
                self.weather = weather

    def start_timer(self) -> None:
        with self._lock:
            require_text(self.session_name, "Session name")
            if not self.has_driver:
                raise ConstraintViolation("Select a driver before starting the timer")
            self.stopwatch.start()

    def record_lap(self) -> Optional[float]:
        with self._lock:
            return self.stopwatch.lap()

    def stop_timer(self) -> None:
        with self._lock:
            self.stopwatch.stop()

    def reset(self) -> None:
        with self._lock:
            self.stopwatch.reset()
            self.session_name = ""
            self.driver_name = None
            self.kart_number = ""
            self.weather = WeatherCondition.DRY

    def save(self, store) -> int:
        """Persist the run through ``store`` and clear it for the next one."""

        with self._lock:
            session_id = store.create_session(
                session_name=self.session_name,
                driver_name=self.driver_name or "",
                kart_number=self.kart_number,
                weather=self.weather,
                lap_times=self.stopwatch.laps,
            )
            self.reset()
            return session_id

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "sessionName": self.session_name,
                "driverName": self.driver_name,
                "kartNumber": self.kart_number,
                "weather": self.weather.label.lower(),
                "isRunning": self.stopwatch.is_running,
                "elapsed": self.stopwatch.elapsed,
                "laps": self.stopwatch.laps,
            }


@dataclass
class BoardSlot:
    slot: int
    name: str
    stopwatch: Stopwatch
    kart_number: str = ""

    @property
    def has_laps(self) -> bool:
        return bool(self.stopwatch.laps)


class TimingBoard:
    """Four independent kart stopwatches timed side by side."""

    def __init__(self, ticker_factory: TickerFactory | None = None, tick_interval: float = BOARD_TICK_INTERVAL) -> None:
        self._ticker_factory = ticker_factory
        self._tick_interval = tick_interval
        # Guards slot replacement in stop_all against concurrent toggles.
        self._lock = threading.RLock()
        self.slots: List[BoardSlot] = []
        self._build_slots()

    def _build_slots(self) -> None:
        self.slots = [
            BoardSlot(
                slot=number,
                name=f"Kart {number}",
                stopwatch=Stopwatch(tick_interval=self._tick_interval, ticker_factory=self._ticker_factory),
            )
            for number in range(1, BOARD_SLOTS + 1)
        ]

    def slot(self, number: int) -> BoardSlot:
        if not 1 <= number <= BOARD_SLOTS:
            raise ConstraintViolation(f"slot must be between 1 and {BOARD_SLOTS}")
        with self._lock:
            return self.slots[number - 1]

    def configure(self, number: int, name: str | None = None, kart_number: str | None = None) -> BoardSlot:
        with self._lock:
            slot = self.slot(number)
            if name is not None:
                slot.name = require_text(name, "Driver name")
            if kart_number is not None:
                slot.kart_number = kart_number.strip()
            return slot

    def toggle(self, number: int) -> bool:
        """Start the slot if stopped, stop it if running. Returns the new running state."""

        with self._lock:
            stopwatch = self.slot(number).stopwatch
            if stopwatch.is_running:
                stopwatch.stop()
            else:
                stopwatch.start()
            return stopwatch.is_running

    def lap(self, number: int) -> Optional[float]:
        with self._lock:
            return self.slot(number).stopwatch.lap()

    def stop_all(self) -> None:
        """Cancel every tick and discard all board state without saving."""

        with self._lock:
            for slot in self.slots:
                slot.stopwatch.stop()
            self._build_slots()

    def save(self, store, session_name: str = DEFAULT_BOARD_SESSION_NAME) -> Optional[int]:
        """Persist slots that recorded laps, then reset the board.

        Returns ``None`` without touching the store or the board when no
        slot has laps.
        """

        with self._lock:
            drivers = [
                DriverLaps(driver_name=slot.name, kart_number=slot.kart_number, lap_times=slot.stopwatch.laps)
                for slot in self.slots
                if slot.has_laps
            ]
            if not drivers:
                logger.debug("Board save skipped: no slot recorded a lap")
                return None

            session_id = store.create_multiple_session(session_name=session_name, drivers=drivers)
            self.stop_all()
            return session_id

    def snapshot(self) -> List[Dict[str, object]]:
        with self._lock:
            return [
                {
                    "slot": slot.slot,
                    "name": slot.name,
                    "kartNumber": slot.kart_number,
                    "isRunning": slot.stopwatch.is_running,
                    "elapsed": slot.stopwatch.elapsed,
                    "laps": slot.stopwatch.laps,
                }
                for slot in self.slots
            ]
