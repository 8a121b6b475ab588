from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import StorageUnavailable, WriteFailed
from .session import require_text


logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"
DRIVERS_KEY = "savedDrivers"
MAX_DRIVERS = 10


@dataclass
class Driver:
    """A reusable driver profile. ``id`` never changes once assigned."""

    id: str
    name: str
    kart_number: str = ""

    @classmethod
    def create(cls, name: str, kart_number: str) -> "Driver":
        return cls(id=str(uuid.uuid4()).upper(), name=name, kart_number=kart_number)

    def to_record(self) -> Dict[str, str]:
        return {"id": self.id, "name": self.name, "kartNumber": self.kart_number}


class DriverRoster:
    """Driver profiles kept as a JSON array under one key of a key-value file."""

    def __init__(self, data_dir: Path | None = None, path: Path | None = None) -> None:
        self.data_dir = data_dir or Path(os.getenv("KARTTIMER_DATA_DIR") or DEFAULT_DATA_DIR)
        self.path = path or (self.data_dir / os.getenv("KARTTIMER_DRIVERS_FILE", "drivers.json"))
        self._lock = threading.RLock()
        self._drivers: List[Driver] = []
        self.load()

    def load(self) -> List[Driver]:
        """(Re)read the profile list from disk.

        A missing or undecodable entry leaves the roster empty rather than failing.
        """
        with self._lock:
            values = self._read_values()
            raw = values.get(DRIVERS_KEY, [])
            drivers: List[Driver] = []
            if isinstance(raw, list):
                for item in raw:
                    if not isinstance(item, dict) or not item.get("id"):
                        logger.warning("Skipping malformed driver profile in %s: %r", self.path, item)
                        continue
                    drivers.append(
                        Driver(
                            id=str(item["id"]),
                            name=str(item.get("name") or ""),
                            kart_number=str(item.get("kartNumber") or ""),
                        )
                    )
            else:
                logger.warning("Ignoring %s in %s: expected a list, got %s", DRIVERS_KEY, self.path, type(raw))
            self._drivers = drivers
            return list(self._drivers)

    def list_drivers(self) -> List[Driver]:
        with self._lock:
            return list(self._drivers)

    def get_driver(self, driver_id: str) -> Optional[Driver]:
        with self._lock:
            return next((driver for driver in self._drivers if driver.id == driver_id), None)

    def can_add_driver(self) -> bool:
        return len(self._drivers) < MAX_DRIVERS

    def add_driver(self, name: str, kart_number: str = "") -> Optional[Driver]:
        """Append a profile. Returns ``None`` when the roster is already full."""

        name = require_text(name, "Driver name")
        with self._lock:
            if not self.can_add_driver():
                logger.info("Driver roster full (%d); ignoring add for %s", MAX_DRIVERS, name)
                return None
            driver = Driver.create(name, (kart_number or "").strip())
            self._save([*self._drivers, driver])
            logger.info("Added driver %s (%s)", driver.id, driver.name)
            return driver

    def update_driver(self, driver_id: str, name: str, kart_number: str = "") -> Optional[Driver]:
        name = require_text(name, "Driver name")
        with self._lock:
            updated: Optional[Driver] = None
            drivers: List[Driver] = []
            for driver in self._drivers:
                if driver.id == driver_id:
                    updated = Driver(id=driver.id, name=name, kart_number=(kart_number or "").strip())
                    drivers.append(updated)
                else:
                    drivers.append(driver)
            if updated is None:
                return None
            self._save(drivers)
            return updated

    def delete_driver(self, driver_id: str) -> bool:
        with self._lock:
            drivers = [driver for driver in self._drivers if driver.id != driver_id]
            if len(drivers) == len(self._drivers):
                return False
            self._save(drivers)
            logger.info("Deleted driver %s", driver_id)
            return True

    def _save(self, drivers: List[Driver]) -> None:
        values = self._read_values()
        values[DRIVERS_KEY] = [driver.to_record() for driver in drivers]
        self._write_values(values)
        # Only swap in-memory state after the write succeeded.
        self._drivers = drivers

    def _read_values(self) -> Dict[str, Any]:
        try:
            if not self.path.exists():
                return {}
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError as exc:
            logger.warning("Falling back to empty profiles for %s due to decode error: %s", self.path, exc)
            return {}
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read driver profiles {self.path}") from exc
        if not isinstance(data, dict):
            logger.warning("Falling back to empty profiles for %s: expected an object", self.path)
            return {}
        return data

    def _write_values(self, values: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("w", encoding="utf-8") as handle:
                json.dump(values, handle, indent=2, sort_keys=True)
        except OSError as exc:
            logger.exception("Failed to write driver profiles to %s", self.path)
            raise WriteFailed(f"Failed to write driver profiles {self.path}") from exc
