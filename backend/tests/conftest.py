from __future__ import annotations

from typing import Callable, List

import pytest

from kart_core import SessionStore


class ManualTicker:
    """Ticker stand-in: never fires on its own, tests call ``fire``."""

    created: List["ManualTicker"] = []

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False
        ManualTicker.created.append(self)

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self, times: int = 1) -> None:
        for _ in range(times):
            self.callback()


@pytest.fixture
def manual_ticker():
    ManualTicker.created = []
    return ManualTicker


@pytest.fixture
def store(tmp_path):
    with SessionStore(db_path=tmp_path / "karttimer.db") as session_store:
        yield session_store
