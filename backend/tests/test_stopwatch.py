import threading
import time

import pytest

from kart_core import ConstraintViolation, Stopwatch, TimingBoard, TimingSession, WeatherCondition
from kart_core.stopwatch import BOARD_TICK_INTERVAL, BoardSlot, RepeatingTicker


def test_ticks_accumulate_only_while_running(manual_ticker) -> None:
    watch = Stopwatch(tick_interval=0.05, ticker_factory=manual_ticker)

    watch.tick()
    assert watch.elapsed == 0

    watch.start()
    ticker = manual_ticker.created[0]
    assert ticker.started
    ticker.fire(20)
    assert watch.elapsed == pytest.approx(1.0)

    watch.stop()
    assert ticker.cancelled
    ticker.fire(5)
    assert watch.elapsed == pytest.approx(1.0)


def test_lap_records_elapsed_and_restarts_count(manual_ticker) -> None:
    watch = Stopwatch(tick_interval=0.05, ticker_factory=manual_ticker)
    watch.start()
    ticker = manual_ticker.created[0]

    ticker.fire(624)
    assert watch.lap() == pytest.approx(31.2)
    assert watch.elapsed == 0

    ticker.fire(618)
    watch.lap()

    assert watch.laps == pytest.approx([31.2, 30.9])
    assert watch.last_lap == pytest.approx(30.9)


def test_lap_count_matches_calls_and_times_are_non_negative(manual_ticker) -> None:
    watch = Stopwatch(ticker_factory=manual_ticker)
    watch.start()
    ticker = manual_ticker.created[0]

    for ticks in [0, 3, 0, 7, 1, 0]:
        ticker.fire(ticks)
        watch.lap()

    assert len(watch.laps) == 6
    assert all(lap >= 0 for lap in watch.laps)


def test_lap_while_stopped_is_ignored(manual_ticker) -> None:
    watch = Stopwatch(ticker_factory=manual_ticker)

    assert watch.lap() is None
    assert watch.laps == []


def test_start_twice_keeps_single_ticker(manual_ticker) -> None:
    watch = Stopwatch(ticker_factory=manual_ticker)
    watch.start()
    watch.start()

    assert len(manual_ticker.created) == 1


def test_reset_clears_time_and_laps(manual_ticker) -> None:
    watch = Stopwatch(ticker_factory=manual_ticker)
    watch.start()
    manual_ticker.created[0].fire(10)
    watch.lap()
    manual_ticker.created[0].fire(4)

    watch.reset()

    assert not watch.is_running
    assert watch.elapsed == 0
    assert watch.laps == []


def test_timing_session_requires_name_and_driver(manual_ticker) -> None:
    timing = TimingSession(ticker_factory=manual_ticker)

    with pytest.raises(ConstraintViolation):
        timing.start_timer()

    timing.configure(session_name="Practice")
    with pytest.raises(ConstraintViolation):
        timing.start_timer()

    timing.configure(session_name="   ", driver_name="Alice", kart_number="7")
    with pytest.raises(ConstraintViolation):
        timing.start_timer()

    timing.configure(session_name="Practice")
    timing.start_timer()
    assert timing.stopwatch.is_running


def test_timing_session_save_persists_and_resets(manual_ticker, store) -> None:
    timing = TimingSession(ticker_factory=manual_ticker)
    timing.configure(session_name="Practice", driver_name="Alice", kart_number="7", weather="greasy")
    timing.start_timer()
    ticker = manual_ticker.created[0]
    for ticks in (624, 618, 630):
        ticker.fire(ticks)
        timing.record_lap()
    timing.stop_timer()

    session_id = timing.save(store)

    saved = store.get_session(session_id)
    assert saved.driver_name == "Alice"
    assert saved.weather is WeatherCondition.GREASY
    assert [lap.lap_time for lap in saved.laps] == pytest.approx([31.2, 30.9, 31.5])
    assert timing.session_name == ""
    assert timing.driver_name is None
    assert timing.stopwatch.laps == []


def test_board_slots_run_independently(manual_ticker) -> None:
    board = TimingBoard(ticker_factory=manual_ticker)

    assert [slot.name for slot in board.slots] == ["Kart 1", "Kart 2", "Kart 3", "Kart 4"]
    assert board.toggle(1) is True
    assert board.toggle(3) is True
    first, third = manual_ticker.created
    first.fire(100)
    third.fire(250)
    board.lap(1)
    board.lap(2)  # slot 2 never started

    assert board.slot(1).stopwatch.laps == pytest.approx([1.0])
    assert board.slot(2).stopwatch.laps == []
    assert board.slot(3).stopwatch.elapsed == pytest.approx(2.5)

    assert board.toggle(1) is False
    assert first.cancelled
    assert not third.cancelled


def test_board_rejects_unknown_slot(manual_ticker) -> None:
    board = TimingBoard(ticker_factory=manual_ticker)

    with pytest.raises(ConstraintViolation):
        board.toggle(5)


def test_board_stop_all_cancels_and_clears(manual_ticker) -> None:
    board = TimingBoard(ticker_factory=manual_ticker)
    board.configure(2, name="Bob", kart_number="12")
    for number in range(1, 5):
        board.toggle(number)
    for ticker in manual_ticker.created:
        ticker.fire(10)
    board.lap(2)

    board.stop_all()

    assert all(ticker.cancelled for ticker in manual_ticker.created)
    assert all(not slot.stopwatch.is_running for slot in board.slots)
    assert all(slot.stopwatch.laps == [] for slot in board.slots)
    assert board.slot(2).name == "Kart 2"


def test_board_save_keeps_only_slots_with_laps(manual_ticker, store) -> None:
    board = TimingBoard(ticker_factory=manual_ticker)
    board.configure(1, name="Alice", kart_number="7")
    board.configure(3, name="Cara", kart_number="3")
    board.toggle(1)
    board.toggle(3)
    board.toggle(4)
    first, third, _fourth = manual_ticker.created
    first.fire(3000)
    board.lap(1)
    third.fire(3100)
    board.lap(3)
    third.fire(3050)
    board.lap(3)

    session_id = board.save(store)

    saved = store.get_multiple_session(session_id)
    assert saved.session_name == "Practice Session"
    assert [driver.driver_name for driver in saved.drivers] == ["Alice", "Cara"]
    assert [lap.lap_number for lap in saved.drivers[1].laps] == [1, 2]
    assert all(slot.stopwatch.laps == [] for slot in board.slots)


def test_board_save_without_laps_does_nothing(manual_ticker, store) -> None:
    board = TimingBoard(ticker_factory=manual_ticker)
    board.toggle(1)

    assert board.save(store) is None
    assert store.list_multiple_sessions() == []
    assert board.slot(1).stopwatch.is_running


def test_default_ticker_advances_until_stopped() -> None:
    watch = Stopwatch(tick_interval=0.01)

    watch.start()
    assert isinstance(watch._ticker, RepeatingTicker)
    deadline = time.monotonic() + 2.0
    while watch.elapsed == 0 and time.monotonic() < deadline:
        time.sleep(0.02)
    watch.stop()

    frozen = watch.elapsed
    assert frozen > 0
    time.sleep(0.05)
    assert watch.elapsed == frozen
    assert not watch.is_running


def test_board_slots_use_board_interval(manual_ticker) -> None:
    board = TimingBoard(ticker_factory=manual_ticker)

    assert all(slot.stopwatch.tick_interval == BOARD_TICK_INTERVAL for slot in board.slots)
    board.stop_all()
    assert all(slot.stopwatch.tick_interval == BOARD_TICK_INTERVAL for slot in board.slots)
    with pytest.raises(TypeError):
        BoardSlot(slot=1, name="Kart 1")


def test_board_toggle_waits_for_stop_all(manual_ticker) -> None:
    board = TimingBoard(ticker_factory=manual_ticker)
    results = []
    worker = threading.Thread(target=lambda: results.append(board.toggle(1)))

    with board._lock:
        worker.start()
        worker.join(timeout=0.1)
        assert worker.is_alive()
        assert manual_ticker.created == []
        board.stop_all()
    worker.join(timeout=2.0)

    assert results == [True]
    assert board.slot(1).stopwatch.is_running
    board.stop_all()
    assert len(manual_ticker.created) == 1
    assert manual_ticker.created[0].cancelled
