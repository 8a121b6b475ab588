import pytest

from kart_core import Lap, MultipleLap, fastest_lap, format_created_at, format_duration, is_fastest_lap


def test_fastest_lap_picks_minimum() -> None:
    laps = [Lap(1, 32.451, 1), Lap(2, 31.200, 2), Lap(3, 33.0, 3)]

    assert fastest_lap(laps) == Lap(2, 31.200, 2)


def test_fastest_lap_of_nothing_is_none() -> None:
    assert fastest_lap([]) is None


def test_equal_times_are_all_fastest() -> None:
    laps = [MultipleLap(1, 30.5, 1), MultipleLap(2, 31.0, 2), MultipleLap(3, 30.5, 3)]

    assert fastest_lap(laps).id == 1
    assert [is_fastest_lap(lap, laps) for lap in laps] == [True, False, True]


@pytest.mark.parametrize(
    "seconds, precision, expected",
    [
        (0, 2, "00:00.00"),
        (30.9, 2, "00:30.90"),
        (31.2, 2, "00:31.20"),
        (65.437, 2, "01:05.44"),
        (65.437, 3, "01:05.437"),
        (59.999, 2, "01:00.00"),
        (600.05, 2, "10:00.05"),
    ],
)
def test_format_duration(seconds, precision, expected) -> None:
    assert format_duration(seconds, precision) == expected


def test_format_duration_rejects_bad_input() -> None:
    with pytest.raises(ValueError):
        format_duration(-0.5)
    with pytest.raises(ValueError):
        format_duration(10, precision=4)
    with pytest.raises(ValueError):
        format_duration(float("inf"))
    with pytest.raises(ValueError):
        format_duration(float("nan"), precision=3)


def test_format_created_at() -> None:
    assert format_created_at("2025-12-13 15:04:09") == "Dec 13, 3:04 PM"
    assert format_created_at("2025-12-13 00:30:00", with_year=True) == "Dec 13, 2025 12:30 AM"
    assert format_created_at("yesterday") == "yesterday"
