import json

import pytest

from kart_core import ConstraintViolation, DriverRoster, WriteFailed
from kart_core import drivers as drivers_module


def test_add_driver_persists_json_blob(tmp_path) -> None:
    roster = DriverRoster(data_dir=tmp_path)

    driver = roster.add_driver("Alice", "7")

    assert driver is not None
    assert driver.id == driver.id.upper()
    stored = json.loads((tmp_path / "drivers.json").read_text())
    assert stored["savedDrivers"] == [{"id": driver.id, "name": "Alice", "kartNumber": "7"}]

    reloaded = DriverRoster(data_dir=tmp_path)
    assert [d.name for d in reloaded.list_drivers()] == ["Alice"]
    assert reloaded.get_driver(driver.id).kart_number == "7"


def test_roster_rejects_eleventh_driver(tmp_path) -> None:
    roster = DriverRoster(data_dir=tmp_path)
    for number in range(10):
        assert roster.add_driver(f"Driver {number}", str(number)) is not None

    assert roster.can_add_driver() is False
    assert roster.add_driver("One too many", "99") is None
    assert len(roster.list_drivers()) == 10
    assert len(DriverRoster(data_dir=tmp_path).list_drivers()) == 10


def test_update_driver_keeps_identity(tmp_path) -> None:
    roster = DriverRoster(data_dir=tmp_path)
    driver = roster.add_driver("Alice", "7")

    updated = roster.update_driver(driver.id, "Alice B", "77")

    assert updated.id == driver.id
    assert [(d.id, d.name, d.kart_number) for d in roster.list_drivers()] == [(driver.id, "Alice B", "77")]


def test_update_unknown_driver_returns_none(tmp_path) -> None:
    roster = DriverRoster(data_dir=tmp_path)
    roster.add_driver("Alice", "7")

    assert roster.update_driver("missing", "Bob", "1") is None
    assert [d.name for d in roster.list_drivers()] == ["Alice"]


def test_delete_driver(tmp_path) -> None:
    roster = DriverRoster(data_dir=tmp_path)
    alice = roster.add_driver("Alice", "7")
    bob = roster.add_driver("Bob", "12")

    assert roster.delete_driver(alice.id) is True
    assert roster.delete_driver(alice.id) is False
    assert [d.id for d in DriverRoster(data_dir=tmp_path).list_drivers()] == [bob.id]


def test_blank_driver_name_rejected(tmp_path) -> None:
    roster = DriverRoster(data_dir=tmp_path)

    with pytest.raises(ConstraintViolation):
        roster.add_driver("   ", "7")


def test_corrupt_profile_file_loads_empty(tmp_path) -> None:
    (tmp_path / "drivers.json").write_text("{not json")

    roster = DriverRoster(data_dir=tmp_path)

    assert roster.list_drivers() == []
    assert roster.add_driver("Alice", "7") is not None


def test_other_keys_in_file_are_preserved(tmp_path) -> None:
    path = tmp_path / "prefs.json"
    path.write_text(json.dumps({"units": "metric", "savedDrivers": []}))

    roster = DriverRoster(path=path)
    roster.add_driver("Alice", "7")

    stored = json.loads(path.read_text())
    assert stored["units"] == "metric"
    assert len(stored["savedDrivers"]) == 1


def test_failed_write_keeps_previous_state(tmp_path, monkeypatch) -> None:
    roster = DriverRoster(data_dir=tmp_path)
    roster.add_driver("Alice", "7")

    def refuse(self, values):
        raise WriteFailed("disk full")

    monkeypatch.setattr(drivers_module.DriverRoster, "_write_values", refuse)

    with pytest.raises(WriteFailed):
        roster.add_driver("Bob", "12")
    assert [d.name for d in roster.list_drivers()] == ["Alice"]


def test_drivers_file_from_environment(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("KARTTIMER_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("KARTTIMER_DRIVERS_FILE", "profiles.json")

    roster = DriverRoster()
    roster.add_driver("Alice", "7")

    assert (tmp_path / "profiles.json").exists()
