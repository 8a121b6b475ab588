"""CLI helper that prints the stored session history with best laps."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List

from kart_core import MultipleSession, Session, SessionStore, StorageError, format_created_at, format_duration


def _format_best(seconds: float | None, precision: int) -> str:
    return format_duration(seconds, precision) if seconds is not None else "---"


def format_sessions(sessions: List[Session], precision: int = 2) -> str:
    lines = [f"Sessions ({len(sessions)})"]
    for session in sessions:
        lines.append(
            f"  #{session.id} {session.session_name} - {session.driver_name} (kart {session.kart_number or '-'}) "
            f"[{session.weather.label}] {format_created_at(session.created_at, with_year=True)}"
        )
        lines.append(f"    {session.lap_count} laps, best {_format_best(session.best_lap_time, precision)}")
    return "\n".join(lines)


def format_multiple_sessions(sessions: List[MultipleSession], precision: int = 2) -> str:
    lines = [f"Multiple sessions ({len(sessions)})"]
    for session in sessions:
        lines.append(f"  #{session.id} {session.session_name} {format_created_at(session.created_at, with_year=True)}")
        for driver in session.drivers:
            lines.append(
                f"    {driver.driver_name} (kart {driver.kart_number or '-'}): "
                f"{driver.lap_count} laps, best {_format_best(driver.best_lap_time, precision)}"
            )
    return "\n".join(lines)


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--data-dir", type=Path, default=None, help="Directory holding karttimer.db")
    parser.add_argument("--millis", action="store_true", help="Show lap times to the millisecond")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    precision = 3 if args.millis else 2

    try:
        with SessionStore(data_dir=args.data_dir) as store:
            sessions = store.list_sessions()
            multiple = store.list_multiple_sessions()
    except StorageError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    print(format_sessions(sessions, precision))
    print()
    print(format_multiple_sessions(multiple, precision))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
