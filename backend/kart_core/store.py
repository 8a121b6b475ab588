from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Sequence

from .errors import ConstraintViolation, RecordNotFound, StorageUnavailable, WriteFailed
from .session import (
    DriverLaps,
    Lap,
    MultipleDriverEntry,
    MultipleLap,
    MultipleSession,
    Session,
    WeatherCondition,
    require_text,
    validate_lap_times,
)


logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"
DEFAULT_SESSION_LIMIT = 100
MEMORY_DATABASE = ":memory:"

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sessionName TEXT NOT NULL,
        driverName TEXT NOT NULL,
        kartNumber TEXT NOT NULL,
        isWet INTEGER DEFAULT 0,
        createdAt DATETIME DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS laps (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sessionId INTEGER NOT NULL,
        lapTime REAL NOT NULL,
        lapNumber INTEGER NOT NULL,
        FOREIGN KEY(sessionId) REFERENCES sessions(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS multipleSessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sessionName TEXT NOT NULL,
        createdAt DATETIME DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS multipleDrivers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        multipleSessionId INTEGER NOT NULL,
        driverName TEXT NOT NULL,
        kartNumber TEXT NOT NULL,
        FOREIGN KEY(multipleSessionId) REFERENCES multipleSessions(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS multipleLaps (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        multipleDriverId INTEGER NOT NULL,
        lapTime REAL NOT NULL,
        lapNumber INTEGER NOT NULL,
        FOREIGN KEY(multipleDriverId) REFERENCES multipleDrivers(id) ON DELETE CASCADE
    );
    """,
)

# (table, parent key column) for the two lap families.
_LAP_TABLES = {
    "laps": "sessionId",
    "multipleLaps": "multipleDriverId",
}


class SessionStore:
    """SQLite persistence for single-driver and multi-kart sessions.

    The schema matches the mobile app's ``karttimer.db`` so an existing
    database file can be opened directly.
    """

    def __init__(
        self,
        data_dir: Path | None = None,
        db_path: Path | str | None = None,
        session_limit: int | None = None,
    ) -> None:
        """Open (creating if needed) the session database.

        Args:
            data_dir: Directory holding the database file
            db_path: Explicit database path, or ``":memory:"``
            session_limit: Maximum single sessions returned by ``list_sessions``

        Raises:
            StorageUnavailable: the database cannot be opened or initialised
        """
        self.data_dir = data_dir or Path(os.getenv("KARTTIMER_DATA_DIR") or DEFAULT_DATA_DIR)
        if db_path is None:
            db_file = os.getenv("KARTTIMER_DB_FILE", "karttimer.db")
            db_path = db_file if db_file == MEMORY_DATABASE else self.data_dir / db_file
        self.db_path = db_path
        if session_limit is None:
            session_limit = int(os.getenv("KARTTIMER_SESSION_LIMIT", str(DEFAULT_SESSION_LIMIT)))
        self.session_limit = session_limit
        self._lock = threading.RLock()
        self._conn = self._connect()
        self._create_tables()

    # ------------------------------------------------------------------ setup

    def _connect(self) -> sqlite3.Connection:
        target = str(self.db_path)
        try:
            if target != MEMORY_DATABASE:
                Path(target).parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode; multi-statement writes use explicit transactions.
            conn = sqlite3.connect(target, isolation_level=None, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
        except (OSError, sqlite3.Error) as exc:
            logger.exception("Failed to open session database at %s", target)
            raise StorageUnavailable(f"Cannot open session database {target}: {exc}") from exc
        return conn

    def _create_tables(self) -> None:
        try:
            for statement in SCHEMA:
                self._conn.execute(statement)
            self._migrate_weather_column()
        except sqlite3.Error as exc:
            logger.exception("Failed to initialise session schema")
            raise StorageUnavailable(f"Cannot initialise session schema: {exc}") from exc

    def _migrate_weather_column(self) -> None:
        columns = {row["name"] for row in self._conn.execute("PRAGMA table_info(sessions)")}
        if "isWet" not in columns:
            logger.info("Adding isWet column to sessions table")
            self._conn.execute("ALTER TABLE sessions ADD COLUMN isWet INTEGER DEFAULT 0")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "SessionStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------ sql helpers

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN")
                yield self._conn
                self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                self._rollback()
                logger.exception("Session store write failed; rolled back")
                raise WriteFailed(f"Session store write failed: {exc}") from exc
            except BaseException:
                self._rollback()
                raise

    def _rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    def _execute(self, query: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        """Run one parameterised statement. Write failures surface as ``WriteFailed``."""
        with self._lock:
            try:
                return self._conn.execute(query, params)
            except sqlite3.Error as exc:
                logger.exception("Statement failed: %s", query.split("(")[0].strip())
                raise WriteFailed(f"Session store statement failed: {exc}") from exc

    def _fetch(self, query: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(query, params).fetchall()
            except sqlite3.Error as exc:
                logger.exception("Query failed: %s", query)
                raise StorageUnavailable(f"Session store query failed: {exc}") from exc

    @staticmethod
    def _insert(conn: sqlite3.Connection, table: str, values: Dict[str, Any]) -> int:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        cursor = conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(values.values()))
        return int(cursor.lastrowid)

    def _insert_laps(self, conn: sqlite3.Connection, table: str, parent_id: int, lap_times: Iterable[float]) -> None:
        parent_column = _LAP_TABLES[table]
        conn.executemany(
            f"INSERT INTO {table} ({parent_column}, lapTime, lapNumber) VALUES (?, ?, ?)",
            [(parent_id, lap_time, number) for number, lap_time in enumerate(lap_times, start=1)],
        )

    def _fetch_laps(self, table: str, parent_id: int) -> List[sqlite3.Row]:
        parent_column = _LAP_TABLES[table]
        return self._fetch(
            f"SELECT id, lapTime, lapNumber FROM {table} WHERE {parent_column} = ? ORDER BY lapNumber ASC",
            (parent_id,),
        )

    # -------------------------------------------------------- single sessions

    def create_session(
        self,
        session_name: str,
        driver_name: str,
        kart_number: str,
        lap_times: Sequence[float],
        weather: WeatherCondition | int | str = WeatherCondition.DRY,
    ) -> int:
        """Store a single-driver session with its laps numbered from 1."""

        record = {
            "sessionName": require_text(session_name, "Session name"),
            "driverName": require_text(driver_name, "Driver name"),
            "kartNumber": (kart_number or "").strip(),
            "isWet": int(WeatherCondition.parse(weather)),
        }
        laps = validate_lap_times(lap_times)

        with self._transaction() as conn:
            session_id = self._insert(conn, "sessions", record)
            self._insert_laps(conn, "laps", session_id, laps)

        logger.info("Saved session %s (%s, %d laps)", session_id, record["sessionName"], len(laps))
        return session_id

    def list_sessions(self) -> List[Session]:
        rows = self._fetch(
            "SELECT id, sessionName, driverName, kartNumber, isWet, createdAt FROM sessions "
            "ORDER BY createdAt DESC, id DESC LIMIT ?",
            (self.session_limit,),
        )
        logger.debug("Loaded %d sessions", len(rows))
        return [self._hydrate_session(row) for row in rows]

    def get_session(self, session_id: int) -> Session:
        rows = self._fetch(
            "SELECT id, sessionName, driverName, kartNumber, isWet, createdAt FROM sessions WHERE id = ?",
            (session_id,),
        )
        if not rows:
            raise RecordNotFound(f"Session {session_id} not found")
        return self._hydrate_session(rows[0])

    def delete_session(self, session_id: int) -> bool:
        cursor = self._execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted session %s", session_id)
        return deleted

    def _hydrate_session(self, row: sqlite3.Row) -> Session:
        laps = [
            Lap(id=lap["id"], lap_time=lap["lapTime"], lap_number=lap["lapNumber"])
            for lap in self._fetch_laps("laps", row["id"])
        ]
        return Session(
            id=row["id"],
            session_name=row["sessionName"] or "",
            driver_name=row["driverName"] or "",
            kart_number=row["kartNumber"] or "",
            weather=WeatherCondition.from_code(row["isWet"]),
            created_at=row["createdAt"] or "",
            laps=laps,
        )

    # ------------------------------------------------------ multiple sessions

    def create_multiple_session(self, session_name: str, drivers: Sequence[DriverLaps]) -> int:
        """Store a multi-kart session; drivers keep the order they are given in."""

        name = require_text(session_name, "Session name")
        if not drivers:
            raise ConstraintViolation("At least one driver is required")
        prepared = [
            (
                require_text(driver.driver_name, "Driver name"),
                (driver.kart_number or "").strip(),
                validate_lap_times(driver.lap_times),
            )
            for driver in drivers
        ]

        with self._transaction() as conn:
            session_id = self._insert(conn, "multipleSessions", {"sessionName": name})
            for driver_name, kart_number, laps in prepared:
                driver_id = self._insert(
                    conn,
                    "multipleDrivers",
                    {"multipleSessionId": session_id, "driverName": driver_name, "kartNumber": kart_number},
                )
                self._insert_laps(conn, "multipleLaps", driver_id, laps)

        logger.info("Saved multiple session %s (%s, %d drivers)", session_id, name, len(prepared))
        return session_id

    def list_multiple_sessions(self) -> List[MultipleSession]:
        rows = self._fetch(
            "SELECT id, sessionName, createdAt FROM multipleSessions ORDER BY createdAt DESC, id DESC"
        )
        logger.debug("Loaded %d multiple sessions", len(rows))
        return [self._hydrate_multiple_session(row) for row in rows]

    def get_multiple_session(self, session_id: int) -> MultipleSession:
        rows = self._fetch("SELECT id, sessionName, createdAt FROM multipleSessions WHERE id = ?", (session_id,))
        if not rows:
            raise RecordNotFound(f"Multiple session {session_id} not found")
        return self._hydrate_multiple_session(rows[0])

    def delete_multiple_session(self, session_id: int) -> bool:
        cursor = self._execute("DELETE FROM multipleSessions WHERE id = ?", (session_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted multiple session %s", session_id)
        return deleted

    def delete_all_multiple_sessions(self) -> int:
        cursor = self._execute("DELETE FROM multipleSessions")
        logger.info("Deleted %d multiple sessions", cursor.rowcount)
        return cursor.rowcount

    def delete_multiple_driver(self, session_id: int, driver_id: int) -> bool:
        """Remove one driver entry (and its laps) from a multiple session.

        The session itself is deleted when it has no drivers left.

        Returns:
            True if the whole session was removed, False if other drivers remain

        Raises:
            RecordNotFound: the driver does not belong to that session
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM multipleDrivers WHERE id = ? AND multipleSessionId = ?",
                (driver_id, session_id),
            )
            if cursor.rowcount == 0:
                raise RecordNotFound(f"Driver {driver_id} not found in multiple session {session_id}")
            remaining = conn.execute(
                "SELECT COUNT(*) FROM multipleDrivers WHERE multipleSessionId = ?",
                (session_id,),
            ).fetchone()[0]
            session_removed = remaining == 0
            if session_removed:
                conn.execute("DELETE FROM multipleSessions WHERE id = ?", (session_id,))

        logger.info(
            "Removed driver %s from multiple session %s%s",
            driver_id,
            session_id,
            " (session deleted)" if session_removed else "",
        )
        return session_removed

    def _hydrate_multiple_session(self, row: sqlite3.Row) -> MultipleSession:
        driver_rows = self._fetch(
            "SELECT id, driverName, kartNumber FROM multipleDrivers WHERE multipleSessionId = ? ORDER BY id ASC",
            (row["id"],),
        )
        drivers = [
            MultipleDriverEntry(
                id=driver["id"],
                driver_name=driver["driverName"] or "",
                kart_number=driver["kartNumber"] or "",
                laps=[
                    MultipleLap(id=lap["id"], lap_time=lap["lapTime"], lap_number=lap["lapNumber"])
                    for lap in self._fetch_laps("multipleLaps", driver["id"])
                ],
            )
            for driver in driver_rows
        ]
        return MultipleSession(
            id=row["id"],
            session_name=row["sessionName"] or "",
            created_at=row["createdAt"] or "",
            drivers=drivers,
        )
