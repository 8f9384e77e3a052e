"""Repository layer responsible for all database access.

Admission writes go through :meth:`DataRepository.write_transaction`, which
opens a ``BEGIN IMMEDIATE`` transaction. SQLite grants that lock to one
writer at a time across every process sharing the file, so a check performed
inside the transaction cannot be invalidated before the insert commits. The
``trg_reservations_no_overlap_*`` triggers reject overlapping occupying
reservations even for writers that bypass this module.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Iterator, Optional, Sequence

from admission_engine.domain.errors import AdmissionTimeoutError, ConflictError
from admission_engine.domain.intervals import DateRange, iter_days
from admission_engine.domain.models import (
    OCCUPYING_RESERVATION_STATES,
    PASS_BOOKING_CANCELLED,
    RESERVATION_CANCELLED,
    CoworkingPass,
    PassBooking,
    Reservation,
    Resource,
    ResourceBlock,
    ScheduleOverride,
)
from admission_engine.utils.clock import utc_timestamp
from admission_engine.utils.config import Settings, get_settings
from admission_engine.utils.logger import get_logger


logger = get_logger(__name__)

_OCCUPYING_SQL = ", ".join(f"'{state}'" for state in OCCUPYING_RESERVATION_STATES)
OVERLAP_TRIGGER_MESSAGE = "reservation_overlap"


def _to_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    return date.fromisoformat(str(value))


def _iso(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _row_to_resource(row: sqlite3.Row) -> Resource:
    return Resource(
        resource_id=int(row["id"]),
        title=str(row["title"]),
        price=float(row["price"]),
        capacity=int(row["capacity"]),
        status=str(row["status"]),
    )


def _row_to_reservation(row: sqlite3.Row) -> Reservation:
    return Reservation(
        reservation_id=int(row["id"]),
        resource_id=int(row["resource_id"]),
        stay_id=str(row["stay_id"]),
        start_date=date.fromisoformat(row["start_date"]),
        end_date=date.fromisoformat(row["end_date"]),
        state=str(row["state"]),
        guest_name=str(row["guest_name"] or ""),
    )


def _row_to_block(row: sqlite3.Row) -> ResourceBlock:
    return ResourceBlock(
        block_id=int(row["id"]),
        resource_id=int(row["resource_id"]),
        start_date=date.fromisoformat(row["start_date"]),
        end_date=date.fromisoformat(row["end_date"]),
        reason=str(row["reason"]),
    )


def _row_to_pass(row: sqlite3.Row) -> CoworkingPass:
    return CoworkingPass(
        pass_id=int(row["id"]),
        name=str(row["name"]),
        duration_days=int(row["duration_days"]),
        base_max_capacity=(
            int(row["base_max_capacity"]) if row["base_max_capacity"] is not None else None
        ),
        is_capacity_limited=bool(row["is_capacity_limited"]),
        is_date_restricted=bool(row["is_date_restricted"]),
        available_from=_to_date(row["available_from"]),
        available_until=_to_date(row["available_until"]),
        is_active=bool(row["is_active"]),
        current_capacity=int(row["current_capacity"]),
    )


def _row_to_override(row: sqlite3.Row) -> ScheduleOverride:
    return ScheduleOverride(
        override_id=int(row["id"]),
        pass_id=int(row["pass_id"]),
        name=str(row["name"]),
        start_date=date.fromisoformat(row["start_date"]),
        end_date=date.fromisoformat(row["end_date"]),
        max_capacity=int(row["max_capacity"]) if row["max_capacity"] is not None else None,
        priority=int(row["priority"]),
        is_active=bool(row["is_active"]),
        created_at=str(row["created_at"]),
    )


def _row_to_pass_booking(row: sqlite3.Row) -> PassBooking:
    return PassBooking(
        booking_id=int(row["id"]),
        pass_id=int(row["pass_id"]),
        start_date=date.fromisoformat(row["start_date"]),
        end_date=date.fromisoformat(row["end_date"]),
        status=str(row["status"]),
        customer_name=str(row["customer_name"] or ""),
    )


def _select_resource(conn: sqlite3.Connection, resource_id: int) -> Optional[Resource]:
    row = conn.execute(
        "SELECT id, title, price, capacity, status FROM Resources WHERE id = ?;",
        (resource_id,),
    ).fetchone()
    if row is None:
        return None
    return _row_to_resource(row)


def _select_occupying_reservations(
    conn: sqlite3.Connection,
    resource_id: Optional[int],
    window: Optional[DateRange],
) -> list[Reservation]:
    clauses = [f"state IN ({_OCCUPYING_SQL})"]
    params: list[object] = []
    if resource_id is not None:
        clauses.append("resource_id = ?")
        params.append(resource_id)
    if window is not None:
        clauses.append("start_date < ? AND end_date > ?")
        params.extend([window.end.isoformat(), window.start.isoformat()])
    cursor = conn.execute(
        f"""
        SELECT id, resource_id, stay_id, start_date, end_date, state, guest_name
        FROM Reservations
        WHERE {' AND '.join(clauses)}
        ORDER BY resource_id ASC, start_date ASC, id ASC;
        """,
        tuple(params),
    )
    return [_row_to_reservation(row) for row in cursor.fetchall()]


def _select_blocks(
    conn: sqlite3.Connection,
    resource_id: Optional[int],
    window: Optional[DateRange],
) -> list[ResourceBlock]:
    clauses = ["1 = 1"]
    params: list[object] = []
    if resource_id is not None:
        clauses.append("resource_id = ?")
        params.append(resource_id)
    if window is not None:
        clauses.append("start_date < ? AND end_date > ?")
        params.extend([window.end.isoformat(), window.start.isoformat()])
    cursor = conn.execute(
        f"""
        SELECT id, resource_id, start_date, end_date, reason
        FROM ResourceBlocks
        WHERE {' AND '.join(clauses)}
        ORDER BY resource_id ASC, start_date ASC, id ASC;
        """,
        tuple(params),
    )
    return [_row_to_block(row) for row in cursor.fetchall()]


def _select_demand_bookings(
    conn: sqlite3.Connection,
    pass_id: int,
    window: DateRange,
) -> list[PassBooking]:
    cursor = conn.execute(
        """
        SELECT id, pass_id, start_date, end_date, status, customer_name
        FROM PassBookings
        WHERE pass_id = ?
          AND status != ?
          AND start_date < ?
          AND end_date > ?
        ORDER BY start_date ASC, id ASC;
        """,
        (pass_id, PASS_BOOKING_CANCELLED, window.end.isoformat(), window.start.isoformat()),
    )
    return [_row_to_pass_booking(row) for row in cursor.fetchall()]


def _demand_by_day(bookings: Sequence[PassBooking], window: DateRange) -> dict[date, int]:
    counts = {day: 0 for day in iter_days(window)}
    for booking in bookings:
        for day in iter_days(booking.dates):
            if day in counts:
                counts[day] += 1
    return counts


class WriteTransaction:
    """Reads and inserts bound to one ``BEGIN IMMEDIATE`` transaction."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection

    def get_resource(self, resource_id: int) -> Optional[Resource]:
        return _select_resource(self._conn, resource_id)

    def update_resource_status(self, resource_id: int, status: str) -> None:
        self._conn.execute(
            "UPDATE Resources SET status = ? WHERE id = ?;",
            (status, resource_id),
        )

    def list_occupying_reservations(
        self,
        resource_id: int,
        window: DateRange,
    ) -> list[Reservation]:
        return _select_occupying_reservations(self._conn, resource_id, window)

    def list_blocks(self, resource_id: int, window: DateRange) -> list[ResourceBlock]:
        return _select_blocks(self._conn, resource_id, window)

    def insert_reservation(
        self,
        *,
        resource_id: int,
        stay_id: str,
        dates: DateRange,
        state: str,
        guest_name: str,
    ) -> int:
        try:
            cursor = self._conn.execute(
                """
                INSERT INTO Reservations (
                    resource_id, stay_id, start_date, end_date, state, guest_name, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    resource_id,
                    stay_id,
                    dates.start.isoformat(),
                    dates.end.isoformat(),
                    state,
                    guest_name,
                    utc_timestamp(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            if OVERLAP_TRIGGER_MESSAGE not in str(exc):
                raise
            raise ConflictError(
                f"Storage rejected overlapping reservation on resource {resource_id} for {dates}",
                resource_id=resource_id,
                start_date=dates.start,
                end_date=dates.end,
                blocking_kind="storage_constraint",
                blocking_id=0,
            ) from exc
        return int(cursor.lastrowid)

    def insert_block(self, *, resource_id: int, dates: DateRange, reason: str) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO ResourceBlocks (resource_id, start_date, end_date, reason, created_at)
            VALUES (?, ?, ?, ?, ?);
            """,
            (resource_id, dates.start.isoformat(), dates.end.isoformat(), reason, utc_timestamp()),
        )
        return int(cursor.lastrowid)

    def demand_by_day(self, pass_id: int, window: DateRange) -> dict[date, int]:
        return _demand_by_day(_select_demand_bookings(self._conn, pass_id, window), window)

    def insert_pass_booking(
        self,
        *,
        pass_id: int,
        dates: DateRange,
        status: str,
        customer_name: str,
    ) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO PassBookings (
                pass_id, start_date, end_date, status, customer_name, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (
                pass_id,
                dates.start.isoformat(),
                dates.end.isoformat(),
                status,
                customer_name,
                utc_timestamp(),
            ),
        )
        return int(cursor.lastrowid)


class DataRepository:
    """Encapsulates SQLite access so admission rules stay storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._busy_timeout = float(self._settings.admission_lock_timeout_seconds)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _open(self, *, autocommit: bool = False) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._busy_timeout,
            isolation_level=None if autocommit else "",
            check_same_thread=False,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        connection = self._open()
        try:
            with connection:
                yield connection
        finally:
            connection.close()

    @contextmanager
    def write_transaction(self) -> Iterator[WriteTransaction]:
        """Serialize a check-then-insert against every other writer.

        Waits at most ``admission_lock_timeout_seconds`` for the write lock
        and raises :class:`AdmissionTimeoutError` instead of waiting longer.
        Any exception inside the block rolls the transaction back.
        """
        connection = self._open(autocommit=True)
        try:
            try:
                connection.execute("BEGIN IMMEDIATE;")
            except sqlite3.OperationalError as exc:
                raise AdmissionTimeoutError(
                    f"Could not obtain the storage write lock within {self._busy_timeout:.2f}s"
                ) from exc
            try:
                yield WriteTransaction(connection)
            except BaseException:
                connection.execute("ROLLBACK;")
                raise
            try:
                connection.execute("COMMIT;")
            except sqlite3.OperationalError as exc:
                connection.execute("ROLLBACK;")
                raise AdmissionTimeoutError("Storage commit timed out; admission rolled back") from exc
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("PRAGMA journal_mode = WAL;")

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Resources (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        title TEXT NOT NULL,
                        price REAL NOT NULL CHECK (price >= 0),
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        status TEXT NOT NULL DEFAULT 'available'
                            CHECK (status IN ('available', 'unavailable')),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Reservations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource_id INTEGER NOT NULL,
                        stay_id TEXT NOT NULL,
                        start_date TEXT NOT NULL,
                        end_date TEXT NOT NULL,
                        state TEXT NOT NULL
                            CHECK (state IN ('confirmed', 'checked_in', 'checked_out', 'cancelled')),
                        guest_name TEXT NOT NULL DEFAULT '',
                        created_at TEXT NOT NULL,
                        CHECK (start_date < end_date),
                        FOREIGN KEY (resource_id) REFERENCES Resources(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ResourceBlocks (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource_id INTEGER NOT NULL,
                        start_date TEXT NOT NULL,
                        end_date TEXT NOT NULL,
                        reason TEXT NOT NULL DEFAULT 'blocked',
                        created_at TEXT NOT NULL,
                        CHECK (start_date < end_date),
                        FOREIGN KEY (resource_id) REFERENCES Resources(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Passes (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        duration_days INTEGER NOT NULL DEFAULT 1 CHECK (duration_days > 0),
                        base_max_capacity INTEGER CHECK (base_max_capacity >= 0),
                        is_capacity_limited INTEGER NOT NULL DEFAULT 0,
                        is_date_restricted INTEGER NOT NULL DEFAULT 0,
                        available_from TEXT,
                        available_until TEXT,
                        is_active INTEGER NOT NULL DEFAULT 1,
                        current_capacity INTEGER NOT NULL DEFAULT 0,
                        capacity_refreshed_at TEXT
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS PassScheduleOverrides (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        pass_id INTEGER NOT NULL,
                        name TEXT NOT NULL DEFAULT '',
                        start_date TEXT NOT NULL,
                        end_date TEXT NOT NULL,
                        max_capacity INTEGER CHECK (max_capacity >= 0),
                        priority INTEGER NOT NULL DEFAULT 0,
                        is_active INTEGER NOT NULL DEFAULT 1,
                        created_at TEXT NOT NULL,
                        CHECK (start_date <= end_date),
                        FOREIGN KEY (pass_id) REFERENCES Passes(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS PassBookings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        pass_id INTEGER NOT NULL,
                        start_date TEXT NOT NULL,
                        end_date TEXT NOT NULL,
                        status TEXT NOT NULL
                            CHECK (status IN ('pending', 'confirmed', 'active', 'completed', 'cancelled')),
                        customer_name TEXT NOT NULL DEFAULT '',
                        created_at TEXT NOT NULL,
                        CHECK (start_date < end_date),
                        FOREIGN KEY (pass_id) REFERENCES Passes(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_resource_dates
                    ON Reservations(resource_id, start_date, end_date);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_stay
                    ON Reservations(stay_id);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_blocks_resource_dates
                    ON ResourceBlocks(resource_id, start_date, end_date);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_overrides_pass_dates
                    ON PassScheduleOverrides(pass_id, start_date, end_date);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_pass_bookings_pass_dates
                    ON PassBookings(pass_id, start_date, end_date);
                    """
                )

                cursor.execute(
                    f"""
                    CREATE TRIGGER IF NOT EXISTS trg_reservations_no_overlap_insert
                    BEFORE INSERT ON Reservations
                    WHEN NEW.state IN ({_OCCUPYING_SQL})
                      AND (
                        EXISTS (
                            SELECT 1 FROM Reservations AS r
                            WHERE r.resource_id = NEW.resource_id
                              AND r.state IN ({_OCCUPYING_SQL})
                              AND r.start_date < NEW.end_date
                              AND NEW.start_date < r.end_date
                        )
                        OR EXISTS (
                            SELECT 1 FROM ResourceBlocks AS b
                            WHERE b.resource_id = NEW.resource_id
                              AND b.start_date < NEW.end_date
                              AND NEW.start_date < b.end_date
                        )
                      )
                    BEGIN
                        SELECT RAISE(ABORT, '{OVERLAP_TRIGGER_MESSAGE}');
                    END;
                    """
                )
                cursor.execute(
                    f"""
                    CREATE TRIGGER IF NOT EXISTS trg_reservations_no_overlap_update
                    BEFORE UPDATE OF resource_id, start_date, end_date, state ON Reservations
                    WHEN NEW.state IN ({_OCCUPYING_SQL})
                      AND EXISTS (
                        SELECT 1 FROM Reservations AS r
                        WHERE r.resource_id = NEW.resource_id
                          AND r.id != NEW.id
                          AND r.state IN ({_OCCUPYING_SQL})
                          AND r.start_date < NEW.end_date
                          AND NEW.start_date < r.end_date
                      )
                    BEGIN
                        SELECT RAISE(ABORT, '{OVERLAP_TRIGGER_MESSAGE}');
                    END;
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data(self) -> None:
        """Seed a small catalogue of apartments and passes only when empty."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute("SELECT COUNT(*) AS count FROM Resources;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Demo data already present; skipping seed")
                    return

                cursor.executemany(
                    """
                    INSERT INTO Resources (title, price, capacity, status)
                    VALUES (?, ?, ?, ?);
                    """,
                    [
                        ("Studio Garden", 950.0, 1, "available"),
                        ("Loft North", 1250.0, 2, "available"),
                        ("Loft South", 1250.0, 2, "available"),
                        ("Family Suite", 1800.0, 4, "available"),
                        ("Attic Room", 800.0, 1, "unavailable"),
                    ],
                )
                cursor.executemany(
                    """
                    INSERT INTO Passes (
                        name, duration_days, base_max_capacity,
                        is_capacity_limited, is_date_restricted
                    )
                    VALUES (?, ?, ?, ?, ?);
                    """,
                    [
                        ("Day Pass", 1, 12, 1, 0),
                        ("Week Pass", 7, 8, 1, 0),
                        ("Month Pass", 30, None, 0, 0),
                    ],
                )
            logger.info("Demo seed completed with 5 resources and 3 passes")
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo data seeding failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Resources, reservations and blocks
    # ------------------------------------------------------------------

    def create_resource(
        self,
        title: str,
        price: float,
        capacity: int,
        status: str = "available",
    ) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO Resources (title, price, capacity, status)
                VALUES (?, ?, ?, ?);
                """,
                (title, price, capacity, status),
            )
            return int(cursor.lastrowid)

    def get_resource(self, resource_id: int) -> Optional[Resource]:
        with self._connect() as conn:
            return _select_resource(conn, resource_id)

    def list_resources(self) -> list[Resource]:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                SELECT id, title, price, capacity, status
                FROM Resources
                ORDER BY id ASC;
                """
            )
            return [_row_to_resource(row) for row in cursor.fetchall()]

    def list_occupying_reservations(
        self,
        resource_id: Optional[int] = None,
        window: Optional[DateRange] = None,
    ) -> list[Reservation]:
        """Return confirmed/checked-in reservations, optionally clipped to a window."""
        with self._connect() as conn:
            return _select_occupying_reservations(conn, resource_id, window)

    def list_blocks(
        self,
        resource_id: Optional[int] = None,
        window: Optional[DateRange] = None,
    ) -> list[ResourceBlock]:
        with self._connect() as conn:
            return _select_blocks(conn, resource_id, window)

    def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, resource_id, stay_id, start_date, end_date, state, guest_name
                FROM Reservations WHERE id = ?;
                """,
                (reservation_id,),
            ).fetchone()
            if row is None:
                return None
            return _row_to_reservation(row)

    def list_stay_reservations(self, stay_id: str) -> list[Reservation]:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                SELECT id, resource_id, stay_id, start_date, end_date, state, guest_name
                FROM Reservations
                WHERE stay_id = ?
                ORDER BY start_date ASC, id ASC;
                """,
                (stay_id,),
            )
            return [_row_to_reservation(row) for row in cursor.fetchall()]

    def update_reservation_state(
        self,
        reservation_id: int,
        state: str,
        *,
        expected_state: Optional[str] = None,
    ) -> bool:
        """Set the state; with ``expected_state`` only if it still holds."""
        sql = "UPDATE Reservations SET state = ? WHERE id = ?"
        params: list[object] = [state, reservation_id]
        if expected_state is not None:
            sql += " AND state = ?"
            params.append(expected_state)
        with self._connect() as conn:
            cursor = conn.execute(sql + ";", tuple(params))
            return cursor.rowcount > 0

    def cancel_stay_reservations(self, stay_id: str) -> int:
        """Cancel every still-occupying segment of a stay; return rows changed."""
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE Reservations
                SET state = ?
                WHERE stay_id = ? AND state IN ({_OCCUPYING_SQL});
                """,
                (RESERVATION_CANCELLED, stay_id),
            )
            return int(cursor.rowcount)

    def count_reservations(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM Reservations;").fetchone()
            return int(row["count"])

    # ------------------------------------------------------------------
    # Passes, overrides and pass bookings
    # ------------------------------------------------------------------

    def create_pass(
        self,
        name: str,
        *,
        duration_days: int = 1,
        base_max_capacity: Optional[int] = None,
        is_capacity_limited: bool = False,
        is_date_restricted: bool = False,
        available_from: Optional[date] = None,
        available_until: Optional[date] = None,
        is_active: bool = True,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO Passes (
                    name, duration_days, base_max_capacity, is_capacity_limited,
                    is_date_restricted, available_from, available_until, is_active
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    name,
                    duration_days,
                    base_max_capacity,
                    int(is_capacity_limited),
                    int(is_date_restricted),
                    _iso(available_from),
                    _iso(available_until),
                    int(is_active),
                ),
            )
            return int(cursor.lastrowid)

    def get_pass(self, pass_id: int) -> Optional[CoworkingPass]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM Passes WHERE id = ?;", (pass_id,)).fetchone()
            if row is None:
                return None
            return _row_to_pass(row)

    def list_passes(self) -> list[CoworkingPass]:
        with self._connect() as conn:
            cursor = conn.execute("SELECT * FROM Passes ORDER BY id ASC;")
            return [_row_to_pass(row) for row in cursor.fetchall()]

    def update_current_capacity(self, pass_id: int, current_capacity: int) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE Passes
                SET current_capacity = ?, capacity_refreshed_at = ?
                WHERE id = ?;
                """,
                (current_capacity, utc_timestamp(), pass_id),
            )

    def create_override(
        self,
        *,
        pass_id: int,
        start_date: date,
        end_date: date,
        max_capacity: Optional[int],
        priority: int,
        name: str = "",
        is_active: bool = True,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO PassScheduleOverrides (
                    pass_id, name, start_date, end_date, max_capacity,
                    priority, is_active, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    pass_id,
                    name,
                    start_date.isoformat(),
                    end_date.isoformat(),
                    max_capacity,
                    priority,
                    int(is_active),
                    utc_timestamp(),
                ),
            )
            return int(cursor.lastrowid)

    def get_override(self, override_id: int) -> Optional[ScheduleOverride]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM PassScheduleOverrides WHERE id = ?;",
                (override_id,),
            ).fetchone()
            if row is None:
                return None
            return _row_to_override(row)

    def set_override_active(self, override_id: int, is_active: bool) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE PassScheduleOverrides SET is_active = ? WHERE id = ?;",
                (int(is_active), override_id),
            )
            return cursor.rowcount > 0

    def list_overrides(
        self,
        pass_id: int,
        *,
        active_only: bool = False,
        window: Optional[DateRange] = None,
    ) -> list[ScheduleOverride]:
        """Return overrides for a pass; ``window`` keeps those touching it."""
        clauses = ["pass_id = ?"]
        params: list[object] = [pass_id]
        if active_only:
            clauses.append("is_active = 1")
        if window is not None:
            # Override bounds are inclusive, the window is half-open.
            clauses.append("start_date < ? AND end_date >= ?")
            params.extend([window.end.isoformat(), window.start.isoformat()])
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                SELECT * FROM PassScheduleOverrides
                WHERE {' AND '.join(clauses)}
                ORDER BY start_date ASC, id ASC;
                """,
                tuple(params),
            )
            return [_row_to_override(row) for row in cursor.fetchall()]

    def demand_by_day(self, pass_id: int, window: DateRange) -> dict[date, int]:
        """Live count of non-cancelled bookings per day of ``window``."""
        with self._connect() as conn:
            return _demand_by_day(_select_demand_bookings(conn, pass_id, window), window)

    def count_demand(self, pass_id: int, day: date) -> int:
        return self.demand_by_day(pass_id, DateRange.single_day(day))[day]

    def get_pass_booking(self, booking_id: int) -> Optional[PassBooking]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, pass_id, start_date, end_date, status, customer_name
                FROM PassBookings WHERE id = ?;
                """,
                (booking_id,),
            ).fetchone()
            if row is None:
                return None
            return _row_to_pass_booking(row)

    def update_pass_booking_status(
        self,
        booking_id: int,
        status: str,
        *,
        expected_status: Optional[str] = None,
    ) -> bool:
        sql = "UPDATE PassBookings SET status = ? WHERE id = ?"
        params: list[object] = [status, booking_id]
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(expected_status)
        with self._connect() as conn:
            cursor = conn.execute(sql + ";", tuple(params))
            return cursor.rowcount > 0

    def count_pass_bookings(self, pass_id: int) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM PassBookings WHERE pass_id = ?;",
                (pass_id,),
            ).fetchone()
            return int(row["count"])
