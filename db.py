"""
db.py
SQLite helpers + initialization, and the data-access calls the membership
engine reads and writes through.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta

import utils
from config import settings
from errors import Conflict, InvalidState, StoreTimeout
from logging_config import get_logger
from models import ExtensionRequest, ExtensionStatus, Member, MemberStatus, ServicePlan

logger = get_logger(__name__)

DB_FILE = settings.DB_PATH

MEMBER_COLUMNS = (
    "full_name",
    "phone",
    "join_date",
    "status",
    "start_date",
    "days_left",
    "freeze_date",
    "freeze_duration",
    "pre_freeze_attendance",
    "pre_freeze_days_count",
    "total_attendance",
    "service_id",
    "last_reconciled_on",
)


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_FILE, timeout=settings.DB_TIMEOUT_SECONDS, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    except sqlite3.OperationalError as e:
        conn.rollback()
        # sqlite gives up with "database is locked" once the timeout elapses
        if "locked" in str(e):
            raise StoreTimeout("Data store did not respond in time, try again.") from e
        raise
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def execute(sql: str, params: tuple = ()) -> int:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


# ---------- Per-member critical section ----------

# Striped: members hash onto a fixed pool, so the pool never grows.
MEMBER_LOCK_STRIPES = 64
_member_locks = tuple(threading.Lock() for _ in range(MEMBER_LOCK_STRIPES))


@contextmanager
def member_lock(member_id: int):
    """
    Serializes read-compute-write sequences on one member within this process
    (attendance, manual status changes, the daily sweep).
    """
    with _member_locks[hash(member_id) % MEMBER_LOCK_STRIPES]:
        yield


# ---------- Schema ----------

def _create_tables() -> None:
    execute(
        """
        CREATE TABLE IF NOT EXISTS staff_users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS service_plans (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            price REAL NOT NULL DEFAULT 0,
            period INTEGER NOT NULL CHECK(period > 0),
            max_days INTEGER NOT NULL CHECK(max_days > 0)
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            full_name TEXT NOT NULL,
            phone TEXT NOT NULL,
            join_date TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK(status IN ('pending','active','expired','inactive','frozen','dormant')),
            start_date TEXT,
            days_left INTEGER NOT NULL DEFAULT 0,
            freeze_date TEXT,
            freeze_duration INTEGER NOT NULL DEFAULT 0,
            pre_freeze_attendance INTEGER NOT NULL DEFAULT 0,
            pre_freeze_days_count INTEGER NOT NULL DEFAULT 0,
            total_attendance INTEGER NOT NULL DEFAULT 0,
            service_id INTEGER,
            last_reconciled_on TEXT,
            FOREIGN KEY(service_id) REFERENCES service_plans(id) ON DELETE SET NULL
        )
        """
    )

    # One row per member per UTC day; the unique key makes the insert the check.
    execute(
        """
        CREATE TABLE IF NOT EXISTS attendance (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            member_id INTEGER NOT NULL,
            date TEXT NOT NULL,
            created_at TEXT NOT NULL,
            UNIQUE(member_id, date),
            FOREIGN KEY(member_id) REFERENCES members(id) ON DELETE CASCADE
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS extension_requests (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            service_id INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK(status IN ('pending','approved','rejected')),
            request_date TEXT NOT NULL,
            FOREIGN KEY(user_id) REFERENCES members(id) ON DELETE CASCADE,
            FOREIGN KEY(service_id) REFERENCES service_plans(id) ON DELETE CASCADE
        )
        """
    )
    execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_extension_pending
        ON extension_requests(user_id, service_id) WHERE status = 'pending'
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            description TEXT NOT NULL,
            created_at TEXT NOT NULL,
            is_read INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(user_id) REFERENCES members(id) ON DELETE CASCADE
        )
        """
    )

    # Small settings table (used to force password change on first login)
    execute(
        """
        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )


def _get_setting(key: str, default: str | None = None) -> str | None:
    row = fetch_one("SELECT value FROM app_settings WHERE key = ?", (key,))
    if row:
        return str(row["value"])
    return default


def _set_setting(key: str, value: str) -> None:
    execute(
        """
        INSERT INTO app_settings(key, value) VALUES(?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (key, value),
    )


def init_db(default_admin_hash: str | None = None) -> None:
    """
    Initialize the database.
    - Create tables
    - Insert the default staff account if none exists (and a hash was given)
    - Force password change on first login
    """
    _create_tables()

    if default_admin_hash is None:
        return

    admin = fetch_one("SELECT id FROM staff_users LIMIT 1")
    if not admin:
        execute(
            "INSERT INTO staff_users(username, password_hash, created_at) VALUES(?,?,?)",
            ("admin", default_admin_hash, utils.to_iso(utils.utc_now())),
        )
        _set_setting("force_password_change", "1")
        logger.info("Created default staff account 'admin'")
    elif _get_setting("force_password_change") is None:
        _set_setting("force_password_change", "0")


def is_force_password_change() -> bool:
    return _get_setting("force_password_change") == "1"


def clear_force_password_change() -> None:
    _set_setting("force_password_change", "0")


# ---------- Service plans ----------

def get_service_plan(plan_id: int | None) -> ServicePlan | None:
    if plan_id is None:
        return None
    row = fetch_one("SELECT * FROM service_plans WHERE id = ?", (plan_id,))
    return ServicePlan.from_row(row) if row else None


def list_service_plans() -> list[ServicePlan]:
    return [ServicePlan.from_row(r) for r in fetch_all("SELECT * FROM service_plans ORDER BY name ASC")]


def create_service_plan(name: str, price: float, period: int, max_days: int) -> int:
    return execute(
        "INSERT INTO service_plans(name, price, period, max_days) VALUES(?,?,?,?)",
        (name.strip(), float(price), int(period), int(max_days)),
    )


# ---------- Members ----------

def _to_column(value):
    if isinstance(value, datetime):
        return utils.to_iso(value)
    if isinstance(value, MemberStatus):
        return value.value
    return value


def get_member(member_id: int) -> Member | None:
    row = fetch_one("SELECT * FROM members WHERE id = ?", (member_id,))
    return Member.from_row(row) if row else None


def create_member(full_name: str, phone: str, service_id: int | None, join_date: datetime | None = None) -> int:
    now = join_date or utils.utc_now()
    return execute(
        """
        INSERT INTO members(full_name, phone, join_date, status, start_date, service_id)
        VALUES(?,?,?,?,?,?)
        """,
        (full_name.strip(), phone.strip(), utils.day_key(now), MemberStatus.PENDING.value, utils.to_iso(now), service_id),
    )


def _check_columns(patch: dict) -> None:
    unknown = set(patch) - set(MEMBER_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown member columns: {sorted(unknown)}")


def update_member(member_id: int, patch: dict) -> None:
    if not patch:
        return
    _check_columns(patch)
    with get_conn() as conn:
        _update_member(conn, member_id, patch)


def _update_member(conn, member_id: int, patch: dict) -> None:
    cols = list(patch)
    assignments = ", ".join(f"{c} = ?" for c in cols)
    params = tuple(_to_column(patch[c]) for c in cols) + (member_id,)
    conn.execute(f"UPDATE members SET {assignments} WHERE id = ?", params)


def increment_attendance_total(member_id: int, days_left: int) -> int:
    with get_conn() as conn:
        conn.execute(
            "UPDATE members SET total_attendance = total_attendance + 1, days_left = ? WHERE id = ?",
            (days_left, member_id),
        )
        row = conn.execute("SELECT total_attendance FROM members WHERE id = ?", (member_id,)).fetchone()
    return int(row["total_attendance"])


def list_members_by_status(statuses) -> list[Member]:
    values = [MemberStatus(s).value for s in statuses]
    if not values:
        return []
    marks = ",".join("?" for _ in values)
    rows = fetch_all(f"SELECT * FROM members WHERE status IN ({marks}) ORDER BY id ASC", tuple(values))
    return [Member.from_row(r) for r in rows]


def search_members(search: str = "", status_filter: str = "All", sort_days_left: bool = True):
    sql = """
        SELECT m.id, m.full_name, m.phone, m.status, m.days_left, m.start_date,
               m.total_attendance, p.name AS plan
        FROM members m
        LEFT JOIN service_plans p ON p.id = m.service_id
        WHERE 1=1
    """
    params = []

    if search.strip():
        sql += " AND (m.full_name LIKE ? OR m.phone LIKE ?)"
        like = f"%{search.strip()}%"
        params.extend([like, like])

    if status_filter in {s.value for s in MemberStatus}:
        sql += " AND m.status = ?"
        params.append(status_filter)

    sql += " ORDER BY m.days_left ASC" if sort_days_left else " ORDER BY m.id DESC"
    return fetch_all(sql, tuple(params))


def delete_member(member_id: int) -> None:
    execute("DELETE FROM members WHERE id = ?", (member_id,))


def status_counts() -> dict[str, int]:
    rows = fetch_all("SELECT status, COUNT(*) AS c FROM members GROUP BY status")
    counts = {s.value: 0 for s in MemberStatus}
    counts.update({r["status"]: int(r["c"]) for r in rows})
    return counts


# ---------- Attendance ----------

def count_attendance(member_id: int, since: datetime) -> int:
    row = fetch_one(
        "SELECT COUNT(*) AS c FROM attendance WHERE member_id = ? AND date >= ?",
        (member_id, utils.to_iso(since)),
    )
    return int(row["c"])


def attendance_exists(member_id: int, day: datetime) -> bool:
    row = fetch_one(
        "SELECT 1 FROM attendance WHERE member_id = ? AND date >= ? AND date < ? LIMIT 1",
        (member_id, utils.to_iso(day), utils.to_iso(day + timedelta(days=1))),
    )
    return row is not None


def insert_attendance(member_id: int, day: datetime) -> int:
    """
    Insert-if-absent: a second record for the same member and day raises Conflict.
    """
    try:
        return execute(
            "INSERT INTO attendance(member_id, date, created_at) VALUES(?,?,?)",
            (member_id, utils.to_iso(day), utils.to_iso(utils.utc_now())),
        )
    except sqlite3.IntegrityError as e:
        raise Conflict("Attendance already recorded for today") from e


def attendees_between(start: datetime, end: datetime):
    return fetch_all(
        """
        SELECT m.id, m.full_name, m.phone, m.status, m.days_left, m.start_date, a.created_at
        FROM attendance a
        JOIN members m ON m.id = a.member_id
        WHERE a.date >= ? AND a.date < ?
        ORDER BY a.created_at ASC
        """,
        (utils.to_iso(start), utils.to_iso(end)),
    )


def all_attendance():
    return fetch_all(
        """
        SELECT a.id, a.member_id, m.full_name, a.date, a.created_at
        FROM attendance a
        JOIN members m ON m.id = a.member_id
        ORDER BY a.date DESC, a.id DESC
        """
    )


# ---------- Notifications ----------

def _insert_notification(conn, user_id: int, name: str, description: str) -> int:
    cur = conn.execute(
        "INSERT INTO notifications(user_id, name, description, created_at) VALUES(?,?,?,?)",
        (user_id, name, description, utils.to_iso(utils.utc_now())),
    )
    return cur.lastrowid


def create_notification(user_id: int, name: str, description: str) -> int:
    with get_conn() as conn:
        return _insert_notification(conn, user_id, name, description)


def apply_reconciliation(member_id: int, patch: dict, events) -> None:
    """
    Member changes and the notifications they trigger commit together or not at all.
    """
    _check_columns(patch)
    with get_conn() as conn:
        _update_member(conn, member_id, patch)
        for event in events:
            _insert_notification(conn, event.user_id, event.name, event.description)


def list_notifications(unread_only: bool = False):
    sql = """
        SELECT n.id, n.user_id, m.full_name, n.name, n.description, n.created_at, n.is_read
        FROM notifications n
        JOIN members m ON m.id = n.user_id
    """
    if unread_only:
        sql += " WHERE n.is_read = 0"
    sql += " ORDER BY n.created_at DESC, n.id DESC"
    return fetch_all(sql)


def mark_notifications_read() -> None:
    execute("UPDATE notifications SET is_read = 1 WHERE is_read = 0")


# ---------- Extension requests ----------

def get_extension_request(request_id: int) -> ExtensionRequest | None:
    row = fetch_one("SELECT * FROM extension_requests WHERE id = ?", (request_id,))
    return ExtensionRequest.from_row(row) if row else None


def find_pending_extension(user_id: int, service_id: int) -> ExtensionRequest | None:
    row = fetch_one(
        "SELECT * FROM extension_requests WHERE user_id = ? AND service_id = ? AND status = ?",
        (user_id, service_id, ExtensionStatus.PENDING.value),
    )
    return ExtensionRequest.from_row(row) if row else None


def create_extension_request(user_id: int, service_id: int, request_date: datetime) -> int:
    try:
        return execute(
            "INSERT INTO extension_requests(user_id, service_id, status, request_date) VALUES(?,?,?,?)",
            (user_id, service_id, ExtensionStatus.PENDING.value, utils.to_iso(request_date)),
        )
    except sqlite3.IntegrityError as e:
        raise Conflict("You already have a pending request for this service.") from e


def update_extension_request(
    request_id: int, status: ExtensionStatus, member_id: int | None = None, member_patch: dict | None = None
) -> None:
    """
    Resolve a pending request and apply its member changes in one transaction.
    A request that is no longer pending raises InvalidState and nothing is written.
    """
    if member_patch:
        _check_columns(member_patch)
    with get_conn() as conn:
        cur = conn.execute(
            "UPDATE extension_requests SET status = ? WHERE id = ? AND status = ?",
            (ExtensionStatus(status).value, request_id, ExtensionStatus.PENDING.value),
        )
        if cur.rowcount == 0:
            raise InvalidState("Subscription request is no longer pending.")
        if member_patch:
            _update_member(conn, member_id, member_patch)


def latest_extension_request(user_id: int) -> ExtensionRequest | None:
    row = fetch_one(
        "SELECT * FROM extension_requests WHERE user_id = ? ORDER BY request_date DESC, id DESC LIMIT 1",
        (user_id,),
    )
    return ExtensionRequest.from_row(row) if row else None


def list_extension_requests():
    return fetch_all(
        """
        SELECT r.id, r.user_id, m.full_name AS user_name, r.request_date,
               p.name AS service_name, p.price AS service_fee, r.status
        FROM extension_requests r
        JOIN members m ON m.id = r.user_id
        JOIN service_plans p ON p.id = r.service_id
        ORDER BY r.request_date DESC, r.id DESC
        """
    )


# ---------- Sample data ----------

def insert_sample_data() -> None:
    """
    Insert two plans and four members in different lifecycle states
    (safe to run multiple times: adds new rows each time).
    """
    now = utils.utc_now()
    monthly = create_service_plan("Monthly 12 visits", 300.0, 30, 12)
    quarterly = create_service_plan("Quarterly unlimited", 800.0, 90, 90)

    m1 = create_member("Ahmed Hassan", "01000000001", monthly, now - timedelta(days=25))
    update_member(m1, {"status": MemberStatus.ACTIVE, "start_date": now - timedelta(days=25), "days_left": 5})

    m2 = create_member("Mona Ali", "01000000002", quarterly, now - timedelta(days=10))
    update_member(m2, {"status": MemberStatus.ACTIVE, "start_date": now - timedelta(days=10), "days_left": 80})

    m3 = create_member("Omar Samy", "01000000003", monthly, now - timedelta(days=40))
    update_member(m3, {"status": MemberStatus.EXPIRED, "start_date": now - timedelta(days=32), "days_left": -2})

    create_member("Sara Adel", "01000000004", monthly, now)
