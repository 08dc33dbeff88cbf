"""
db.py
SQLite helpers + initialization (creates DB/tables, bootstraps the first IT admin).

Stands in for the hosted store: each table mirrors a remote table of the same name.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone

from config import settings
from errors import RemoteMutationFailed

logger = logging.getLogger(__name__)

DB_FILE = settings.db_path


@contextmanager
def get_conn():
    # The print watcher polls from its own thread, so never share connections.
    conn = sqlite3.connect(DB_FILE, check_same_thread=False, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def execute(sql: str, params: tuple = ()) -> int:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def execute_count(sql: str, params: tuple = ()) -> int:
    """Like execute() but returns the number of affected rows."""
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.rowcount


def executemany(sql: str, seq_of_params: list[tuple]) -> None:
    with get_conn() as conn:
        conn.executemany(sql, seq_of_params)


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def insert(sql: str, params: tuple = ()) -> int:
    """execute() with store errors surfaced as RemoteMutationFailed."""
    try:
        return execute(sql, params)
    except sqlite3.Error as exc:
        logger.warning("Insert failed: %s", exc)
        raise RemoteMutationFailed(str(exc)) from exc


def mutate(sql: str, params: tuple = ()) -> int:
    """execute_count() with store errors surfaced as RemoteMutationFailed."""
    try:
        return execute_count(sql, params)
    except sqlite3.Error as exc:
        logger.warning("Mutation failed: %s", exc)
        raise RemoteMutationFailed(str(exc)) from exc


def placeholders(values) -> str:
    return ",".join("?" for _ in values)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def new_id() -> str:
    return str(uuid.uuid4())


def _create_tables() -> None:
    execute(
        """
        CREATE TABLE IF NOT EXISTS members (
            id TEXT PRIMARY KEY,
            firstname TEXT NOT NULL,
            lastname TEXT NOT NULL,
            email TEXT NOT NULL UNIQUE COLLATE NOCASE,
            privilege_type INTEGER NOT NULL DEFAULT 1 CHECK(privilege_type BETWEEN 1 AND 5),
            is_membership_active INTEGER NOT NULL DEFAULT 0,
            is_banned INTEGER NOT NULL DEFAULT 0,
            password_hash TEXT,
            created_at TEXT NOT NULL,
            created_by TEXT,
            password_set_at TEXT
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS printer_queue (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            firstname TEXT NOT NULL,
            lastname TEXT NOT NULL,
            email TEXT NOT NULL,
            ref TEXT NOT NULL,
            ref_invoker TEXT NOT NULL,
            is_voluntary INTEGER NOT NULL DEFAULT 0,
            completed INTEGER NOT NULL DEFAULT 0,
            error_msg TEXT,
            created_at TEXT NOT NULL
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS admin_audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            created_at TEXT NOT NULL,
            actor_id TEXT,
            action TEXT NOT NULL,
            target_table TEXT,
            target_id TEXT,
            status TEXT NOT NULL CHECK(status IN ('ok','error','partial')),
            error_message TEXT,
            details TEXT NOT NULL DEFAULT '{}'
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS certificate_type (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            type TEXT NOT NULL UNIQUE
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS certification_application (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            seeker_id TEXT NOT NULL,
            certificate_id INTEGER,
            verified INTEGER NOT NULL DEFAULT 0,
            rejected INTEGER NOT NULL DEFAULT 0,
            verified_by TEXT,
            time_accepted TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY(seeker_id) REFERENCES members(id) ON DELETE CASCADE,
            FOREIGN KEY(certificate_id) REFERENCES certificate_type(id) ON DELETE SET NULL
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS activity_group (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT,
            group_leader TEXT,
            FOREIGN KEY(group_leader) REFERENCES members(id) ON DELETE SET NULL
        )
        """
    )


def init_db(admin_email: str, admin_password_hash: str) -> None:
    """
    Initialize the database.
    - Create tables
    - Insert an IT-level admin if no IT member exists
    - The admin has no password_set_at yet, so the first login forces a change
    """
    _create_tables()

    admin = fetch_one("SELECT id FROM members WHERE privilege_type = 5 LIMIT 1")
    if not admin:
        execute(
            """
            INSERT INTO members(id, firstname, lastname, email, privilege_type,
                is_membership_active, password_hash, created_at)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (new_id(), "Admin", "IT", admin_email, 5, 1, admin_password_hash, now_iso()),
        )
        logger.info("Bootstrapped IT admin %s", admin_email)
