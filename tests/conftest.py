"""
tests/conftest.py - test harness bootstrap.
Every test gets its own SQLite file with the schema and a bootstrapped IT admin.
"""

import itertools

import pytest

import db
from logging_setup import setup_logging
from models import ActorContext
from privileges import PrivilegeLevel

setup_logging({"root": {"level": "WARNING"}})

ADMIN_EMAIL = "admin@example.org"
_counter = itertools.count(1)


@pytest.fixture(autouse=True)
def tmp_db(tmp_path, monkeypatch):
    path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_FILE", path)
    # init_db only stores the hash; login tests set a real one themselves
    db.init_db(ADMIN_EMAIL, "not-a-real-hash")
    return path


@pytest.fixture
def it_admin() -> ActorContext:
    row = db.fetch_one("SELECT id FROM members WHERE email = ?", (ADMIN_EMAIL,))
    return ActorContext(user_id=row["id"], privilege=PrivilegeLevel.IT)


@pytest.fixture
def make_member():
    """Factory inserting a member row directly; returns its id."""

    def _make(level=PrivilegeLevel.MEMBER, active=True, banned=False, firstname="Test", lastname=None):
        n = next(_counter)
        member_id = db.new_id()
        db.execute(
            """
            INSERT INTO members(id, firstname, lastname, email, privilege_type,
                is_membership_active, is_banned, created_at)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (
                member_id,
                firstname,
                lastname or f"Person{n}",
                f"person{n}@example.org",
                int(level),
                int(active),
                int(banned),
                db.now_iso(),
            ),
        )
        return member_id

    return _make


@pytest.fixture
def actor_at(make_member):
    """Factory returning an ActorContext backed by a real member row at the given level."""

    def _actor(level):
        return ActorContext(user_id=make_member(level), privilege=PrivilegeLevel(level))

    return _actor
