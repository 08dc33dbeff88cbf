"""
utils.py
Normalisation, validation, exports, sample data.
"""

from __future__ import annotations

import re
from dataclasses import asdict
from typing import Iterable

import pandas as pd

import db
from models import Member, PrintQueueEntry

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MEMBER_COLUMNS = [
    "id", "firstname", "lastname", "email", "privilege", "is_membership_active",
    "is_banned", "created_at", "created_by", "password_set_at",
]
QUEUE_COLUMNS = [
    "id", "firstname", "lastname", "email", "ref", "ref_invoker",
    "is_voluntary", "completed", "error_msg", "created_at",
]


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def normalize_ids(member_ids: Iterable | str | None) -> list[str]:
    """Accepts one id or many; trims, drops blanks and keeps first-seen order."""
    if member_ids is None:
        return []
    if isinstance(member_ids, (str, int)):
        member_ids = [member_ids]
    seen: dict[str, None] = {}
    for value in member_ids:
        text = str(value if value is not None else "").strip()
        if text:
            seen.setdefault(text, None)
    return list(seen)


def validate_member_inputs(firstname: str, lastname: str, email: str) -> list[str]:
    errors: list[str] = []
    if not firstname.strip():
        errors.append("Fornavn er påkrevd.")
    if not lastname.strip():
        errors.append("Etternavn er påkrevd.")
    if not email.strip():
        errors.append("E-post mangler.")
    elif not EMAIL_RE.match(email.strip()):
        errors.append("Ugyldig e-postadresse.")
    return errors


def members_to_frame(members: list[Member]) -> pd.DataFrame:
    if not members:
        return pd.DataFrame(columns=MEMBER_COLUMNS)
    return pd.DataFrame(
        [
            {
                "id": m.id,
                "firstname": m.firstname,
                "lastname": m.lastname,
                "email": m.email,
                "privilege": m.privilege.label if m.privilege else "",
                "is_membership_active": m.is_membership_active,
                "is_banned": m.is_banned,
                "created_at": m.created_at,
                "created_by": m.created_by,
                "password_set_at": m.password_set_at,
            }
            for m in members
        ],
        columns=MEMBER_COLUMNS,
    )


def queue_to_frame(entries: list[PrintQueueEntry]) -> pd.DataFrame:
    if not entries:
        return pd.DataFrame(columns=QUEUE_COLUMNS)
    return pd.DataFrame([asdict(e) for e in entries], columns=QUEUE_COLUMNS)


def members_to_csv_bytes(members: list[Member]) -> bytes:
    return members_to_frame(members).to_csv(index=False).encode("utf-8")


def insert_sample_data(created_by: str | None = None) -> list[str]:
    """
    Insert a few members, certificate types, groups and applications.
    Safe to run multiple times: emails get a numeric suffix when taken.
    """
    now = db.now_iso()
    people = [
        ("Kari", "Nordmann", 1, 1),
        ("Ola", "Hansen", 2, 1),
        ("Ingrid", "Berg", 3, 1),
        ("Per", "Lie", 1, 0),
    ]

    ids = []
    for firstname, lastname, level, active in people:
        base = f"{firstname}.{lastname}".lower()
        email = f"{base}@example.org"
        suffix = 1
        while db.fetch_one("SELECT 1 FROM members WHERE email = ? COLLATE NOCASE", (email,)):
            suffix += 1
            email = f"{base}{suffix}@example.org"
        mid = db.new_id()
        db.execute(
            """
            INSERT INTO members(id, firstname, lastname, email, privilege_type,
                is_membership_active, created_at, created_by)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (mid, firstname, lastname, email, level, active, now, created_by),
        )
        ids.append(mid)

    db.executemany(
        "INSERT OR IGNORE INTO certificate_type(type) VALUES(?)",
        [("Båtfører",), ("Førstehjelp",)],
    )
    cert = db.fetch_one("SELECT id FROM certificate_type ORDER BY id LIMIT 1")

    db.executemany(
        "INSERT INTO certification_application(seeker_id, certificate_id, created_at) VALUES(?,?,?)",
        [(ids[0], cert["id"], now), (ids[1], cert["id"], now)],
    )
    db.executemany(
        "INSERT INTO activity_group(name, description, group_leader) VALUES(?,?,?)",
        [("Padling", "Ukentlige turer", ids[2]), ("Dugnad", None, None)],
    )
    return ids
