"""
auth.py
Password utilities (bcrypt hashing, verify, login, change password, temporary passwords).

Uses bcrypt directly rather than passlib to avoid backend auto-detection issues.
"""

from __future__ import annotations

import logging
import secrets

import bcrypt

import db
from models import ActorContext, Member

logger = logging.getLogger(__name__)

LOWERCASE_CHARS = "abcdefghijklmnopqrstuvwxyz"
UPPERCASE_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
NUMBER_CHARS = "0123456789"
SYMBOL_CHARS = "!@#$%"
REQUIRED_SETS = (LOWERCASE_CHARS, UPPERCASE_CHARS, NUMBER_CHARS)
ALL_CHARS = LOWERCASE_CHARS + UPPERCASE_CHARS + NUMBER_CHARS + SYMBOL_CHARS


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password.
    We truncate to 72 bytes to avoid ValueError and to make behavior explicit.
    """
    pw = password.encode("utf-8")
    if len(pw) > 72:
        pw = pw[:72]
    return pw


def hash_password(password: str) -> str:
    secret = _to_bcrypt_secret(password)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(secret, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    secret = _to_bcrypt_secret(password)
    return bcrypt.checkpw(secret, password_hash.encode("utf-8"))


def get_member_row_by_email(email: str):
    return db.fetch_one("SELECT * FROM members WHERE email = ? COLLATE NOCASE", (email.strip(),))


def login(email: str, password: str) -> ActorContext | None:
    """Returns the actor for valid credentials, None otherwise (banned members included)."""
    row = get_member_row_by_email(email)
    if not row or not row["password_hash"]:
        return None
    if not verify_password(password, row["password_hash"]):
        return None
    member = Member.from_row(row)
    if member.is_banned:
        logger.warning("Banned member %s attempted to log in", member.id)
        return None
    return ActorContext.for_member(member)


def change_password(member_id: str, new_password: str) -> None:
    db.execute(
        "UPDATE members SET password_hash = ?, password_set_at = ? WHERE id = ?",
        (hash_password(new_password), db.now_iso(), member_id),
    )


def needs_password_change(member_id: str) -> bool:
    """True until the member has set a password of their own (bootstrap admin, temporary passwords)."""
    row = db.fetch_one("SELECT password_set_at FROM members WHERE id = ?", (member_id,))
    return bool(row) and not row["password_set_at"]


def generate_temporary_password(length: int = 18) -> str:
    """
    One-time password with at least one lowercase letter, one uppercase
    letter and one digit, in random positions.
    """
    if length < len(REQUIRED_SETS):
        raise ValueError(f"Temporary password length must be at least {len(REQUIRED_SETS)}.")

    chars = [secrets.choice(charset) for charset in REQUIRED_SETS]
    while len(chars) < length:
        chars.append(secrets.choice(ALL_CHARS))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)
