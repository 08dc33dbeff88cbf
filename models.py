"""
models.py
Domain dataclasses and parsing of store rows into them.

Rows come back from sqlite3 as loosely typed mappings; from_row() checks the
shape once at the boundary and raises MalformedRow if it is wrong.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from errors import MalformedRow
from privileges import PrivilegeLevel, is_voluntary_or_higher, normalize_privilege


def _as_dict(row: Any, table: str) -> dict:
    try:
        return dict(row)
    except (TypeError, ValueError) as exc:
        raise MalformedRow(table, f"not a mapping ({type(row).__name__})") from exc


def _require(data: Mapping, key: str, table: str) -> Any:
    if key not in data:
        raise MalformedRow(table, f"missing column '{key}'")
    return data[key]


def _str(data: Mapping, key: str, table: str) -> str:
    value = _require(data, key, table)
    if value is None:
        return ""
    if not isinstance(value, (str, int)):
        raise MalformedRow(table, f"column '{key}' is not text")
    return str(value)


def _opt_str(data: Mapping, key: str, table: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, (str, int)):
        raise MalformedRow(table, f"column '{key}' is not text")
    return str(value)


def _bool(data: Mapping, key: str, table: str, default: Optional[bool] = None) -> bool:
    if key not in data and default is not None:
        return default
    value = _require(data, key, table)
    if value is None and default is not None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise MalformedRow(table, f"column '{key}' is not a boolean: {value!r}")


def _int(data: Mapping, key: str, table: str) -> int:
    value = _require(data, key, table)
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedRow(table, f"column '{key}' is not an integer: {value!r}")
    return value


@dataclass(frozen=True)
class ActorContext:
    """Who is performing an administrative action."""

    user_id: str
    privilege: Optional[PrivilegeLevel]

    @classmethod
    def for_member(cls, member: "Member") -> "ActorContext":
        return cls(user_id=member.id, privilege=member.privilege)


@dataclass(frozen=True)
class Member:
    id: str
    firstname: str
    lastname: str
    email: str
    privilege: Optional[PrivilegeLevel]
    is_membership_active: bool
    is_banned: bool
    created_at: Optional[str]
    created_by: Optional[str]
    password_set_at: Optional[str]

    @property
    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()

    @classmethod
    def from_row(cls, row: Any) -> "Member":
        t = "members"
        data = _as_dict(row, t)
        raw_level = _require(data, "privilege_type", t)
        privilege = normalize_privilege(raw_level)
        if raw_level is not None and privilege is None:
            raise MalformedRow(t, f"privilege_type out of range: {raw_level!r}")
        return cls(
            id=_str(data, "id", t),
            firstname=_str(data, "firstname", t),
            lastname=_str(data, "lastname", t),
            email=_str(data, "email", t),
            privilege=privilege,
            is_membership_active=_bool(data, "is_membership_active", t, default=False),
            is_banned=_bool(data, "is_banned", t, default=False),
            created_at=_opt_str(data, "created_at", t),
            created_by=_opt_str(data, "created_by", t),
            password_set_at=_opt_str(data, "password_set_at", t),
        )


@dataclass(frozen=True)
class PrintRequest:
    """The card subject of a print job; the invoker comes from the actor."""

    firstname: str
    lastname: str
    email: str
    ref: str
    is_voluntary: bool

    @classmethod
    def for_member(cls, member: Member) -> "PrintRequest":
        return cls(
            firstname=member.firstname,
            lastname=member.lastname,
            email=member.email,
            ref=member.id,
            is_voluntary=is_voluntary_or_higher(member.privilege),
        )


@dataclass(frozen=True)
class PrintQueueEntry:
    id: int
    firstname: str
    lastname: str
    email: str
    ref: str
    ref_invoker: str
    is_voluntary: bool
    completed: bool
    error_msg: Optional[str]
    created_at: Optional[str]

    @property
    def is_terminal(self) -> bool:
        return self.completed or self.error_msg is not None

    @classmethod
    def from_row(cls, row: Any) -> "PrintQueueEntry":
        t = "printer_queue"
        data = _as_dict(row, t)
        return cls(
            id=_int(data, "id", t),
            firstname=_str(data, "firstname", t),
            lastname=_str(data, "lastname", t),
            email=_str(data, "email", t),
            ref=_str(data, "ref", t),
            ref_invoker=_str(data, "ref_invoker", t),
            is_voluntary=_bool(data, "is_voluntary", t, default=False),
            completed=_bool(data, "completed", t),
            error_msg=_opt_str(data, "error_msg", t) or None,
            created_at=_opt_str(data, "created_at", t),
        )


@dataclass(frozen=True)
class CertificationApplication:
    id: int
    seeker_id: str
    seeker_name: str
    certificate_type: Optional[str]
    verified: bool
    rejected: bool
    verified_by: Optional[str]
    time_accepted: Optional[str]
    created_at: Optional[str]

    @property
    def is_processed(self) -> bool:
        return self.verified or self.rejected

    @classmethod
    def from_row(cls, row: Any) -> "CertificationApplication":
        t = "certification_application"
        data = _as_dict(row, t)
        name = f"{data.get('firstname') or ''} {data.get('lastname') or ''}".strip()
        return cls(
            id=_int(data, "id", t),
            seeker_id=_str(data, "seeker_id", t),
            seeker_name=name or "ukjent",
            certificate_type=_opt_str(data, "certificate_type", t),
            verified=_bool(data, "verified", t, default=False),
            rejected=_bool(data, "rejected", t, default=False),
            verified_by=_opt_str(data, "verified_by", t),
            time_accepted=_opt_str(data, "time_accepted", t),
            created_at=_opt_str(data, "created_at", t),
        )


@dataclass(frozen=True)
class ActivityGroup:
    id: int
    name: str
    description: Optional[str]
    leader_id: Optional[str]
    leader_name: str

    @classmethod
    def from_row(cls, row: Any) -> "ActivityGroup":
        t = "activity_group"
        data = _as_dict(row, t)
        leader = f"{data.get('leader_firstname') or ''} {data.get('leader_lastname') or ''}".strip()
        return cls(
            id=_int(data, "id", t),
            name=_str(data, "name", t),
            description=_opt_str(data, "description", t),
            leader_id=_opt_str(data, "group_leader", t),
            leader_name=leader or "ukjent",
        )


@dataclass(frozen=True)
class AuditEntry:
    id: int
    created_at: Optional[str]
    actor_id: Optional[str]
    action: str
    target_table: Optional[str]
    target_id: Optional[str]
    status: str
    error_message: Optional[str]
    details: dict

    @classmethod
    def from_row(cls, row: Any, details: dict) -> "AuditEntry":
        t = "admin_audit_log"
        data = _as_dict(row, t)
        return cls(
            id=_int(data, "id", t),
            created_at=_opt_str(data, "created_at", t),
            actor_id=_opt_str(data, "actor_id", t),
            action=_str(data, "action", t),
            target_table=_opt_str(data, "target_table", t),
            target_id=_opt_str(data, "target_id", t),
            status=_str(data, "status", t) or "unknown",
            error_message=_opt_str(data, "error_message", t),
            details=details,
        )
