"""
members.py
Member administration. Every mutating function takes the acting user's
ActorContext, checks it against the privilege rules and only then writes.
Each action leaves an entry in the admin audit log.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Callable, Iterable

import auth
import db
from audit import log_admin_action
from config import settings
from errors import (
    AuthorizationDenied,
    NotFound,
    RemoteMutationFailed,
    ValidationFailed,
)
from models import ActorContext, Member
from privileges import (
    PrivilegeLevel,
    can_access_dashboard,
    can_assign_privilege,
    can_ban_members,
    can_delete_members,
    can_edit_privileges,
    can_manage_members,
    can_manage_membership_status,
    can_bulk_temporary_passwords,
    can_reset_password_for_target,
    can_reset_passwords,
    can_set_own_privilege,
    normalize_privilege,
)
from utils import normalize_email, normalize_ids, validate_member_inputs

logger = logging.getLogger(__name__)

MEMBER_NOT_FOUND = "Medlem ikke funnet."


@dataclass
class BulkResult:
    """Outcome of a best-effort action over many members (no rollback)."""

    requested: list[str]
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def status(self) -> str:
        if not self.failed:
            return "ok"
        return "partial" if self.updated else "error"

    def summary(self) -> str:
        return f"{len(self.updated)} oppdatert, {len(self.unchanged)} uendret, {len(self.failed)} feilet"


def _authorize(actor: ActorContext, check: Callable, action: str) -> None:
    if not check(actor.privilege):
        logger.info("Denied %s for %s (level %s)", action, actor.user_id, actor.privilege)
        raise AuthorizationDenied()


def _single_target(ids: list[str]) -> str | None:
    return ids[0] if len(ids) == 1 else None


def _fetch_by_ids(member_ids: list[str]) -> dict[str, Member]:
    if not member_ids:
        return {}
    rows = db.fetch_all(
        f"SELECT * FROM members WHERE id IN ({db.placeholders(member_ids)})",
        tuple(member_ids),
    )
    return {m.id: m for m in (Member.from_row(r) for r in rows)}


def get_member(member_id: str) -> Member:
    row = db.fetch_one("SELECT * FROM members WHERE id = ?", (member_id,))
    if not row:
        raise NotFound(MEMBER_NOT_FOUND)
    return Member.from_row(row)


def find_member_by_email(email: str) -> Member | None:
    row = auth.get_member_row_by_email(normalize_email(email))
    return Member.from_row(row) if row else None


def load_actor(member_id: str) -> ActorContext:
    """Re-reads the actor's current level from the store. Banned members get no context."""
    member = get_member(member_id)
    if member.is_banned:
        logger.warning("Banned member %s tried to act", member_id)
        raise AuthorizationDenied("Kontoen er utestengt.")
    return ActorContext.for_member(member)


def list_members(actor: ActorContext, search: str = "", status: str = "All") -> list[Member]:
    _authorize(actor, can_access_dashboard, "member.list")

    sql = "SELECT * FROM members WHERE 1=1"
    params: list = []

    if search.strip():
        sql += " AND (firstname LIKE ? OR lastname LIKE ? OR email LIKE ?)"
        like = f"%{search.strip()}%"
        params.extend([like, like, like])

    if status == "active":
        sql += " AND is_membership_active = 1 AND is_banned = 0"
    elif status == "inactive":
        sql += " AND is_membership_active = 0 AND is_banned = 0"
    elif status == "banned":
        sql += " AND is_banned = 1"

    sql += " ORDER BY lastname ASC, firstname ASC"
    return [Member.from_row(r) for r in db.fetch_all(sql, tuple(params))]


def _level_for(voluntary: bool) -> PrivilegeLevel:
    return PrivilegeLevel.VOLUNTEER if voluntary else PrivilegeLevel.MEMBER


def create_member(
    actor: ActorContext,
    firstname: str,
    lastname: str,
    email: str,
    voluntary: bool = False,
) -> Member:
    _authorize(actor, can_manage_members, "member.create")
    level = _level_for(voluntary)
    if not can_assign_privilege(actor.privilege, level):
        raise AuthorizationDenied()

    errors = validate_member_inputs(firstname, lastname, email)
    if errors:
        raise ValidationFailed(" ".join(errors))

    normalized = normalize_email(email)
    member_id = db.new_id()
    try:
        db.execute(
            """
            INSERT INTO members(id, firstname, lastname, email, privilege_type,
                is_membership_active, created_at, created_by)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (member_id, firstname.strip(), lastname.strip(), normalized, int(level), 1, db.now_iso(), actor.user_id),
        )
    except sqlite3.IntegrityError as exc:
        log_admin_action(
            actor.user_id, "member.create", "members", normalized,
            status="error", error_message="E-posten er allerede registrert.",
            details={"email": normalized},
        )
        raise ValidationFailed("E-posten er allerede registrert.") from exc
    except sqlite3.Error as exc:
        raise RemoteMutationFailed(str(exc)) from exc

    log_admin_action(
        actor.user_id, "member.create", "members", member_id,
        details={"email": normalized, "privilege_type": int(level)},
    )
    return get_member(member_id)


def activate_member(actor: ActorContext, email: str, voluntary: bool = False) -> Member:
    """Re-activates an existing, inactive membership found by email."""
    _authorize(actor, can_manage_members, "member.activate")
    level = _level_for(voluntary)
    if not can_assign_privilege(actor.privilege, level):
        raise AuthorizationDenied()

    normalized = normalize_email(email)
    if not normalized:
        raise ValidationFailed("E-post mangler.")

    member = find_member_by_email(normalized)
    message = None
    if member is None:
        message = "Fant ikke medlem med denne e-posten."
    elif member.is_banned:
        message = "E-posten kan ikke brukes."
    elif member.is_membership_active:
        message = "Dette medlemskapet er allerede aktivt."
    if message:
        log_admin_action(
            actor.user_id, "member.activate", "members", member.id if member else normalized,
            status="error", error_message=message, details={"email": normalized},
        )
        raise ValidationFailed(message)

    db.mutate(
        "UPDATE members SET privilege_type = ?, is_membership_active = 1 WHERE id = ?",
        (int(level), member.id),
    )
    log_admin_action(
        actor.user_id, "member.activate", "members", member.id,
        details={"email": normalized, "privilege_type": int(level)},
    )
    return get_member(member.id)


def update_name(actor: ActorContext, member_id: str, firstname: str, lastname: str) -> Member:
    _authorize(actor, can_manage_members, "member.rename")
    if not firstname.strip() or not lastname.strip():
        raise ValidationFailed("Fornavn og etternavn er påkrevd.")

    existing = get_member(member_id)
    db.mutate(
        "UPDATE members SET firstname = ?, lastname = ? WHERE id = ?",
        (firstname.strip(), lastname.strip(), member_id),
    )
    log_admin_action(
        actor.user_id, "member.rename", "members", member_id,
        details={
            "before": {"firstname": existing.firstname, "lastname": existing.lastname},
            "after": {"firstname": firstname.strip(), "lastname": lastname.strip()},
        },
    )
    return get_member(member_id)


def set_privilege(actor: ActorContext, member_ids: Iterable[str] | str, level: int | PrivilegeLevel) -> BulkResult:
    """
    Change privilege_type for one or more members. Each member is checked
    and written on its own; one failure does not stop or undo the others.
    """
    _authorize(actor, can_edit_privileges, "member.privilege.update")
    desired = normalize_privilege(level)
    if desired is None:
        raise ValidationFailed("Ugyldig tilgangsnivå.")
    ids = normalize_ids(member_ids)
    if not ids:
        raise ValidationFailed("Medlems-ID mangler.")

    result = BulkResult(requested=ids)
    previous: dict[str, int | None] = {}
    targets = _fetch_by_ids(ids)

    for member_id in ids:
        target = targets.get(member_id)
        if target is None:
            result.failed[member_id] = MEMBER_NOT_FOUND
            continue
        if target.privilege == desired:
            result.unchanged.append(member_id)
            continue
        if member_id == actor.user_id and not can_set_own_privilege(actor.privilege, desired):
            result.failed[member_id] = "Du kan ikke gi deg selv høyere tilgang."
            continue
        if not can_assign_privilege(actor.privilege, desired, target.privilege):
            result.failed[member_id] = "Mangler tilgang til å gi dette nivået."
            continue
        try:
            db.mutate("UPDATE members SET privilege_type = ? WHERE id = ?", (int(desired), member_id))
        except RemoteMutationFailed as exc:
            result.failed[member_id] = exc.message
            continue
        result.updated.append(member_id)
        previous[member_id] = int(target.privilege) if target.privilege else None

    log_admin_action(
        actor.user_id, "member.privilege.update", "members", _single_target(ids),
        status=result.status,
        error_message=None if not result.failed else "En eller flere medlemmer kunne ikke oppdateres.",
        details={
            "member_ids": ids,
            "privilege_type": int(desired),
            "updated_member_ids": result.updated,
            "unchanged_member_ids": result.unchanged,
            "failed": result.failed,
            "previous_privilege_types": previous,
        },
    )
    return result


def set_membership_status(actor: ActorContext, member_ids: Iterable[str] | str, active: bool) -> BulkResult:
    _authorize(actor, can_manage_membership_status, "member.membership_status.update")
    ids = normalize_ids(member_ids)
    if not ids:
        raise ValidationFailed("Medlems-ID mangler.")

    result = BulkResult(requested=ids)
    targets = _fetch_by_ids(ids)
    for member_id in ids:
        target = targets.get(member_id)
        if target is None:
            result.failed[member_id] = MEMBER_NOT_FOUND
            continue
        # banned members must not come back through this path
        if active and target.is_banned:
            result.failed[member_id] = "Kontoen kan ikke aktiveres."
            continue
        if target.is_membership_active == active:
            result.unchanged.append(member_id)
            continue
        try:
            db.mutate("UPDATE members SET is_membership_active = ? WHERE id = ?", (int(active), member_id))
        except RemoteMutationFailed as exc:
            result.failed[member_id] = exc.message
            continue
        result.updated.append(member_id)

    log_admin_action(
        actor.user_id, "member.membership_status.update", "members", _single_target(ids),
        status=result.status,
        error_message=None if not result.failed else "Én eller flere brukere kunne ikke oppdateres.",
        details={
            "member_ids": ids,
            "is_active": active,
            "updated_member_ids": result.updated,
            "unchanged_member_ids": result.unchanged,
            "failed": result.failed,
        },
    )
    return result


def ban_member(actor: ActorContext, member_id: str) -> bool:
    """Bans and deactivates a member. Returns False if they were already banned."""
    _authorize(actor, can_ban_members, "member.ban")
    if member_id == actor.user_id:
        raise ValidationFailed("Du kan ikke banne deg selv.")

    target = get_member(member_id)
    if target.is_banned:
        return False

    try:
        db.mutate(
            "UPDATE members SET is_banned = 1, is_membership_active = 0 WHERE id = ?",
            (member_id,),
        )
    except RemoteMutationFailed as exc:
        log_admin_action(
            actor.user_id, "member.ban", "members", member_id,
            status="error", error_message=exc.message,
        )
        raise
    log_admin_action(
        actor.user_id, "member.ban", "members", member_id,
        details={"previous_is_membership_active": target.is_membership_active},
    )
    return True


def unban_member(actor: ActorContext, member_id: str) -> bool:
    """Lifts a ban; membership stays inactive until re-activated."""
    _authorize(actor, can_ban_members, "member.unban")
    target = get_member(member_id)
    if not target.is_banned:
        return False

    db.mutate("UPDATE members SET is_banned = 0 WHERE id = ?", (member_id,))
    log_admin_action(actor.user_id, "member.unban", "members", member_id)
    return True


def delete_members(actor: ActorContext, member_ids: Iterable[str] | str) -> BulkResult:
    _authorize(actor, can_delete_members, "member.delete")
    ids = normalize_ids(member_ids)
    if not ids:
        raise ValidationFailed("Medlems-ID mangler.")
    if actor.user_id in ids:
        raise ValidationFailed("Du kan ikke slette din egen bruker.")

    result = BulkResult(requested=ids)
    snapshots = _fetch_by_ids(ids)
    for member_id in ids:
        if member_id not in snapshots:
            result.failed[member_id] = MEMBER_NOT_FOUND
            continue
        try:
            db.mutate("DELETE FROM members WHERE id = ?", (member_id,))
        except RemoteMutationFailed as exc:
            result.failed[member_id] = exc.message
            continue
        result.updated.append(member_id)

    log_admin_action(
        actor.user_id, "member.delete", "members", _single_target(ids),
        status=result.status,
        error_message=None if not result.failed else "Kunne ikke slette alle brukere.",
        details={
            "requested_member_ids": ids,
            "deleted_member_ids": result.updated,
            "deleted_members": [
                {
                    "id": m.id,
                    "firstname": m.firstname,
                    "lastname": m.lastname,
                    "email": m.email,
                    "privilege_type": int(m.privilege) if m.privilege else None,
                }
                for m in (snapshots[i] for i in result.updated)
            ],
            "failed": result.failed,
        },
    )
    return result


def reset_password(actor: ActorContext, member_id: str) -> str:
    """
    Sets a fresh temporary password for the member and returns it (shown
    once to the admin). password_set_at is cleared until the member picks
    their own.
    """
    _authorize(actor, can_reset_passwords, "member.password_reset.send")
    target = get_member(member_id)
    if target.is_banned:
        raise ValidationFailed("Kontoen er utestengt.")
    if not can_reset_password_for_target(actor.privilege, target.privilege):
        logger.info("Denied password reset of %s for %s", member_id, actor.user_id)
        log_admin_action(
            actor.user_id, "member.password_reset.send", "members", member_id,
            status="error", error_message="Mangler tilgang.",
        )
        raise AuthorizationDenied()

    temporary = auth.generate_temporary_password(settings.temporary_password_length)
    db.mutate(
        "UPDATE members SET password_hash = ?, password_set_at = NULL WHERE id = ?",
        (auth.hash_password(temporary), member_id),
    )
    log_admin_action(
        actor.user_id, "member.password_reset.send", "members", member_id,
        details={"email": target.email},
    )
    return temporary


def bootstrap_passwords(actor: ActorContext, member_ids: Iterable[str] | str) -> tuple[BulkResult, dict[str, str]]:
    """
    IT only: give each selected member a fresh temporary password.
    Banned and unknown members are skipped. Returns the result together with
    the passwords by member id, to be handed out once.
    """
    _authorize(actor, can_bulk_temporary_passwords, "member.password_bootstrap.send")
    ids = normalize_ids(member_ids)
    if not ids:
        raise ValidationFailed("Medlems-ID mangler.")

    result = BulkResult(requested=ids)
    passwords: dict[str, str] = {}
    targets = _fetch_by_ids(ids)
    for member_id in ids:
        target = targets.get(member_id)
        if target is None:
            result.failed[member_id] = MEMBER_NOT_FOUND
            continue
        if target.is_banned:
            result.failed[member_id] = "Kontoen er utestengt."
            continue
        temporary = auth.generate_temporary_password(settings.temporary_password_length)
        try:
            db.mutate(
                "UPDATE members SET password_hash = ?, password_set_at = NULL WHERE id = ?",
                (auth.hash_password(temporary), member_id),
            )
        except RemoteMutationFailed as exc:
            result.failed[member_id] = exc.message
            continue
        result.updated.append(member_id)
        passwords[member_id] = temporary

    log_admin_action(
        actor.user_id, "member.password_bootstrap.send", "members", _single_target(ids),
        status=result.status,
        error_message=None if not result.failed else "Noen medlemmer kunne ikke oppdateres.",
        details={
            "requested_member_ids": ids,
            "updated_member_ids": result.updated,
            "failed": result.failed,
        },
    )
    return result, passwords
