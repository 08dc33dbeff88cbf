"""
privileges.py
Privilege levels and the capability checks built on them.

All checks are plain functions of (actor level, target level, desired level).
They never raise; a missing or invalid actor level denies everything.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Optional


class PrivilegeLevel(IntEnum):
    MEMBER = 1
    VOLUNTEER = 2
    GROUP_LEADER = 3
    BOARD = 4
    IT = 5

    @property
    def label(self) -> str:
        return PRIVILEGE_LABELS[self]


PRIVILEGE_LABELS = {
    PrivilegeLevel.MEMBER: "Medlem",
    PrivilegeLevel.VOLUNTEER: "Frivillig",
    PrivilegeLevel.GROUP_LEADER: "Gruppeleder",
    PrivilegeLevel.BOARD: "Stortinget",
    PrivilegeLevel.IT: "IT",
}

# Minimum level per capability. Keep every threshold here.
REQUIREMENTS = {
    "dashboard_access": PrivilegeLevel.VOLUNTEER,
    "manage_members": PrivilegeLevel.VOLUNTEER,
    "manage_certificates": PrivilegeLevel.GROUP_LEADER,
    "reset_passwords": PrivilegeLevel.GROUP_LEADER,
    "delete_members": PrivilegeLevel.BOARD,
    "manage_membership_status": PrivilegeLevel.BOARD,
    "ban_members": PrivilegeLevel.BOARD,
    "view_audit_logs": PrivilegeLevel.BOARD,
    "bulk_temporary_passwords": PrivilegeLevel.IT,
}


def normalize_privilege(value: Any) -> Optional[PrivilegeLevel]:
    """Map a stored/loose value to a PrivilegeLevel, or None if it is not one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    try:
        return PrivilegeLevel(int(value))
    except (TypeError, ValueError):
        return None


def meets(value: Any, requirement: str) -> bool:
    level = normalize_privilege(value)
    return level is not None and level >= REQUIREMENTS[requirement]


def can_access_dashboard(value: Any) -> bool:
    return meets(value, "dashboard_access")


def can_manage_members(value: Any) -> bool:
    return meets(value, "manage_members")


def can_manage_certificates(value: Any) -> bool:
    return meets(value, "manage_certificates")


def can_reset_passwords(value: Any) -> bool:
    return meets(value, "reset_passwords")


def can_delete_members(value: Any) -> bool:
    return meets(value, "delete_members")


def can_manage_membership_status(value: Any) -> bool:
    return meets(value, "manage_membership_status")


def can_ban_members(value: Any) -> bool:
    return meets(value, "ban_members")


def can_view_audit_logs(value: Any) -> bool:
    return meets(value, "view_audit_logs")


def can_bulk_temporary_passwords(value: Any) -> bool:
    return meets(value, "bulk_temporary_passwords")


def is_voluntary_or_higher(value: Any) -> bool:
    level = normalize_privilege(value)
    return level is not None and level >= PrivilegeLevel.VOLUNTEER


def is_membership_active(active_flag: Any) -> bool:
    # SQLite hands booleans back as 0/1
    return active_flag is True or (type(active_flag) is int and active_flag == 1)


def max_assignable(value: Any) -> Optional[PrivilegeLevel]:
    """
    Highest level the actor may hand out:
    - Board and above: up to IT
    - Volunteer: up to Volunteer
    - everyone else: nothing
    """
    level = normalize_privilege(value)
    if level is None:
        return None
    if level >= PrivilegeLevel.BOARD:
        return PrivilegeLevel.IT
    if level == PrivilegeLevel.VOLUNTEER:
        return PrivilegeLevel.VOLUNTEER
    return None


def can_edit_privileges(value: Any) -> bool:
    level = normalize_privilege(value)
    return level is not None and level >= PrivilegeLevel.VOLUNTEER


def can_edit_privilege_for_target(actor: Any, target: Any) -> bool:
    """
    Board and above may edit anyone. A volunteer may only touch members at
    volunteer level or below. A target without a level counts as below;
    a level that is present but invalid is denied.
    """
    level = normalize_privilege(actor)
    if level is None:
        return False
    if level >= PrivilegeLevel.BOARD:
        return True
    if level == PrivilegeLevel.VOLUNTEER:
        if target is None:
            return True
        target_level = normalize_privilege(target)
        return target_level is not None and target_level <= PrivilegeLevel.VOLUNTEER
    return False


def can_assign_privilege(actor: Any, desired: Any, target: Any = None) -> bool:
    desired_level = normalize_privilege(desired)
    ceiling = max_assignable(actor)
    if desired_level is None or ceiling is None:
        return False
    if target is not None and not can_edit_privilege_for_target(actor, target):
        return False
    return desired_level <= ceiling


def can_set_own_privilege(actor: Any, desired: Any) -> bool:
    level = normalize_privilege(actor)
    desired_level = normalize_privilege(desired)
    if level is None or desired_level is None:
        return False
    return desired_level <= level


def can_reset_password_for_target(actor: Any, target: Any) -> bool:
    """Group leader and up, and only for members at or below the actor's own level."""
    level = normalize_privilege(actor)
    target_level = normalize_privilege(target)
    if level is None or target_level is None:
        return False
    return can_reset_passwords(level) and target_level <= level
