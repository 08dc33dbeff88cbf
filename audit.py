"""
audit.py
Admin audit log: write one row per administrative action, read it back for the audit page.
"""

from __future__ import annotations

import json
import logging
import sqlite3

import pandas as pd

import db
from errors import AuthorizationDenied, MalformedRow
from models import ActorContext, AuditEntry
from privileges import can_view_audit_logs

logger = logging.getLogger(__name__)

ACTION_LABELS = {
    "member.create": "Opprettet medlem",
    "member.activate": "Aktiverte medlemskap",
    "member.rename": "Oppdaterte navn",
    "member.privilege.update": "Oppdaterte tilgang",
    "member.delete": "Slettet medlem",
    "member.ban": "Utestengte bruker",
    "member.unban": "Opphevet utestenging",
    "member.membership_status.update": "Oppdaterte medlemsstatus",
    "member.password_reset.send": "Tilbakestilte passord",
    "member.password_bootstrap.send": "Sendte engangspassord",
    "member.card_print.enqueue": "La til utskrift",
    "certification.accept": "Godkjente sertifisering",
    "certification.reject": "Avslo sertifisering",
    "certification.delete": "Slettet søknad",
}


def log_admin_action(
    actor_id: str,
    action: str,
    target_table: str | None = None,
    target_id: str | None = None,
    status: str = "ok",
    error_message: str | None = None,
    details: dict | None = None,
) -> int | None:
    """
    Insert an audit row and return its id.

    Best effort: a failing insert is logged and swallowed so the action that
    already happened is still reported as done.
    """
    try:
        return db.execute(
            """
            INSERT INTO admin_audit_log(created_at, actor_id, action, target_table,
                target_id, status, error_message, details)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (
                db.now_iso(),
                actor_id,
                action,
                target_table,
                target_id,
                status,
                error_message,
                json.dumps(details or {}, default=str),
            ),
        )
    except sqlite3.Error:
        logger.exception("Could not write audit entry for %s by %s", action, actor_id)
        return None


def _parse_details(raw) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedRow("admin_audit_log", "details is not JSON") from exc
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def list_audit_log(actor: ActorContext, limit: int = 200, action: str | None = None) -> list[AuditEntry]:
    if not can_view_audit_logs(actor.privilege):
        raise AuthorizationDenied()

    sql = "SELECT * FROM admin_audit_log WHERE 1=1"
    params: list = []
    if action:
        sql += " AND action = ?"
        params.append(action)
    sql += " ORDER BY id DESC LIMIT ?"
    params.append(int(limit))

    entries = []
    for r in db.fetch_all(sql, tuple(params)):
        entries.append(AuditEntry.from_row(r, _parse_details(r["details"])))
    return entries


def action_label(action: str) -> str:
    return ACTION_LABELS.get(action, action)


def audit_to_frame(entries: list[AuditEntry]) -> pd.DataFrame:
    columns = ["id", "created_at", "event", "actor_id", "target_table", "target_id", "status", "error_message"]
    if not entries:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(
        [
            {
                "id": e.id,
                "created_at": e.created_at,
                "event": action_label(e.action),
                "actor_id": e.actor_id,
                "target_table": e.target_table,
                "target_id": e.target_id,
                "status": e.status,
                "error_message": e.error_message,
            }
            for e in entries
        ],
        columns=columns,
    )


def audit_to_csv_bytes(entries: list[AuditEntry]) -> bytes:
    return audit_to_frame(entries).to_csv(index=False).encode("utf-8")
