"""
certification.py
Certification applications: list them, accept, reject or delete (group leader and up).
"""

from __future__ import annotations

import logging

import db
from audit import log_admin_action
from errors import AuthorizationDenied, NotFound
from models import ActorContext, CertificationApplication
from privileges import can_manage_certificates

logger = logging.getLogger(__name__)

APPLICATION_SQL = """
    SELECT a.*, m.firstname, m.lastname, t.type AS certificate_type
    FROM certification_application a
    LEFT JOIN members m ON m.id = a.seeker_id
    LEFT JOIN certificate_type t ON t.id = a.certificate_id
"""


def _authorize(actor: ActorContext) -> None:
    if not can_manage_certificates(actor.privilege):
        raise AuthorizationDenied()


def get_application(app_id: int) -> CertificationApplication:
    row = db.fetch_one(APPLICATION_SQL + " WHERE a.id = ?", (app_id,))
    if not row:
        raise NotFound("Fant ikke søknaden.")
    return CertificationApplication.from_row(row)


def list_applications(actor: ActorContext) -> tuple[list[CertificationApplication], list[CertificationApplication]]:
    """Returns (unprocessed, processed), oldest first."""
    _authorize(actor)
    rows = db.fetch_all(APPLICATION_SQL + " ORDER BY a.created_at ASC, a.id ASC")
    apps = [CertificationApplication.from_row(r) for r in rows]
    unprocessed = [a for a in apps if not a.is_processed]
    processed = [a for a in apps if a.is_processed]
    return unprocessed, processed


def accept_application(actor: ActorContext, app_id: int) -> CertificationApplication:
    _authorize(actor)
    get_application(app_id)
    db.mutate(
        """
        UPDATE certification_application
        SET verified = 1, rejected = 0, time_accepted = ?, verified_by = ?
        WHERE id = ?
        """,
        (db.now_iso(), actor.user_id, app_id),
    )
    log_admin_action(actor.user_id, "certification.accept", "certification_application", str(app_id))
    return get_application(app_id)


def reject_application(actor: ActorContext, app_id: int) -> CertificationApplication:
    _authorize(actor)
    get_application(app_id)
    db.mutate(
        "UPDATE certification_application SET rejected = 1, verified = 0 WHERE id = ?",
        (app_id,),
    )
    log_admin_action(actor.user_id, "certification.reject", "certification_application", str(app_id))
    return get_application(app_id)


def delete_application(actor: ActorContext, app_id: int) -> None:
    """Deleting a rejected application lets the member apply again."""
    _authorize(actor)
    application = get_application(app_id)
    db.mutate("DELETE FROM certification_application WHERE id = ?", (app_id,))
    log_admin_action(
        actor.user_id, "certification.delete", "certification_application", str(app_id),
        details={"seeker_id": application.seeker_id, "certificate_type": application.certificate_type},
    )
