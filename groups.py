"""
groups.py
Activity groups with their leaders.
"""

from __future__ import annotations

import db
from errors import AuthorizationDenied
from models import ActivityGroup, ActorContext
from privileges import can_access_dashboard


def list_groups(actor: ActorContext) -> list[ActivityGroup]:
    if not can_access_dashboard(actor.privilege):
        raise AuthorizationDenied()
    rows = db.fetch_all(
        """
        SELECT g.id, g.name, g.description, g.group_leader,
               m.firstname AS leader_firstname, m.lastname AS leader_lastname
        FROM activity_group g
        LEFT JOIN members m ON m.id = g.group_leader
        ORDER BY g.name ASC
        """
    )
    return [ActivityGroup.from_row(r) for r in rows]
