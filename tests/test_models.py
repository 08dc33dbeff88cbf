import pytest

from errors import MalformedRow
from models import ActivityGroup, ActorContext, Member, PrintQueueEntry, PrintRequest
from privileges import PrivilegeLevel

MEMBER_ROW = {
    "id": "m-1",
    "firstname": "Kari",
    "lastname": "Nordmann",
    "email": "kari@example.org",
    "privilege_type": 2,
    "is_membership_active": 1,
    "is_banned": 0,
    "created_at": "2026-01-01T00:00:00+00:00",
    "created_by": None,
    "password_set_at": None,
}


def test_member_from_row():
    member = Member.from_row(MEMBER_ROW)
    assert member.privilege is PrivilegeLevel.VOLUNTEER
    assert member.is_membership_active is True
    assert member.full_name == "Kari Nordmann"
    assert ActorContext.for_member(member) == ActorContext("m-1", PrivilegeLevel.VOLUNTEER)


def test_member_missing_flags_default_to_false():
    row = dict(MEMBER_ROW, is_membership_active=None)
    del row["is_banned"]
    member = Member.from_row(row)
    assert member.is_membership_active is False
    assert member.is_banned is False


@pytest.mark.parametrize(
    "changes",
    [
        {"privilege_type": 7},
        {"is_banned": "yes"},
        {"email": 3.5},
    ],
)
def test_member_bad_values(changes):
    with pytest.raises(MalformedRow):
        Member.from_row(dict(MEMBER_ROW, **changes))


def test_member_missing_column():
    row = dict(MEMBER_ROW)
    del row["privilege_type"]
    with pytest.raises(MalformedRow, match="privilege_type"):
        Member.from_row(row)


def test_not_a_mapping():
    with pytest.raises(MalformedRow):
        Member.from_row(42)


def test_queue_entry_terminal_states():
    row = {
        "id": 42, "firstname": "K", "lastname": "N", "email": "k@n.no", "ref": "m-1",
        "ref_invoker": "a-1", "is_voluntary": 1, "completed": 0, "error_msg": None,
        "created_at": None,
    }
    assert not PrintQueueEntry.from_row(row).is_terminal
    assert PrintQueueEntry.from_row(dict(row, completed=1)).is_terminal
    assert PrintQueueEntry.from_row(dict(row, error_msg="jam")).is_terminal
    # an empty message is not an error
    assert PrintQueueEntry.from_row(dict(row, error_msg="")).error_msg is None
    with pytest.raises(MalformedRow):
        PrintQueueEntry.from_row(dict(row, id="42"))


def test_print_request_uses_member_level():
    request = PrintRequest.for_member(Member.from_row(dict(MEMBER_ROW, privilege_type=1)))
    assert request.is_voluntary is False
    assert request.ref == "m-1"


def test_group_without_leader():
    group = ActivityGroup.from_row({"id": 1, "name": "Dugnad", "description": None, "group_leader": None})
    assert group.leader_name == "ukjent"
