import json

import pytest

import auth
import db
import members
from errors import AuthorizationDenied, NotFound, ValidationFailed
from models import ActorContext
from privileges import PrivilegeLevel


def _audit(action):
    rows = db.fetch_all("SELECT * FROM admin_audit_log WHERE action = ? ORDER BY id", (action,))
    return [dict(r, details=json.loads(r["details"])) for r in rows]


def test_list_members_filters(it_admin, make_member):
    active = make_member(firstname="Aktiv")
    inactive = make_member(active=False, firstname="Sovende")
    banned = make_member(banned=True, active=False)

    assert {m.id for m in members.list_members(it_admin, status="inactive")} == {inactive}
    assert {m.id for m in members.list_members(it_admin, status="banned")} == {banned}
    assert active in {m.id for m in members.list_members(it_admin, status="active")}
    assert [m.id for m in members.list_members(it_admin, search="Sovende")] == [inactive]


def test_list_members_requires_dashboard_access(actor_at):
    with pytest.raises(AuthorizationDenied):
        members.list_members(actor_at(PrivilegeLevel.MEMBER))


def test_create_member(actor_at):
    volunteer = actor_at(PrivilegeLevel.VOLUNTEER)
    member = members.create_member(volunteer, " Kari ", "Nordmann", "Kari@Example.org", voluntary=True)

    assert member.email == "kari@example.org"
    assert member.privilege is PrivilegeLevel.VOLUNTEER
    assert member.is_membership_active
    assert member.created_by == volunteer.user_id
    assert _audit("member.create")[0]["target_id"] == member.id


def test_create_member_denied_for_plain_member(actor_at):
    with pytest.raises(AuthorizationDenied):
        members.create_member(actor_at(PrivilegeLevel.MEMBER), "A", "B", "a@b.no")


def test_group_leader_cannot_create_at_any_level(actor_at):
    # a group leader has no assignable ceiling
    with pytest.raises(AuthorizationDenied):
        members.create_member(actor_at(PrivilegeLevel.GROUP_LEADER), "A", "B", "a@b.no")


def test_create_member_duplicate_email(it_admin):
    members.create_member(it_admin, "A", "B", "dup@example.org")
    with pytest.raises(ValidationFailed):
        members.create_member(it_admin, "C", "D", "DUP@example.org")
    assert _audit("member.create")[-1]["status"] == "error"


def test_create_member_validates_input(it_admin):
    with pytest.raises(ValidationFailed):
        members.create_member(it_admin, "", "B", "not-an-email")


def test_activate_member(it_admin, make_member):
    member_id = make_member(active=False)
    email = members.get_member(member_id).email

    member = members.activate_member(it_admin, email, voluntary=True)
    assert member.is_membership_active
    assert member.privilege is PrivilegeLevel.VOLUNTEER

    with pytest.raises(ValidationFailed, match="allerede aktivt"):
        members.activate_member(it_admin, email)


def test_activate_banned_member_refused(it_admin, make_member):
    email = members.get_member(make_member(active=False, banned=True)).email
    with pytest.raises(ValidationFailed):
        members.activate_member(it_admin, email)


def test_update_name(actor_at, make_member):
    member_id = make_member()
    updated = members.update_name(actor_at(PrivilegeLevel.VOLUNTEER), member_id, "Nytt", "Navn")
    assert updated.full_name == "Nytt Navn"
    assert _audit("member.rename")[0]["details"]["after"] == {"firstname": "Nytt", "lastname": "Navn"}

    with pytest.raises(NotFound):
        members.update_name(actor_at(PrivilegeLevel.VOLUNTEER), "missing", "A", "B")


def test_set_privilege_is_best_effort(actor_at, make_member):
    volunteer = actor_at(PrivilegeLevel.VOLUNTEER)
    plain = make_member(PrivilegeLevel.MEMBER)
    leader = make_member(PrivilegeLevel.GROUP_LEADER)
    already = make_member(PrivilegeLevel.VOLUNTEER)

    result = members.set_privilege(volunteer, [plain, leader, already, "missing"], PrivilegeLevel.VOLUNTEER)

    assert result.updated == [plain]
    assert result.unchanged == [already]
    assert set(result.failed) == {leader, "missing"}
    assert result.status == "partial"
    assert members.get_member(plain).privilege is PrivilegeLevel.VOLUNTEER
    assert members.get_member(leader).privilege is PrivilegeLevel.GROUP_LEADER
    assert _audit("member.privilege.update")[0]["status"] == "partial"


def test_volunteer_cannot_promote_above_ceiling(actor_at, make_member):
    target = make_member()
    result = members.set_privilege(actor_at(PrivilegeLevel.VOLUNTEER), target, PrivilegeLevel.GROUP_LEADER)
    assert result.status == "error"
    assert members.get_member(target).privilege is PrivilegeLevel.MEMBER


def test_board_can_promote_to_it(actor_at, make_member):
    target = make_member()
    result = members.set_privilege(actor_at(PrivilegeLevel.BOARD), [target], 5)
    assert result.status == "ok"
    assert members.get_member(target).privilege is PrivilegeLevel.IT


def test_self_promotion_refused_but_self_demotion_allowed(actor_at):
    board = actor_at(PrivilegeLevel.BOARD)

    result = members.set_privilege(board, board.user_id, PrivilegeLevel.IT)
    assert board.user_id in result.failed

    result = members.set_privilege(board, board.user_id, PrivilegeLevel.VOLUNTEER)
    assert result.updated == [board.user_id]


def test_set_privilege_rejects_bad_input(it_admin, actor_at):
    with pytest.raises(ValidationFailed):
        members.set_privilege(it_admin, ["x"], 9)
    with pytest.raises(ValidationFailed):
        members.set_privilege(it_admin, [], PrivilegeLevel.MEMBER)
    with pytest.raises(AuthorizationDenied):
        members.set_privilege(actor_at(PrivilegeLevel.MEMBER), ["x"], PrivilegeLevel.MEMBER)


def test_membership_status_never_reactivates_banned(actor_at, make_member):
    board = actor_at(PrivilegeLevel.BOARD)
    inactive = make_member(active=False)
    banned = make_member(active=False, banned=True)

    result = members.set_membership_status(board, [inactive, banned], True)

    assert result.updated == [inactive]
    assert banned in result.failed
    assert not members.get_member(banned).is_membership_active


def test_membership_status_requires_board(actor_at, make_member):
    with pytest.raises(AuthorizationDenied):
        members.set_membership_status(actor_at(PrivilegeLevel.GROUP_LEADER), make_member(), False)


def test_ban_and_unban(actor_at, make_member):
    board = actor_at(PrivilegeLevel.BOARD)
    target = make_member()

    assert members.ban_member(board, target) is True
    member = members.get_member(target)
    assert member.is_banned and not member.is_membership_active
    assert members.ban_member(board, target) is False

    assert members.unban_member(board, target) is True
    member = members.get_member(target)
    assert not member.is_banned and not member.is_membership_active
    assert [row["action"] for row in _audit("member.ban") + _audit("member.unban")] == ["member.ban", "member.unban"]


def test_cannot_ban_self(actor_at):
    board = actor_at(PrivilegeLevel.BOARD)
    with pytest.raises(ValidationFailed):
        members.ban_member(board, board.user_id)


def test_delete_members(actor_at, make_member):
    board = actor_at(PrivilegeLevel.BOARD)
    doomed = make_member()

    result = members.delete_members(board, [doomed, "missing"])
    assert result.updated == [doomed]
    assert result.failed == {"missing": members.MEMBER_NOT_FOUND}
    with pytest.raises(NotFound):
        members.get_member(doomed)
    entry = _audit("member.delete")[0]
    assert entry["details"]["deleted_members"][0]["id"] == doomed


def test_cannot_delete_self(actor_at):
    board = actor_at(PrivilegeLevel.BOARD)
    with pytest.raises(ValidationFailed):
        members.delete_members(board, [board.user_id])


def test_delete_requires_board(actor_at, make_member):
    with pytest.raises(AuthorizationDenied):
        members.delete_members(actor_at(PrivilegeLevel.GROUP_LEADER), [make_member()])


def test_reset_password(actor_at, make_member):
    leader = actor_at(PrivilegeLevel.GROUP_LEADER)
    target = make_member()
    db.execute("UPDATE members SET password_set_at = ? WHERE id = ?", (db.now_iso(), target))

    temporary = members.reset_password(leader, target)

    member = members.get_member(target)
    assert member.password_set_at is None
    assert auth.login(member.email, temporary) == ActorContext(user_id=target, privilege=PrivilegeLevel.MEMBER)


def test_reset_password_requires_group_leader(actor_at, make_member):
    with pytest.raises(AuthorizationDenied):
        members.reset_password(actor_at(PrivilegeLevel.VOLUNTEER), make_member())


def test_group_leader_cannot_reset_higher_account(actor_at, it_admin):
    leader = actor_at(PrivilegeLevel.GROUP_LEADER)
    before = db.fetch_one("SELECT password_hash FROM members WHERE id = ?", (it_admin.user_id,))[0]

    with pytest.raises(AuthorizationDenied):
        members.reset_password(leader, it_admin.user_id)

    after = db.fetch_one("SELECT password_hash FROM members WHERE id = ?", (it_admin.user_id,))[0]
    assert after == before
    assert _audit("member.password_reset.send")[0]["status"] == "error"


def test_board_cannot_reset_it_but_can_reset_peer(actor_at, make_member):
    board = actor_at(PrivilegeLevel.BOARD)
    with pytest.raises(AuthorizationDenied):
        members.reset_password(board, make_member(PrivilegeLevel.IT))
    assert members.reset_password(board, make_member(PrivilegeLevel.BOARD))


def test_banned_actor_loses_access(it_admin, actor_at):
    board = actor_at(PrivilegeLevel.BOARD)
    assert members.load_actor(board.user_id) == board

    members.ban_member(it_admin, board.user_id)

    with pytest.raises(AuthorizationDenied):
        members.load_actor(board.user_id)


def test_bootstrap_passwords(it_admin, make_member):
    first = make_member()
    second = make_member(PrivilegeLevel.VOLUNTEER)
    banned = make_member(banned=True)

    result, passwords = members.bootstrap_passwords(it_admin, [first, second, banned, "missing"])

    assert result.updated == [first, second]
    assert set(result.failed) == {banned, "missing"}
    assert result.status == "partial"
    assert set(passwords) == {first, second}
    member = members.get_member(second)
    assert member.password_set_at is None
    assert auth.login(member.email, passwords[second]).privilege is PrivilegeLevel.VOLUNTEER
    assert auth.needs_password_change(second)
    assert _audit("member.password_bootstrap.send")[0]["status"] == "partial"


def test_bootstrap_passwords_is_it_only(actor_at, make_member):
    with pytest.raises(AuthorizationDenied):
        members.bootstrap_passwords(actor_at(PrivilegeLevel.BOARD), [make_member()])
