import pytest

import certification
import db
from errors import AuthorizationDenied, NotFound
from privileges import PrivilegeLevel


@pytest.fixture
def application(make_member):
    seeker = make_member(firstname="Søker", lastname="Sjø")
    cert_id = db.execute("INSERT INTO certificate_type(type) VALUES(?)", ("Båtfører",))
    return db.execute(
        "INSERT INTO certification_application(seeker_id, certificate_id, created_at) VALUES(?,?,?)",
        (seeker, cert_id, db.now_iso()),
    )


def test_list_splits_processed(actor_at, application):
    leader = actor_at(PrivilegeLevel.GROUP_LEADER)
    unprocessed, processed = certification.list_applications(leader)
    assert [a.id for a in unprocessed] == [application]
    assert processed == []
    assert unprocessed[0].seeker_name == "Søker Sjø"
    assert unprocessed[0].certificate_type == "Båtfører"


def test_accept_records_verifier(actor_at, application):
    leader = actor_at(PrivilegeLevel.GROUP_LEADER)
    accepted = certification.accept_application(leader, application)

    assert accepted.verified and not accepted.rejected
    assert accepted.verified_by == leader.user_id
    assert accepted.time_accepted is not None
    unprocessed, processed = certification.list_applications(leader)
    assert unprocessed == [] and [a.id for a in processed] == [application]


def test_reject_then_delete(actor_at, application):
    leader = actor_at(PrivilegeLevel.GROUP_LEADER)
    rejected = certification.reject_application(leader, application)
    assert rejected.rejected and not rejected.verified

    certification.delete_application(leader, application)
    with pytest.raises(NotFound):
        certification.get_application(application)
    actions = [r["action"] for r in db.fetch_all("SELECT action FROM admin_audit_log ORDER BY id")]
    assert actions == ["certification.reject", "certification.delete"]


def test_volunteer_cannot_manage_certificates(actor_at, application):
    volunteer = actor_at(PrivilegeLevel.VOLUNTEER)
    with pytest.raises(AuthorizationDenied):
        certification.list_applications(volunteer)
    with pytest.raises(AuthorizationDenied):
        certification.accept_application(volunteer, application)
    assert not certification.get_application(application).verified


def test_unknown_application(it_admin):
    with pytest.raises(NotFound):
        certification.accept_application(it_admin, 999)
