from datetime import datetime, timedelta

from buildstate.constants import InviteStatus, Role
from buildstate.extensions import db
from buildstate.models import AuditLog, Invite, Unit


def test_manager_invites_tenant_to_unit(client, manager, make_property, headers):
    prop = make_property(manager, units=("3B",))
    unit = Unit.query.filter_by(property_id=prop.id).one()

    resp = client.post("/api/invites", headers=headers(manager),
                       json={"email": "New.Tenant@Example.com", "role": "TENANT", "unit_id": unit.id})
    assert resp.status_code == 201
    invite = resp.get_json()["invite"]
    assert invite["email"] == "new.tenant@example.com"
    assert invite["token"]

    stored = Invite.query.filter_by(token=invite["token"]).one()
    assert stored.property_id == prop.id
    assert stored.expires_at > datetime.utcnow() + timedelta(days=6)
    assert AuditLog.query.filter_by(action="invite.create").count() == 1


def test_invite_rejects_registered_email(client, manager, tenant, headers):
    resp = client.post("/api/invites", headers=headers(manager),
                       json={"email": "tenant@example.com", "role": "TENANT"})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "BIZ_EMAIL_ALREADY_REGISTERED"


def test_invite_role_must_be_invitable(client, manager, headers):
    resp = client.post("/api/invites", headers=headers(manager),
                       json={"email": "boss@example.com", "role": "ADMIN"})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VAL_VALIDATION_ERROR"


def test_invite_to_foreign_property_is_denied(client, manager, make_user, make_property, headers):
    prop = make_property(make_user(Role.PROPERTY_MANAGER))
    resp = client.post("/api/invites", headers=headers(manager),
                       json={"email": "x@example.com", "role": "OWNER", "property_id": prop.id})
    assert resp.status_code == 403


def test_public_lookup_reports_expiry(client, manager):
    db.session.add(Invite(token="late", email="late@example.com", role=Role.OWNER, invited_by_id=manager.id,
                          expires_at=datetime.utcnow() - timedelta(hours=1)))
    db.session.commit()

    resp = client.get("/api/invites/late")
    assert resp.status_code == 200
    data = resp.get_json()["invite"]
    assert data["status"] == InviteStatus.EXPIRED
    assert data["invited_by"] == manager.full_name

    assert client.get("/api/invites/unknown").status_code == 404


def test_cancel_invite(client, manager, make_user, headers):
    invite = Invite(token="c1", email="c@example.com", role=Role.TECHNICIAN, invited_by_id=manager.id,
                    expires_at=datetime.utcnow() + timedelta(days=7))
    db.session.add(invite)
    db.session.commit()

    other = make_user(Role.PROPERTY_MANAGER)
    assert client.delete(f"/api/invites/{invite.id}", headers=headers(other)).status_code == 404

    assert client.delete(f"/api/invites/{invite.id}", headers=headers(manager)).status_code == 200
    assert db.session.get(Invite, invite.id).status == InviteStatus.CANCELLED

    again = client.delete(f"/api/invites/{invite.id}", headers=headers(manager))
    assert again.status_code == 400


def test_list_invites_only_shows_own(client, manager, make_user, headers):
    other = make_user(Role.PROPERTY_MANAGER)
    for inviter, token in ((manager, "a"), (other, "b")):
        db.session.add(Invite(token=token, email=f"{token}@example.com", role=Role.OWNER,
                              invited_by_id=inviter.id, expires_at=datetime.utcnow() + timedelta(days=1)))
    db.session.commit()

    invites = client.get("/api/invites", headers=headers(manager)).get_json()["invites"]
    assert [i["email"] for i in invites] == ["a@example.com"]
