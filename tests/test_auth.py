import re
from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlsplit

import pytest

from buildstate.constants import InviteStatus, Role, SubscriptionStatus, TokenPurpose
from buildstate.extensions import db
from buildstate.models import AuditLog, Invite, PropertyOwner, Unit, UnitTenant, User, UserToken
from buildstate.security.tokens import issue as issue_token

from conftest import PASSWORD


@pytest.fixture
def outbox(monkeypatch):
    sent = []

    def capture(to_email, subject, body, html=None):
        sent.append({"to": to_email, "subject": subject, "body": body})
        return True

    monkeypatch.setattr("buildstate.routes.auth.send_email", capture)
    return sent


def _link_params(message):
    link = re.search(r"https?://\S+", message["body"]).group(0)
    query = parse_qs(urlsplit(link).query)
    return {"selector": query["selector"][0], "token": query["token"][0]}


def _register(client, **overrides):
    body = {
        "first_name": "Mia",
        "last_name": "Walker",
        "email": "mia@example.com",
        "password": PASSWORD,
    }
    body.update(overrides)
    return client.post("/api/auth/register", json=body)


def test_register_property_manager_starts_trial(client, app):
    resp = _register(client)
    assert resp.status_code == 201
    data = resp.get_json()
    assert data["user"]["role"] == Role.PROPERTY_MANAGER
    assert data["access_token"] and data["refresh_token"]

    user = User.query.filter_by(email="mia@example.com").one()
    assert user.subscription_status == SubscriptionStatus.TRIAL
    assert user.trial_end_date > datetime.utcnow() + timedelta(days=13)
    assert AuditLog.query.filter_by(action="auth.register", user_id=user.id).count() == 1


def test_register_rejects_weak_password(client):
    resp = _register(client, password="password")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VAL_PASSWORD_WEAK"


def test_register_rejects_duplicate_email_case_insensitively(client, manager):
    resp = _register(client, email="MANAGER@example.com")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "BIZ_EMAIL_ALREADY_REGISTERED"


def test_register_other_roles_need_an_invite(client):
    resp = _register(client, role="TENANT")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "AUTH_INSUFFICIENT_PERMISSIONS"


def test_register_with_tenant_invite_links_unit(client, manager, make_property):
    prop = make_property(manager, units=("7A",))
    unit = Unit.query.filter_by(property_id=prop.id).one()
    invite = Invite(
        token="tok-tenant", email="mia@example.com", role=Role.TENANT, invited_by_id=manager.id,
        property_id=prop.id, unit_id=unit.id, expires_at=datetime.utcnow() + timedelta(days=7),
    )
    db.session.add(invite)
    db.session.commit()

    resp = _register(client, invite_token="tok-tenant")
    assert resp.status_code == 201
    user = User.query.filter_by(email="mia@example.com").one()
    assert user.role == Role.TENANT
    assert user.subscription_status == SubscriptionStatus.ACTIVE

    tenancy = UnitTenant.query.filter_by(tenant_id=user.id).one()
    assert tenancy.unit_id == unit.id and tenancy.is_active
    assert db.session.get(Unit, unit.id).status == "OCCUPIED"
    assert db.session.get(Invite, invite.id).status == InviteStatus.ACCEPTED


def test_register_with_owner_invite_links_property(client, manager, make_property):
    prop = make_property(manager)
    db.session.add(Invite(
        token="tok-owner", email="mia@example.com", role=Role.OWNER, invited_by_id=manager.id,
        property_id=prop.id, expires_at=datetime.utcnow() + timedelta(days=7),
    ))
    db.session.commit()

    assert _register(client, invite_token="tok-owner").status_code == 201
    user = User.query.filter_by(email="mia@example.com").one()
    assert PropertyOwner.query.filter_by(property_id=prop.id, owner_id=user.id).count() == 1


def test_register_with_expired_invite(client, manager):
    db.session.add(Invite(
        token="tok-old", email="mia@example.com", role=Role.TECHNICIAN, invited_by_id=manager.id,
        expires_at=datetime.utcnow() - timedelta(minutes=1),
    ))
    db.session.commit()

    resp = _register(client, invite_token="tok-old")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "BIZ_INVITE_EXPIRED"
    assert Invite.query.filter_by(token="tok-old").one().status == InviteStatus.EXPIRED


def test_register_with_invite_for_other_email(client, manager):
    db.session.add(Invite(
        token="tok-x", email="someone@example.com", role=Role.TECHNICIAN, invited_by_id=manager.id,
        expires_at=datetime.utcnow() + timedelta(days=1),
    ))
    db.session.commit()
    assert _register(client, invite_token="tok-x").status_code == 400


def test_login_and_me(client, manager):
    resp = client.post("/api/auth/login", json={"email": "Manager@Example.com", "password": PASSWORD})
    assert resp.status_code == 200
    token = resp.get_json()["access_token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.get_json()["user"]["email"] == "manager@example.com"
    assert db.session.get(User, manager.id).last_login_at is not None


def test_login_wrong_password(client, manager):
    resp = client.post("/api/auth/login", json={"email": "manager@example.com", "password": "nope"})
    assert resp.status_code == 401
    assert resp.get_json() == {
        "success": False,
        "message": "Invalid email or password",
        "code": "AUTH_INVALID_CREDENTIALS",
    }


def test_login_inactive_account(client, make_user):
    make_user(Role.TECHNICIAN, email="gone@example.com", is_active=False)
    resp = client.post("/api/auth/login", json={"email": "gone@example.com", "password": PASSWORD})
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "AUTH_ACCOUNT_INACTIVE"


def test_login_is_rate_limited(client, manager):
    for _ in range(10):
        client.post("/api/auth/login", json={"email": "manager@example.com", "password": "wrong"})
    resp = client.post("/api/auth/login", json={"email": "manager@example.com", "password": PASSWORD})
    assert resp.status_code == 429
    assert resp.get_json()["code"] == "RATE_LIMIT_EXCEEDED"
    assert int(resp.headers["Retry-After"]) >= 1
    assert resp.headers["X-RateLimit-Limit"] == "10"
    assert resp.headers["X-RateLimit-Remaining"] == "0"


def test_missing_token(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "AUTH_NO_TOKEN"


def test_refresh_issues_new_access_token(client, manager):
    tokens = client.post("/api/auth/login", json={"email": "manager@example.com", "password": PASSWORD}).get_json()
    resp = client.post("/api/auth/refresh", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})
    assert resp.status_code == 200
    assert resp.get_json()["access_token"]


def test_logout_revokes_token(client, manager):
    token = client.post(
        "/api/auth/login", json={"email": "manager@example.com", "password": PASSWORD}
    ).get_json()["access_token"]
    auth = {"Authorization": f"Bearer {token}"}

    assert client.post("/api/auth/logout", headers=auth).status_code == 200
    resp = client.get("/api/auth/me", headers=auth)
    assert resp.status_code == 401
    assert resp.get_json()["message"] == "Token has been revoked"


def test_change_password(client, manager, headers):
    resp = client.post("/api/auth/change-password", headers=headers(manager),
                       json={"current_password": PASSWORD, "new_password": "N3w!Password"})
    assert resp.status_code == 200
    assert db.session.get(User, manager.id).check_password("N3w!Password")

    resp = client.post("/api/auth/change-password", headers=headers(manager),
                       json={"current_password": "bad", "new_password": "N3w!Password"})
    assert resp.status_code == 400


def test_register_sends_verification_link(client, outbox):
    assert _register(client).status_code == 201
    assert outbox[0]["to"] == "mia@example.com"
    params = _link_params(outbox[0])
    assert "/verify-email?" in outbox[0]["body"]

    resp = client.post("/api/auth/verify-email", json=params)
    assert resp.status_code == 200
    assert resp.get_json()["user"]["email_verified"] is True

    again = client.post("/api/auth/verify-email", json=params)
    assert again.status_code == 400
    assert again.get_json()["message"] == "This link has already been used"


def test_verify_email_rejects_wrong_token(client, manager):
    selector, _ = issue_token(manager, TokenPurpose.EMAIL_VERIFICATION)
    db.session.commit()
    resp = client.post("/api/auth/verify-email", json={"selector": selector, "token": "0" * 64})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "AUTH_INVALID_TOKEN"
    assert db.session.get(User, manager.id).email_verified is False


def test_resend_verification(client, manager, headers, outbox):
    assert client.post("/api/auth/resend-verification", headers=headers(manager)).status_code == 200
    assert len(outbox) == 1
    assert UserToken.query.filter_by(user_id=manager.id, purpose=TokenPurpose.EMAIL_VERIFICATION).count() == 1

    manager.email_verified = True
    db.session.commit()
    resp = client.post("/api/auth/resend-verification", headers=headers(manager))
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Email already verified"


def test_password_reset_flow(client, manager, outbox):
    resp = client.post("/api/auth/forgot-password", json={"email": "Manager@Example.com"})
    assert resp.status_code == 200
    params = _link_params(outbox[0])
    assert "/reset-password?" in outbox[0]["body"]

    check = client.get("/api/auth/reset-password/validate", query_string=params)
    assert check.status_code == 200
    assert check.get_json()["email"] == "manager@example.com"

    weak = client.post("/api/auth/reset-password", json={**params, "password": "password"})
    assert weak.get_json()["code"] == "VAL_PASSWORD_WEAK"

    done = client.post("/api/auth/reset-password", json={**params, "password": "N3w!Password"})
    assert done.status_code == 200
    assert db.session.get(User, manager.id).check_password("N3w!Password")
    assert AuditLog.query.filter_by(action="auth.reset_password", user_id=manager.id).count() == 1

    reused = client.post("/api/auth/reset-password", json={**params, "password": "An0ther!Pass"})
    assert reused.status_code == 400
    assert reused.get_json()["message"] == "This link has already been used"


def test_forgot_password_does_not_reveal_accounts(client, manager, outbox):
    known = client.post("/api/auth/forgot-password", json={"email": "manager@example.com"})
    unknown = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
    assert unknown.status_code == 200
    assert unknown.get_json() == known.get_json()
    assert [m["to"] for m in outbox] == ["manager@example.com"]


def test_expired_reset_link_is_rejected(client, manager):
    selector, verifier = issue_token(manager, TokenPurpose.PASSWORD_RESET, now=datetime.utcnow() - timedelta(hours=1))
    db.session.commit()
    resp = client.get("/api/auth/reset-password/validate", query_string={"selector": selector, "token": verifier})
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "This link has expired. Please request a new one."

    missing = client.get("/api/auth/reset-password/validate", query_string={"selector": selector})
    assert missing.get_json()["message"] == "Invalid reset link"


def test_new_reset_link_replaces_the_old_one(client, manager):
    first = issue_token(manager, TokenPurpose.PASSWORD_RESET)
    second = issue_token(manager, TokenPurpose.PASSWORD_RESET)
    db.session.commit()
    old = client.get("/api/auth/reset-password/validate", query_string=dict(zip(("selector", "token"), first)))
    assert old.status_code == 400
    new = client.get("/api/auth/reset-password/validate", query_string=dict(zip(("selector", "token"), second)))
    assert new.status_code == 200
