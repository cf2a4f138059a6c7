from datetime import datetime, timedelta

from buildstate.constants import InspectionStatus, JobStatus, NotificationType, Role
from buildstate.extensions import db
from buildstate.models import Inspection, Job, Notification, NotificationPreference
from buildstate.services.notifications import notify


def test_summary_counts_scope(client, manager, technician, property_with_people, headers):
    now = datetime.utcnow()
    db.session.add_all([
        Job(property_id=property_with_people.id, title="Leak", status=JobStatus.OPEN, created_by_id=manager.id),
        Job(property_id=property_with_people.id, title="Paint", status=JobStatus.COMPLETED,
            created_by_id=manager.id),
        Inspection(property_id=property_with_people.id, title="Soon", type="ROUTINE",
                   status=InspectionStatus.SCHEDULED, scheduled_date=now + timedelta(days=3),
                   created_by_id=manager.id),
        Inspection(property_id=property_with_people.id, title="Late", type="ROUTINE",
                   status=InspectionStatus.SCHEDULED, scheduled_date=now - timedelta(days=3),
                   created_by_id=manager.id),
    ])
    db.session.commit()

    resp = client.get("/api/dashboard/summary", headers=headers(manager))
    assert resp.headers["X-Cache"] == "MISS"
    summary = resp.get_json()["summary"]
    assert summary["properties"] == 1
    assert summary["units"] == {"total": 2, "by_status": {"OCCUPIED": 1, "AVAILABLE": 1}}
    assert summary["jobs"] == {"open": 1, "by_status": {"OPEN": 1}}
    assert summary["inspections"] == {"upcoming": 1, "overdue": 1}

    assert client.get("/api/dashboard/summary", headers=headers(manager)).headers["X-Cache"] == "HIT"

    # technicians only see work assigned to them
    tech = client.get("/api/dashboard/summary", headers=headers(technician)).get_json()["summary"]
    assert tech["jobs"]["open"] == 0
    assert tech["properties"] == 0


def test_notifications_read_flow(client, manager, technician, headers):
    notify(technician, "JOB_ASSIGNED", "New job", "Fix the boiler", {"job_id": 1})
    notify(technician, "JOB_ASSIGNED", "Another job", "Fix the gate")
    notify(manager, "JOB_COMPLETED", "Done", "Boiler fixed")
    db.session.commit()
    auth = headers(technician)

    data = client.get("/api/notifications", headers=auth).get_json()
    assert data["total"] == 2
    assert data["unread"] == 2
    first = data["notifications"][-1]
    assert first["data"] == {"job_id": 1}

    read = client.post(f"/api/notifications/{first['id']}/read", headers=auth).get_json()["notification"]
    assert read["is_read"] is True
    assert read["read_at"] is not None
    assert client.get("/api/notifications?unread=true", headers=auth).get_json()["total"] == 1

    assert client.post("/api/notifications/read-all", headers=auth).get_json()["updated"] == 1
    assert Notification.query.filter_by(user_id=manager.id, is_read=False).count() == 1


def test_cannot_read_someone_elses_notification(client, manager, technician, headers):
    note = notify(manager, "JOB_COMPLETED", "Done", "Boiler fixed")
    db.session.commit()
    assert client.post(f"/api/notifications/{note.id}/read", headers=headers(technician)).status_code == 404


def test_maintenance_plan_crud(client, manager, make_property, headers):
    prop = make_property(manager)
    auth = headers(manager)

    resp = client.post("/api/maintenance-plans", headers=auth, json={
        "property_id": prop.id, "name": "Fire alarm test", "frequency": "QUARTERLY",
        "next_due_date": "2026-07-01T00:00:00Z",
    })
    assert resp.status_code == 201
    plan = resp.get_json()["plan"]
    assert plan["is_active"] is True
    assert plan["property_name"] == "Harbour View"

    updated = client.patch(f"/api/maintenance-plans/{plan['id']}", json={"is_active": False}, headers=auth)
    assert updated.get_json()["plan"]["is_active"] is False
    assert client.get("/api/maintenance-plans?active=true", headers=auth).get_json()["plans"] == []

    db.session.add(Job(property_id=prop.id, title="Generated", created_by_id=manager.id,
                       maintenance_plan_id=plan["id"]))
    db.session.commit()
    detail = client.get(f"/api/maintenance-plans/{plan['id']}", headers=auth).get_json()["plan"]
    assert [j["title"] for j in detail["recent_jobs"]] == ["Generated"]

    assert client.delete(f"/api/maintenance-plans/{plan['id']}", headers=auth).status_code == 200
    assert Job.query.one().maintenance_plan_id is None


def test_maintenance_plans_are_manager_only(client, make_user, manager, make_property, headers):
    prop = make_property(manager)
    stranger = make_user(Role.PROPERTY_MANAGER)
    body = {"property_id": prop.id, "name": "x", "next_due_date": "2026-07-01T00:00:00Z"}

    assert client.post("/api/maintenance-plans", json=body, headers=headers(stranger)).status_code == 403
    tenant = make_user(Role.TENANT)
    resp = client.get("/api/maintenance-plans", headers=headers(tenant))
    assert resp.get_json()["code"] == "ACC_ROLE_REQUIRED"


def test_notification_preferences_defaults_and_update(client, technician, headers):
    prefs = client.get("/api/notification-preferences", headers=headers(technician)).get_json()["preferences"]
    assert prefs["email_enabled"] is True
    assert prefs["job_assigned"] is True
    assert prefs["email_digest_frequency"] == "DAILY"
    assert NotificationPreference.query.filter_by(user_id=technician.id).count() == 1

    resp = client.patch("/api/notification-preferences", headers=headers(technician),
                        json={"job_assigned": False, "email_digest_frequency": "WEEKLY"})
    assert resp.status_code == 200
    assert resp.get_json()["preferences"]["job_assigned"] is False

    reset = client.post("/api/notification-preferences/reset", headers=headers(technician)).get_json()
    assert reset["preferences"]["job_assigned"] is True
    assert reset["preferences"]["email_digest_frequency"] == "DAILY"


def test_digest_needs_email_enabled(client, technician, headers):
    resp = client.patch("/api/notification-preferences", headers=headers(technician),
                        json={"email_enabled": False, "email_digest_frequency": "DAILY"})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VAL_INVALID_INPUT"

    ok = client.patch("/api/notification-preferences", headers=headers(technician),
                      json={"email_enabled": False, "email_digest_frequency": "NONE"})
    assert ok.status_code == 200


def test_preferences_gate_email_only(app, technician, manager, monkeypatch):
    sent = []
    monkeypatch.setattr("buildstate.services.notifications.send_email",
                        lambda to, subject, body, html=None: sent.append(to))
    db.session.add(NotificationPreference(user_id=technician.id, **{
        **NotificationPreference.defaults(), "job_assigned": False,
    }))
    db.session.commit()

    notify(technician, NotificationType.JOB_ASSIGNED, "New job", "Fix it", email=True, commit=True)
    notify(manager, NotificationType.JOB_ASSIGNED, "New job", "Fix it", email=True, commit=True)
    assert sent == [manager.email]
    assert Notification.query.filter_by(user_id=technician.id).count() == 1
