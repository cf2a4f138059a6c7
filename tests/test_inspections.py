from datetime import datetime, timedelta

import pytest

from buildstate.constants import InspectionStatus, Role
from buildstate.extensions import db
from buildstate.models import Inspection, Notification


@pytest.fixture
def inspection(manager, technician, make_property):
    prop = make_property(manager)
    inspection = Inspection(
        property_id=prop.id, title="Annual check", type="ROUTINE", status=InspectionStatus.SCHEDULED,
        scheduled_date=datetime.utcnow() + timedelta(days=2), assigned_to_id=technician.id,
        created_by_id=manager.id,
    )
    db.session.add(inspection)
    db.session.commit()
    return inspection


def test_create_inspection_defaults_title(client, manager, technician, make_property, headers):
    prop = make_property(manager)
    resp = client.post("/api/inspections", headers=headers(manager), json={
        "property_id": prop.id, "type": "MOVE_IN", "assigned_to_id": technician.id,
        "scheduled_date": (datetime.utcnow() + timedelta(days=1)).isoformat() + "Z",
    })
    assert resp.status_code == 201
    data = resp.get_json()["inspection"]
    assert data["title"] == "Move In inspection"
    assert data["status"] == InspectionStatus.SCHEDULED
    assert Notification.query.filter_by(user_id=technician.id).count() == 1


def test_create_inspection_requires_inspector_role(client, manager, tenant, make_property, headers):
    prop = make_property(manager)
    resp = client.post("/api/inspections", headers=headers(manager), json={
        "property_id": prop.id, "assigned_to_id": tenant.id,
        "scheduled_date": datetime.utcnow().isoformat(),
    })
    assert resp.status_code == 400


def test_manager_inspector_must_manage_the_property(client, manager, make_user, make_property, inspection,
                                                   headers):
    prop = make_property(manager)
    stranger = make_user(Role.PROPERTY_MANAGER)
    resp = client.post("/api/inspections", headers=headers(manager), json={
        "property_id": prop.id, "type": "ROUTINE", "scheduled_date": "2030-01-01T09:00:00Z",
        "assigned_to_id": stranger.id,
    })
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "ACC_PROPERTY_ACCESS_DENIED"

    reassigned = client.patch(f"/api/inspections/{inspection.id}", json={"assigned_to_id": stranger.id},
                              headers=headers(manager))
    assert reassigned.status_code == 403
    assert db.session.get(Inspection, inspection.id).assigned_to_id != stranger.id

    own = client.post("/api/inspections", headers=headers(manager), json={
        "property_id": prop.id, "type": "ROUTINE", "scheduled_date": "2030-01-01T09:00:00Z",
        "assigned_to_id": manager.id,
    })
    assert own.status_code == 201


def test_technician_completion_needs_approval(client, manager, technician, inspection, headers):
    tech = headers(technician)
    assert client.post(f"/api/inspections/{inspection.id}/start", headers=tech).status_code == 200

    resp = client.post(f"/api/inspections/{inspection.id}/complete", headers=tech,
                       json={"findings": "Smoke alarm battery low"})
    assert resp.status_code == 200
    data = resp.get_json()["inspection"]
    assert data["status"] == InspectionStatus.PENDING_APPROVAL
    assert data["findings"] == "Smoke alarm battery low"
    assert data["completed_date"] is None

    approved = client.post(f"/api/inspections/{inspection.id}/approve", headers=headers(manager))
    assert approved.status_code == 200
    data = approved.get_json()["inspection"]
    assert data["status"] == InspectionStatus.COMPLETED
    assert data["approved_by_id"] == manager.id
    assert data["completed_date"] is not None


def test_manager_completion_skips_approval(client, manager, inspection, headers):
    auth = headers(manager)
    client.post(f"/api/inspections/{inspection.id}/start", headers=auth)
    resp = client.post(f"/api/inspections/{inspection.id}/complete", headers=auth, json={})
    assert resp.get_json()["inspection"]["status"] == InspectionStatus.COMPLETED


def test_reject_returns_to_in_progress(client, manager, technician, inspection, headers):
    inspection.status = InspectionStatus.PENDING_APPROVAL
    db.session.commit()

    resp = client.post(f"/api/inspections/{inspection.id}/reject", headers=headers(manager),
                       json={"reason": "Photos missing"})
    assert resp.status_code == 200
    data = resp.get_json()["inspection"]
    assert data["status"] == InspectionStatus.IN_PROGRESS
    assert data["rejection_reason"] == "Photos missing"


def test_technician_cannot_approve(client, technician, inspection, headers):
    inspection.status = InspectionStatus.PENDING_APPROVAL
    db.session.commit()
    resp = client.post(f"/api/inspections/{inspection.id}/approve", headers=headers(technician))
    assert resp.status_code == 403


def test_cannot_complete_scheduled_inspection(client, technician, inspection, headers):
    resp = client.post(f"/api/inspections/{inspection.id}/complete", headers=headers(technician), json={})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "BIZ_INVALID_STATUS_TRANSITION"


def test_completed_inspection_is_not_editable(client, manager, inspection, headers):
    inspection.status = InspectionStatus.COMPLETED
    db.session.commit()
    resp = client.patch(f"/api/inspections/{inspection.id}", json={"title": "New"}, headers=headers(manager))
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "BIZ_OPERATION_NOT_ALLOWED"


def test_overdue_listing(client, manager, inspection, headers):
    inspection.scheduled_date = datetime.utcnow() - timedelta(days=1)
    db.session.commit()
    data = client.get("/api/inspections/overdue", headers=headers(manager)).get_json()
    assert data["total"] == 1
    assert data["inspections"][0]["is_overdue"] is True


def test_other_technician_cannot_read(client, make_user, inspection, headers):
    stranger = make_user(Role.TECHNICIAN)
    assert client.get(f"/api/inspections/{inspection.id}", headers=headers(stranger)).status_code == 403


def test_pdf_report(client, owner, manager, property_with_people, headers):
    inspection = Inspection(
        property_id=property_with_people.id, title="Move out", type="MOVE_OUT",
        status=InspectionStatus.COMPLETED, scheduled_date=datetime.utcnow(), created_by_id=manager.id,
        findings="Carpet stain → lounge",
    )
    db.session.add(inspection)
    db.session.commit()

    resp = client.get(f"/api/inspections/{inspection.id}/report.pdf", headers=headers(owner))
    assert resp.status_code == 200
    assert resp.headers["Content-Type"] == "application/pdf"
    assert resp.data.startswith(b"%PDF")
