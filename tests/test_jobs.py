import pytest

from buildstate.constants import JobStatus, NotificationType, Role
from buildstate.extensions import db
from buildstate.models import Job, Notification


@pytest.fixture
def job(manager, make_property):
    prop = make_property(manager)
    job = Job(title="Leaking tap", property_id=prop.id, created_by_id=manager.id)
    db.session.add(job)
    db.session.commit()
    return job


def _status(client, job_id, status, auth, **extra):
    return client.patch(f"/api/jobs/{job_id}/status", json={"status": status, **extra}, headers=auth)


def test_create_job_with_technician_starts_assigned(client, manager, technician, make_property, headers):
    prop = make_property(manager)
    resp = client.post("/api/jobs", headers=headers(manager), json={
        "title": "Replace filter", "property_id": prop.id, "assigned_to_id": technician.id, "priority": "HIGH",
    })
    assert resp.status_code == 201
    data = resp.get_json()["job"]
    assert data["status"] == JobStatus.ASSIGNED
    assert data["assigned_to_name"] == technician.full_name

    note = Notification.query.filter_by(user_id=technician.id).one()
    assert note.type == NotificationType.JOB_ASSIGNED


def test_create_job_rejects_non_technician_assignee(client, manager, tenant, make_property, headers):
    prop = make_property(manager)
    resp = client.post("/api/jobs", headers=headers(manager),
                       json={"title": "x", "property_id": prop.id, "assigned_to_id": tenant.id})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VAL_INVALID_INPUT"


def test_create_job_rejects_unit_from_other_property(client, manager, make_property, headers):
    prop = make_property(manager, units=())
    other = make_property(manager, name="Other", units=("9",))
    resp = client.post("/api/jobs", headers=headers(manager),
                       json={"title": "x", "property_id": prop.id, "unit_id": other.units[0].id})
    assert resp.status_code == 400


def test_full_lifecycle(client, manager, technician, job, headers):
    auth = headers(manager)
    assert client.patch(f"/api/jobs/{job.id}", json={"assigned_to_id": technician.id},
                        headers=auth).get_json()["job"]["status"] == JobStatus.ASSIGNED

    started = _status(client, job.id, JobStatus.IN_PROGRESS, headers(technician))
    assert started.status_code == 200
    assert started.get_json()["job"]["started_at"] is not None

    done = _status(client, job.id, JobStatus.COMPLETED, headers(technician), actual_cost=42.5, notes="Washer swapped")
    assert done.status_code == 200
    body = done.get_json()["job"]
    assert body["completed_date"] is not None
    assert body["actual_cost"] == 42.5
    assert "Washer swapped" in body["notes"]

    kinds = {n.type for n in Notification.query.filter_by(user_id=manager.id)}
    assert NotificationType.JOB_COMPLETED in kinds


def test_invalid_transition(client, manager, job, headers):
    resp = _status(client, job.id, JobStatus.COMPLETED, headers(manager))
    assert resp.status_code == 400
    data = resp.get_json()
    assert data["code"] == "BIZ_INVALID_STATUS_TRANSITION"
    assert data["details"]["allowed"] == [JobStatus.ASSIGNED, JobStatus.CANCELLED]


def test_assigned_requires_technician(client, manager, job, headers):
    resp = _status(client, job.id, JobStatus.ASSIGNED, headers(manager))
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VAL_MISSING_FIELD"


def test_same_status_is_noop(client, manager, job, headers):
    resp = _status(client, job.id, JobStatus.OPEN, headers(manager))
    assert resp.status_code == 200
    assert resp.get_json()["job"]["status"] == JobStatus.OPEN


def test_unassigned_technician_cannot_update(client, make_user, job, headers):
    stranger = make_user(Role.TECHNICIAN)
    resp = _status(client, job.id, JobStatus.CANCELLED, headers(stranger))
    assert resp.status_code == 403


def test_technician_accepts_job(client, technician, job, headers):
    job.assigned_to_id = technician.id
    job.status = JobStatus.ASSIGNED
    db.session.commit()

    resp = client.post(f"/api/jobs/{job.id}/accept", headers=headers(technician))
    assert resp.status_code == 200
    assert resp.get_json()["job"]["status"] == JobStatus.IN_PROGRESS


def test_technician_rejects_job_back_to_open(client, manager, technician, job, headers):
    job.assigned_to_id = technician.id
    job.status = JobStatus.ASSIGNED
    db.session.commit()

    resp = client.post(f"/api/jobs/{job.id}/reject", json={"reason": "Out of town"}, headers=headers(technician))
    assert resp.status_code == 200
    data = resp.get_json()["job"]
    assert data["status"] == JobStatus.OPEN
    assert data["assigned_to_id"] is None
    assert "Out of town" in data["notes"]

    again = client.post(f"/api/jobs/{job.id}/reject", json={"reason": "again"}, headers=headers(technician))
    assert again.status_code == 403


def test_technician_sees_only_assigned_jobs(client, technician, manager, job, make_property, headers):
    mine = Job(title="Mine", property_id=job.property_id, created_by_id=manager.id,
               assigned_to_id=technician.id, status=JobStatus.ASSIGNED)
    db.session.add(mine)
    db.session.commit()

    jobs = client.get("/api/jobs", headers=headers(technician)).get_json()["jobs"]
    assert [j["title"] for j in jobs] == ["Mine"]
    assert client.get(f"/api/jobs/{job.id}", headers=headers(technician)).status_code == 403


def test_list_filters_by_status(client, manager, job, headers):
    db.session.add(Job(title="Old", property_id=job.property_id, created_by_id=manager.id,
                       status=JobStatus.CANCELLED))
    db.session.commit()
    data = client.get("/api/jobs?status=OPEN,ASSIGNED", headers=headers(manager)).get_json()
    assert data["total"] == 1
    assert data["jobs"][0]["title"] == "Leaking tap"


def test_comments(client, manager, owner, property_with_people, headers):
    job = Job(title="Paint hallway", property_id=property_with_people.id, created_by_id=manager.id)
    db.session.add(job)
    db.session.commit()

    resp = client.post(f"/api/jobs/{job.id}/comments", json={"content": "Colour?"}, headers=headers(owner))
    assert resp.status_code == 201
    assert resp.get_json()["comment"]["user_name"] == owner.full_name

    comments = client.get(f"/api/jobs/{job.id}/comments", headers=headers(manager)).get_json()["comments"]
    assert [c["content"] for c in comments] == ["Colour?"]

    assert client.post(f"/api/jobs/{job.id}/comments", json={"content": ""},
                       headers=headers(manager)).status_code == 400


def test_delete_job(client, manager, job, headers):
    assert client.delete(f"/api/jobs/{job.id}", headers=headers(manager)).status_code == 200
    assert db.session.get(Job, job.id) is None
