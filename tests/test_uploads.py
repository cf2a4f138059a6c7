import io
import os

import pytest
import requests
from sqlalchemy.exc import SQLAlchemyError

from buildstate.constants import Role
from buildstate.extensions import db
from buildstate.models import Job, Property, UploadedFile
from buildstate.services import audit, storage

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def _upload(client, auth, prop_id, content=PNG, name="front.png", mime="image/png", entity_type="property"):
    return client.post(
        "/api/v2/uploads",
        data={"file": (io.BytesIO(content), name, mime), "entity_type": entity_type, "entity_id": str(prop_id)},
        headers=auth,
        content_type="multipart/form-data",
    )


@pytest.mark.parametrize("name, mime, size, expected", [
    ("a.jpg", "image/jpeg", 100, "image"),
    ("report.pdf", "application/pdf", 100, "document"),
])
def test_validate_file_accepts(name, mime, size, expected):
    assert storage.validate_file(name, mime, size) == expected


@pytest.mark.parametrize("name, mime, size, error_type", [
    ("a.exe", "application/octet-stream", 10, storage.UploadErrorTypes.INVALID_TYPE),
    ("a.png", "image/jpeg", 10, storage.UploadErrorTypes.INVALID_TYPE),
    ("a.png", "image/png", 0, storage.UploadErrorTypes.VALIDATION_ERROR),
    ("a.png", "image/png", storage.IMAGE_MAX_SIZE + 1, storage.UploadErrorTypes.FILE_TOO_LARGE),
])
def test_validate_file_rejects(name, mime, size, error_type):
    with pytest.raises(storage.StorageError) as exc:
        storage.validate_file(name, mime, size)
    assert exc.value.error_type == error_type


def test_local_upload_and_serve(client, app, manager, make_property, headers):
    prop = make_property(manager)
    resp = _upload(client, headers(manager), prop.id)
    assert resp.status_code == 201
    data = resp.get_json()["file"]
    assert data["storage"] == "local"
    assert data["size"] == len(PNG)
    assert data["url"].startswith("/api/v2/uploads/files/property/")

    served = client.get(data["url"])
    assert served.status_code == 200
    assert served.data == PNG

    listed = client.get(f"/api/v2/uploads?entity_type=property&entity_id={prop.id}", headers=headers(manager))
    assert [f["id"] for f in listed.get_json()["files"]] == [data["id"]]


def test_upload_rejects_bad_type(client, manager, make_property, headers):
    prop = make_property(manager)
    resp = _upload(client, headers(manager), prop.id, content=b"MZ", name="tool.exe", mime="application/x-msdownload")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "FILE_INVALID_TYPE"
    assert UploadedFile.query.count() == 0


def test_upload_requires_file(client, manager, make_property, headers):
    prop = make_property(manager)
    resp = client.post("/api/v2/uploads", data={"entity_type": "property", "entity_id": str(prop.id)},
                       headers=headers(manager), content_type="multipart/form-data")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "FILE_NO_FILE_UPLOADED"


def test_upload_checks_property_access(client, make_user, make_property, manager, headers):
    prop = make_property(manager)
    stranger = make_user(Role.PROPERTY_MANAGER)
    assert _upload(client, headers(stranger), prop.id).status_code == 403


def test_blog_media_is_admin_only(client, manager, admin, headers):
    assert _upload(client, headers(manager), 1, entity_type="blog").status_code == 403
    assert _upload(client, headers(admin), 1, entity_type="blog").status_code == 201


def test_cloudinary_failure_falls_back_to_local(client, app, manager, make_property, headers, monkeypatch):
    app.config.update(CLOUDINARY_CLOUD_NAME="demo", CLOUDINARY_API_KEY="k", CLOUDINARY_API_SECRET="s")

    def unreachable(*args, **kwargs):
        raise requests.ConnectionError("no route")

    monkeypatch.setattr(storage.requests, "post", unreachable)
    prop = make_property(manager)
    resp = _upload(client, headers(manager), prop.id)
    assert resp.status_code == 201
    assert resp.get_json()["file"]["storage"] == "local"


def test_delete_removes_file_then_row(client, app, manager, make_property, headers):
    prop = make_property(manager)
    file_id = _upload(client, headers(manager), prop.id).get_json()["file"]["id"]
    record = db.session.get(UploadedFile, file_id)
    path = os.path.join(app.config["UPLOAD_FOLDER"], record.storage_key)
    assert os.path.exists(path)

    resp = client.delete(f"/api/v2/uploads/{file_id}", headers=headers(manager))
    assert resp.status_code == 200
    assert not os.path.exists(path)
    assert db.session.get(UploadedFile, file_id) is None


def test_failed_storage_delete_keeps_row(client, manager, make_property, headers, monkeypatch):
    prop = make_property(manager)
    file_id = _upload(client, headers(manager), prop.id).get_json()["file"]["id"]

    def refuse(storage_name, key):
        raise storage.StorageError("bucket unavailable")

    monkeypatch.setattr(storage, "remove", refuse)
    resp = client.delete(f"/api/v2/uploads/{file_id}", headers=headers(manager))
    assert resp.status_code == 502
    assert db.session.get(UploadedFile, file_id) is not None


def test_deleting_an_entity_removes_its_files(client, app, manager, make_property, headers):
    prop = make_property(manager, units=())
    job = Job(title="Fix gate", property_id=prop.id, created_by_id=manager.id)
    db.session.add(job)
    db.session.commit()
    auth = headers(manager)
    job_file = _upload(client, auth, job.id, entity_type="job").get_json()["file"]
    prop_file = _upload(client, auth, prop.id).get_json()["file"]
    paths = [os.path.join(app.config["UPLOAD_FOLDER"], db.session.get(UploadedFile, f["id"]).storage_key)
             for f in (job_file, prop_file)]
    assert all(os.path.exists(p) for p in paths)

    assert client.delete(f"/api/jobs/{job.id}", headers=auth).status_code == 200
    assert not os.path.exists(paths[0])
    assert db.session.get(UploadedFile, job_file["id"]) is None
    assert os.path.exists(paths[1])

    assert client.delete(f"/api/properties/{prop.id}", headers=auth).status_code == 200
    assert not os.path.exists(paths[1])
    assert UploadedFile.query.count() == 0


def test_entity_delete_stops_when_storage_refuses(client, manager, make_property, headers, monkeypatch):
    prop = make_property(manager, units=())
    file_id = _upload(client, headers(manager), prop.id).get_json()["file"]["id"]

    def refuse(storage_name, key):
        raise storage.StorageError("bucket unavailable")

    monkeypatch.setattr(storage, "remove", refuse)
    resp = client.delete(f"/api/properties/{prop.id}", headers=headers(manager))
    assert resp.status_code == 502
    assert resp.get_json()["code"] == "FILE_UPLOAD_FAILED"
    assert db.session.get(Property, prop.id) is not None
    assert db.session.get(UploadedFile, file_id) is not None


def test_failed_commit_removes_stored_file(client, app, manager, make_property, headers, monkeypatch):
    prop = make_property(manager)

    def broken(*args, **kwargs):
        raise SQLAlchemyError("database went away")

    monkeypatch.setattr(audit, "record", broken)
    resp = client.post(
        "/api/v2/uploads",
        data={"file": (io.BytesIO(PNG), "front.png", "image/png"), "entity_type": "property", "entity_id": str(prop.id)},
        headers=headers(manager),
        content_type="multipart/form-data",
    )
    assert resp.status_code == 500
    assert UploadedFile.query.count() == 0
    left = [name for _, _, names in os.walk(app.config["UPLOAD_FOLDER"]) for name in names]
    assert left == []


def test_only_uploader_or_manager_deletes(client, manager, owner, property_with_people, headers):
    file_id = _upload(client, headers(manager), property_with_people.id).get_json()["file"]["id"]
    assert client.delete(f"/api/v2/uploads/{file_id}", headers=headers(owner)).status_code == 403


def test_storage_health(client):
    data = client.get("/api/v2/uploads/health").get_json()["storage"]
    assert data == {"primary": "local", "cloudinary_configured": False, "local_writable": True}
