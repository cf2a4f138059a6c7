from datetime import datetime, timedelta

import pytest

from buildstate.constants import Role, SubscriptionStatus
from buildstate.extensions import db
from buildstate.models import Job, Property, Unit


def _new_property(**overrides):
    body = {
        "name": "Kauri Court",
        "address": "12 Kauri Road",
        "city": "Wellington",
        "property_type": "RESIDENTIAL",
        "total_area": 2500.7,
        "units": [
            {"unit_number": "1", "area": 850.5, "bedrooms": 2},
            {"unit_number": "2", "area": 640.49},
        ],
    }
    body.update(overrides)
    return body


def test_create_property_with_units_rounds_areas(client, manager, headers):
    resp = client.post("/api/properties", json=_new_property(), headers=headers(manager))
    assert resp.status_code == 201
    prop = resp.get_json()["property"]
    assert prop["total_area"] == 2501
    assert [u["area"] for u in prop["units"]] == [851, 640]
    assert prop["occupancy"]["total_units"] == 2
    assert prop["manager_id"] == manager.id


def test_create_property_duplicate_unit_numbers(client, manager, headers):
    body = _new_property(units=[{"unit_number": "1"}, {"unit_number": "1"}])
    resp = client.post("/api/properties", json=body, headers=headers(manager))
    assert resp.status_code == 409
    assert Property.query.count() == 0


def test_create_property_validation_error(client, manager, headers):
    resp = client.post("/api/properties", json={"name": "x"}, headers=headers(manager))
    assert resp.status_code == 400
    data = resp.get_json()
    assert data["code"] == "VAL_VALIDATION_ERROR"
    assert {d["loc"][0] for d in data["details"]} >= {"address", "city", "property_type"}


@pytest.mark.parametrize("raw", ["1e999", "-1e999", "NaN"])
def test_non_finite_area_is_a_validation_error(client, manager, headers, raw):
    body = ('{"name": "Kauri Court", "address": "12 Kauri Road", "city": "Wellington", '
            '"property_type": "RESIDENTIAL", "total_area": %s}' % raw)
    resp = client.post("/api/properties", data=body, content_type="application/json", headers=headers(manager))
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VAL_VALIDATION_ERROR"
    assert Property.query.count() == 0


def test_only_managers_create_properties(client, owner, headers):
    resp = client.post("/api/properties", json=_new_property(), headers=headers(owner))
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "ACC_ROLE_REQUIRED"


def test_expired_trial_blocks_writes(client, make_user, headers):
    lapsed = make_user(Role.PROPERTY_MANAGER, trial_end_date=datetime.utcnow() - timedelta(days=1))
    resp = client.post("/api/properties", json=_new_property(), headers=headers(lapsed))
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "SUB_TRIAL_EXPIRED"

    suspended = make_user(Role.PROPERTY_MANAGER, subscription_status=SubscriptionStatus.SUSPENDED)
    resp = client.post("/api/properties", json=_new_property(), headers=headers(suspended))
    assert resp.get_json()["code"] == "SUB_SUBSCRIPTION_REQUIRED"


def test_list_is_scoped_to_the_caller(client, manager, make_user, make_property, property_with_people,
                                      owner, tenant, headers):
    other_manager = make_user(Role.PROPERTY_MANAGER)
    make_property(other_manager, name="Elsewhere")

    for user in (manager, owner, tenant):
        resp = client.get("/api/properties", headers=headers(user))
        assert resp.status_code == 200
        names = [p["name"] for p in resp.get_json()["properties"]]
        assert names == ["Harbour View"], user.role


def test_list_is_cached_and_invalidated(client, manager, headers, make_property):
    make_property(manager)
    first = client.get("/api/properties", headers=headers(manager))
    assert first.headers["X-Cache"] == "MISS"
    second = client.get("/api/properties", headers=headers(manager))
    assert second.headers["X-Cache"] == "HIT"

    client.post("/api/properties", json=_new_property(units=[]), headers=headers(manager))
    third = client.get("/api/properties", headers=headers(manager))
    assert third.headers["X-Cache"] == "MISS"
    assert third.get_json()["total"] == 2


def test_property_change_refreshes_tenant_and_technician_caches(client, manager, tenant, technician,
                                                              property_with_people, headers):
    prop = property_with_people
    db.session.add(Job(title="Fix gutter", property_id=prop.id, created_by_id=manager.id,
                       assigned_to_id=technician.id))
    db.session.commit()

    client.get("/api/properties", headers=headers(tenant))
    client.get("/api/dashboard/summary", headers=headers(technician))
    assert client.get("/api/properties", headers=headers(tenant)).headers["X-Cache"] == "HIT"
    assert client.get("/api/dashboard/summary", headers=headers(technician)).headers["X-Cache"] == "HIT"

    client.patch(f"/api/properties/{prop.id}", json={"name": "Harbour Heights"}, headers=headers(manager))
    fresh = client.get("/api/properties", headers=headers(tenant))
    assert fresh.headers["X-Cache"] == "MISS"
    assert fresh.get_json()["properties"][0]["name"] == "Harbour Heights"
    assert client.get("/api/dashboard/summary", headers=headers(technician)).headers["X-Cache"] == "MISS"


def test_owner_has_read_only_access(client, owner, property_with_people, headers):
    prop_id = property_with_people.id
    assert client.get(f"/api/properties/{prop_id}", headers=headers(owner)).status_code == 200

    resp = client.patch(f"/api/properties/{prop_id}", json={"name": "Mine now"}, headers=headers(owner))
    assert resp.status_code == 403
    assert resp.get_json()["message"] == "Owners have read-only access"


def test_other_manager_cannot_see_property(client, make_user, property_with_people, headers):
    stranger = make_user(Role.PROPERTY_MANAGER)
    resp = client.get(f"/api/properties/{property_with_people.id}", headers=headers(stranger))
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "ACC_PROPERTY_ACCESS_DENIED"


def test_update_property(client, manager, make_property, headers):
    prop = make_property(manager)
    resp = client.patch(f"/api/properties/{prop.id}", json={"total_area": 99.5, "name": None},
                        headers=headers(manager))
    assert resp.status_code == 200
    data = resp.get_json()["property"]
    assert data["total_area"] == 100
    assert data["name"] == "Harbour View"


def test_delete_property_with_dependents_is_refused(client, manager, property_with_people, headers):
    prop = property_with_people
    db.session.add(Job(title="Fix gutter", property_id=prop.id, created_by_id=manager.id))
    db.session.commit()

    resp = client.delete(f"/api/properties/{prop.id}", headers=headers(manager))
    assert resp.status_code == 409
    data = resp.get_json()
    assert data["code"] == "VAL_VALIDATION_ERROR"
    assert data["details"] == {"units": 2, "jobs": 1, "inspections": 0, "active_tenants": 1}
    assert db.session.get(Property, prop.id) is not None


def test_delete_empty_property(client, manager, make_property, headers):
    prop = make_property(manager, units=())
    resp = client.delete(f"/api/properties/{prop.id}", headers=headers(manager))
    assert resp.status_code == 200
    assert db.session.get(Property, prop.id) is None


def test_archive_hides_property_from_default_list(client, manager, make_property, headers):
    prop = make_property(manager)
    assert client.post(f"/api/properties/{prop.id}/archive", headers=headers(manager)).status_code == 200

    assert client.get("/api/properties", headers=headers(manager)).get_json()["total"] == 0
    archived = client.get("/api/properties?include_archived=true", headers=headers(manager)).get_json()
    assert archived["total"] == 1
    assert archived["properties"][0]["archived_at"] is not None


def test_link_owner_twice_conflicts(client, manager, owner, make_property, headers):
    prop = make_property(manager)
    url = f"/api/properties/{prop.id}/owners"
    assert client.post(url, json={"owner_id": owner.id}, headers=headers(manager)).status_code == 201
    assert client.post(url, json={"owner_id": owner.id}, headers=headers(manager)).status_code == 409
    assert client.delete(f"{url}/{owner.id}", headers=headers(manager)).status_code == 200


def test_units_crud_and_tenancy(client, manager, make_user, make_property, headers):
    prop = make_property(manager, units=("101",))
    auth = headers(manager)

    dup = client.post("/api/units", json={"property_id": prop.id, "unit_number": "101"}, headers=auth)
    assert dup.status_code == 409
    assert dup.get_json()["code"] == "RES_ALREADY_EXISTS"

    created = client.post("/api/units", json={"property_id": prop.id, "unit_number": "102", "area": 30.5},
                          headers=auth)
    assert created.status_code == 201
    unit_id = created.get_json()["unit"]["id"]
    assert created.get_json()["unit"]["area"] == 31

    renter = make_user(Role.TENANT)
    start = datetime.utcnow()
    assigned = client.post(f"/api/units/{unit_id}/tenants", headers=auth, json={
        "tenant_id": renter.id,
        "lease_start": start.isoformat() + "Z",
        "lease_end": (start + timedelta(days=365)).isoformat() + "Z",
        "monthly_rent": 950,
    })
    assert assigned.status_code == 201
    assert assigned.get_json()["unit"]["status"] == "OCCUPIED"
    tenancy_id = assigned.get_json()["tenancy"]["id"]

    blocked = client.delete(f"/api/units/{unit_id}", headers=auth)
    assert blocked.status_code == 409

    ended = client.post(f"/api/units/{unit_id}/tenants/{tenancy_id}/end", headers=auth)
    assert ended.status_code == 200
    assert ended.get_json()["unit"]["status"] == "VACANT"

    assert client.delete(f"/api/units/{unit_id}", headers=auth).status_code == 200
    assert db.session.get(Unit, unit_id) is None
