import logging
from datetime import datetime

from flask import Blueprint, jsonify

from ..constants import Role, UnitStatus
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import Unit, UnitTenant, User
from ..schemas import TenantAssign, UnitCreate, UnitUpdate, load
from ..security.access import require_property_access
from ..security.auth import auth_required, current_user, require_active_subscription
from ..services import audit
from . import invalidate_property_caches
from .uploads import remove_entity_files

logger = logging.getLogger(__name__)

bp = Blueprint("units", __name__)


def _get_unit(unit_id, write=False):
    unit = db.session.get(Unit, unit_id)
    if unit is None:
        raise ApiError(404, "Unit not found", ErrorCodes.RES_UNIT_NOT_FOUND)
    require_property_access(current_user(), unit.property_id, write=write)
    return unit


def _ensure_unique_number(property_id, unit_number, exclude_id=None):
    query = Unit.query.filter_by(property_id=property_id, unit_number=unit_number)
    if exclude_id is not None:
        query = query.filter(Unit.id != exclude_id)
    if query.first() is not None:
        raise ApiError(
            409,
            f"Unit {unit_number} already exists in this property",
            ErrorCodes.RES_ALREADY_EXISTS,
        )


@bp.get("/properties/<int:property_id>/units")
@auth_required
def list_units(property_id):
    prop = require_property_access(current_user(), property_id)
    return jsonify({
        "success": True,
        "units": [u.serialize(include_tenants=True) for u in prop.units],
        "occupancy": prop.occupancy_stats(),
    }), 200


@bp.post("/units")
@auth_required
@require_active_subscription
def create_unit():
    data = load(UnitCreate)
    prop = require_property_access(current_user(), data.property_id, write=True)
    _ensure_unique_number(prop.id, data.unit_number)

    unit = Unit(**data.model_dump())
    db.session.add(unit)
    db.session.flush()
    audit.record("unit.create", "unit", unit.id, {"property_id": prop.id, "unit_number": unit.unit_number})
    db.session.commit()
    invalidate_property_caches(prop)
    return jsonify({"success": True, "unit": unit.serialize()}), 201


@bp.get("/units/<int:unit_id>")
@auth_required
def get_unit(unit_id):
    unit = _get_unit(unit_id)
    return jsonify({"success": True, "unit": unit.serialize(include_tenants=True)}), 200


@bp.patch("/units/<int:unit_id>")
@auth_required
@require_active_subscription
def update_unit(unit_id):
    unit = _get_unit(unit_id, write=True)
    changes = load(UnitUpdate).model_dump(exclude_unset=True)

    if changes.get("unit_number") and changes["unit_number"] != unit.unit_number:
        _ensure_unique_number(unit.property_id, changes["unit_number"], exclude_id=unit.id)
    for field, value in changes.items():
        if value is None and field in ("unit_number", "status"):
            continue
        setattr(unit, field, value)

    audit.record("unit.update", "unit", unit.id, {"fields": sorted(changes)})
    db.session.commit()
    invalidate_property_caches(unit.property)
    return jsonify({"success": True, "unit": unit.serialize()}), 200


@bp.delete("/units/<int:unit_id>")
@auth_required
def delete_unit(unit_id):
    unit = _get_unit(unit_id, write=True)
    if unit.active_tenancies():
        raise ApiError(
            409,
            "Cannot delete a unit with an active tenant. End the tenancy first.",
            ErrorCodes.VAL_VALIDATION_ERROR,
            {"active_tenants": len(unit.active_tenancies())},
        )
    remove_entity_files("unit", [unit.id])
    prop = unit.property
    audit.record("unit.delete", "unit", unit.id, {"property_id": prop.id, "unit_number": unit.unit_number})
    db.session.delete(unit)
    db.session.commit()
    invalidate_property_caches(prop)
    return jsonify({"success": True, "message": "Unit deleted"}), 200


@bp.post("/units/<int:unit_id>/tenants")
@auth_required
@require_active_subscription
def assign_tenant(unit_id):
    unit = _get_unit(unit_id, write=True)
    data = load(TenantAssign)

    tenant = db.session.get(User, data.tenant_id)
    if tenant is None or tenant.role != Role.TENANT:
        raise ApiError(404, "Tenant not found", ErrorCodes.RES_TENANT_NOT_FOUND)
    if any(t.tenant_id == tenant.id for t in unit.active_tenancies()):
        raise ApiError(409, "Tenant is already assigned to this unit", ErrorCodes.RES_ALREADY_EXISTS)

    tenancy = UnitTenant(unit_id=unit.id, is_active=True, **data.model_dump())
    db.session.add(tenancy)
    unit.status = UnitStatus.OCCUPIED
    audit.record("unit.tenant_assign", "unit", unit.id, {"tenant_id": tenant.id})
    db.session.commit()
    invalidate_property_caches(unit.property)
    return jsonify({"success": True, "tenancy": tenancy.serialize(), "unit": unit.serialize()}), 201


@bp.post("/units/<int:unit_id>/tenants/<int:tenancy_id>/end")
@auth_required
def end_tenancy(unit_id, tenancy_id):
    unit = _get_unit(unit_id, write=True)
    tenancy = UnitTenant.query.filter_by(id=tenancy_id, unit_id=unit.id).first()
    if tenancy is None:
        raise ApiError(404, "Tenancy not found", ErrorCodes.RES_TENANT_NOT_FOUND)
    if not tenancy.is_active:
        raise ApiError(400, "Tenancy has already ended", ErrorCodes.BIZ_OPERATION_NOT_ALLOWED)

    tenancy.is_active = False
    tenancy.move_out_date = datetime.utcnow()
    if not unit.active_tenancies():
        unit.status = UnitStatus.VACANT
    audit.record("unit.tenant_end", "unit", unit.id, {"tenant_id": tenancy.tenant_id})
    db.session.commit()
    invalidate_property_caches(unit.property)
    return jsonify({"success": True, "tenancy": tenancy.serialize(), "unit": unit.serialize()}), 200
