import logging
from datetime import datetime

from flask import Blueprint, jsonify, request

from ..constants import Role
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import Inspection, Job, MaintenancePlan, Property, PropertyOwner, ServiceRequest, Unit, UnitTenant, User
from ..schemas import OwnerLink, PropertyCreate, PropertyUpdate, load
from ..security.access import accessible_property_ids, require_property_access, search_filter
from ..security.auth import auth_required, current_user, require_active_subscription, require_role
from ..services import audit
from ..services.billing import ensure_within_limit
from ..services.cache import cached_response
from . import flag, invalidate_property_caches, page_args
from .uploads import remove_entity_files

logger = logging.getLogger(__name__)

bp = Blueprint("properties", __name__)


@bp.get("/properties")
@auth_required
@cached_response(ttl=60)
def list_properties():
    """Get list of properties visible to the caller with optional filtering"""
    user = current_user()
    limit, offset = page_args()

    query = Property.query.filter(Property.id.in_(accessible_property_ids(user)))
    if not flag("include_archived"):
        query = query.filter(Property.archived_at.is_(None))

    status = request.args.get("status")
    if status:
        query = query.filter(Property.status == status)
    property_type = request.args.get("type")
    if property_type:
        query = query.filter(Property.property_type == property_type)
    query = search_filter(query, Property, (request.args.get("q") or "").strip(), "name", "address", "city")

    total = query.count()
    properties = query.order_by(Property.id).limit(limit).offset(offset).all()

    return jsonify({
        "success": True,
        "total": total,
        "properties": [prop.serialize() for prop in properties],
    }), 200


@bp.post("/properties")
@require_role(Role.PROPERTY_MANAGER)
@require_active_subscription
def create_property():
    """Create a property, optionally with its units, in one transaction"""
    data = load(PropertyCreate)
    user = current_user()

    owned = Property.query.filter_by(manager_id=user.id).count()
    ensure_within_limit(user, "properties", owned)

    numbers = [u.unit_number for u in data.units]
    if len(numbers) != len(set(numbers)):
        raise ApiError(409, "Unit numbers must be unique within a property", ErrorCodes.RES_ALREADY_EXISTS)

    try:
        prop = Property(manager_id=user.id, **data.model_dump(exclude={"units"}))
        db.session.add(prop)
        db.session.flush()
        for unit_data in data.units:
            db.session.add(Unit(property_id=prop.id, **unit_data.model_dump()))
        audit.record("property.create", "property", prop.id, {"name": prop.name, "units": len(data.units)})
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    invalidate_property_caches(prop)
    logger.info("Property %s created by user %s", prop.id, user.id)
    return jsonify({"success": True, "property": prop.serialize(include_units=True)}), 201


@bp.get("/properties/<int:property_id>")
@auth_required
def get_property(property_id):
    """Get single property with units and occupancy"""
    prop = require_property_access(current_user(), property_id)
    return jsonify({"success": True, "property": prop.serialize(include_units=True)}), 200


@bp.patch("/properties/<int:property_id>")
@auth_required
@require_active_subscription
def update_property(property_id):
    prop = require_property_access(current_user(), property_id, write=True)
    data = load(PropertyUpdate)

    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is None and field in ("name", "address", "city", "country", "property_type", "status"):
            continue
        setattr(prop, field, value)

    audit.record("property.update", "property", prop.id, {"fields": sorted(changes)})
    db.session.commit()
    invalidate_property_caches(prop)
    return jsonify({"success": True, "property": prop.serialize(include_units=True)}), 200


@bp.delete("/properties/<int:property_id>")
@auth_required
def delete_property(property_id):
    """Delete a property that has nothing hanging off it"""
    prop = require_property_access(current_user(), property_id, write=True)

    active_tenants = (
        UnitTenant.query.join(Unit, Unit.id == UnitTenant.unit_id)
        .filter(Unit.property_id == prop.id, UnitTenant.is_active.is_(True))
        .count()
    )
    counts = {
        "units": Unit.query.filter_by(property_id=prop.id).count(),
        "jobs": Job.query.filter_by(property_id=prop.id).count(),
        "inspections": Inspection.query.filter_by(property_id=prop.id).count(),
        "active_tenants": active_tenants,
    }
    blocking = {k: v for k, v in counts.items() if v}
    if blocking:
        summary = ", ".join(f"{v} {k.replace('_', ' ')}" for k, v in blocking.items())
        raise ApiError(
            409,
            f"Cannot delete property with existing {summary}. Remove them or archive the property instead.",
            ErrorCodes.VAL_VALIDATION_ERROR,
            counts,
        )

    remove_entity_files("property", [prop.id])
    remove_entity_files("service_request", [sr.id for sr in ServiceRequest.query.filter_by(property_id=prop.id)])
    MaintenancePlan.query.filter_by(property_id=prop.id).delete()
    ServiceRequest.query.filter_by(property_id=prop.id).delete()
    invalidate_property_caches(prop)
    audit.record("property.delete", "property", prop.id, {"name": prop.name})
    db.session.delete(prop)
    db.session.commit()
    return jsonify({"success": True, "message": "Property deleted"}), 200


def _set_archived(property_id, archived):
    prop = require_property_access(current_user(), property_id, write=True)
    prop.archived_at = datetime.utcnow() if archived else None
    audit.record("property.archive" if archived else "property.unarchive", "property", prop.id)
    db.session.commit()
    invalidate_property_caches(prop)
    return jsonify({"success": True, "property": prop.serialize()}), 200


@bp.post("/properties/<int:property_id>/archive")
@auth_required
def archive_property(property_id):
    return _set_archived(property_id, True)


@bp.post("/properties/<int:property_id>/unarchive")
@auth_required
def unarchive_property(property_id):
    return _set_archived(property_id, False)


@bp.post("/properties/<int:property_id>/owners")
@auth_required
@require_active_subscription
def add_owner(property_id):
    prop = require_property_access(current_user(), property_id, write=True)
    data = load(OwnerLink)

    owner = db.session.get(User, data.owner_id)
    if owner is None or owner.role != Role.OWNER:
        raise ApiError(404, "Owner not found", ErrorCodes.RES_USER_NOT_FOUND)
    if PropertyOwner.query.filter_by(property_id=prop.id, owner_id=owner.id).first():
        raise ApiError(409, "Owner is already linked to this property", ErrorCodes.RES_ALREADY_EXISTS)

    link = PropertyOwner(property_id=prop.id, owner_id=owner.id, ownership_percentage=data.ownership_percentage)
    db.session.add(link)
    audit.record("property.owner_add", "property", prop.id, {"owner_id": owner.id})
    db.session.commit()
    invalidate_property_caches(prop)
    return jsonify({"success": True, "owner": link.serialize()}), 201


@bp.delete("/properties/<int:property_id>/owners/<int:owner_id>")
@auth_required
def remove_owner(property_id, owner_id):
    prop = require_property_access(current_user(), property_id, write=True)
    link = PropertyOwner.query.filter_by(property_id=prop.id, owner_id=owner_id).first()
    if link is None:
        raise ApiError(404, "Owner is not linked to this property", ErrorCodes.RES_NOT_FOUND)

    invalidate_property_caches(prop)
    db.session.delete(link)
    audit.record("property.owner_remove", "property", prop.id, {"owner_id": owner_id})
    db.session.commit()
    return jsonify({"success": True, "message": "Owner removed"}), 200
