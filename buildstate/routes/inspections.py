import logging
from datetime import datetime

from flask import Blueprint, jsonify, make_response, request

from ..constants import InspectionStatus, NotificationType, Role
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import Inspection, Unit, User
from ..schemas import InspectionComplete, InspectionCreate, InspectionUpdate, ReasonBody, load
from ..security.access import accessible_property_ids, property_access, require_property_access, WRITE
from ..security.auth import (
    auth_required,
    current_user,
    ensure_manager_subscription,
    require_active_subscription,
    require_role,
)
from ..services import audit, cache
from ..services.billing import ensure_within_limit, usage_for
from ..services.notifications import notify
from ..services.reports import inspection_report
from ..workflow import INSPECTION_TRANSITIONS, ensure_transition
from . import page_args
from .uploads import remove_entity_files

logger = logging.getLogger(__name__)

bp = Blueprint("inspections", __name__)


def scoped_inspections(user):
    query = Inspection.query
    if user.role == Role.TECHNICIAN:
        return query.filter(Inspection.assigned_to_id == user.id)
    if user.role != Role.ADMIN:
        query = query.filter(Inspection.property_id.in_(accessible_property_ids(user)))
    return query


def _get_inspection(inspection_id, write=False):
    inspection = db.session.get(Inspection, inspection_id)
    if inspection is None:
        raise ApiError(404, "Inspection not found", ErrorCodes.RES_INSPECTION_NOT_FOUND)
    user = current_user()
    if user.role == Role.TECHNICIAN and not write:
        if inspection.assigned_to_id != user.id:
            raise ApiError(403, "This inspection is not assigned to you", ErrorCodes.ACC_ACCESS_DENIED)
        return inspection
    require_property_access(user, inspection.property_id, write=write)
    return inspection


def _get_for_worker(inspection_id):
    """Inspection the caller may work on: the property manager, an admin or the assigned technician."""
    user = current_user()
    inspection = db.session.get(Inspection, inspection_id)
    if inspection is None:
        raise ApiError(404, "Inspection not found", ErrorCodes.RES_INSPECTION_NOT_FOUND)
    if user.role == Role.TECHNICIAN and inspection.assigned_to_id == user.id:
        ensure_manager_subscription(inspection.property)
        return user, inspection
    if property_access(user, inspection.property) != WRITE:
        raise ApiError(403, "You cannot work on this inspection", ErrorCodes.ACC_ACCESS_DENIED)
    return user, inspection


def _inspector(user_id, prop):
    if user_id is None:
        return None
    inspector = db.session.get(User, user_id)
    if inspector is None or inspector.role not in (Role.TECHNICIAN, Role.PROPERTY_MANAGER):
        raise ApiError(400, "Inspector must be a technician or property manager", ErrorCodes.VAL_INVALID_INPUT)
    # a manager can only inspect properties they manage
    if inspector.role == Role.PROPERTY_MANAGER and property_access(inspector, prop) != WRITE:
        raise ApiError(403, "Inspector does not manage this property", ErrorCodes.ACC_PROPERTY_ACCESS_DENIED)
    return inspector


def _check_unit(property_id, unit_id):
    if unit_id is None:
        return
    unit = db.session.get(Unit, unit_id)
    if unit is None or unit.property_id != property_id:
        raise ApiError(400, "Unit does not belong to the property", ErrorCodes.RES_UNIT_NOT_FOUND)


def _transition(inspection, new_status, actor):
    ensure_transition(INSPECTION_TRANSITIONS, inspection.status, new_status)
    previous = inspection.status
    inspection.status = new_status
    audit.record("inspection.status", "inspection", inspection.id, {"from": previous, "to": new_status}, user=actor)
    cache.invalidate_user(inspection.property.manager_id)


@bp.get("/inspections")
@auth_required
def list_inspections():
    user = current_user()
    limit, offset = page_args()
    query = scoped_inspections(user)

    for arg, column in (("status", Inspection.status), ("type", Inspection.type)):
        value = request.args.get(arg)
        if value:
            query = query.filter(column.in_(value.split(",")))
    property_id = request.args.get("property_id", type=int)
    if property_id:
        query = query.filter(Inspection.property_id == property_id)

    total = query.count()
    inspections = query.order_by(Inspection.scheduled_date.desc()).limit(limit).offset(offset).all()
    return jsonify({"success": True, "total": total, "inspections": [i.serialize() for i in inspections]}), 200


@bp.get("/inspections/overdue")
@auth_required
def overdue_inspections():
    inspections = (
        scoped_inspections(current_user())
        .filter(Inspection.status == InspectionStatus.SCHEDULED, Inspection.scheduled_date < datetime.utcnow())
        .order_by(Inspection.scheduled_date)
        .all()
    )
    return jsonify({"success": True, "total": len(inspections), "inspections": [i.serialize() for i in inspections]}), 200


@bp.post("/inspections")
@require_role(Role.PROPERTY_MANAGER, Role.ADMIN)
@require_active_subscription
def create_inspection():
    data = load(InspectionCreate)
    user = current_user()
    prop = require_property_access(user, data.property_id, write=True)
    _check_unit(prop.id, data.unit_id)
    inspector = _inspector(data.assigned_to_id, prop)
    if user.role == Role.PROPERTY_MANAGER:
        ensure_within_limit(user, "inspections_per_month", usage_for(user)["inspections_per_month"])

    fields = data.model_dump()
    fields["title"] = fields["title"] or f"{data.type.replace('_', ' ').title()} inspection"
    inspection = Inspection(created_by_id=user.id, status=InspectionStatus.SCHEDULED, **fields)
    db.session.add(inspection)
    db.session.flush()
    if inspector is not None and inspector.id != user.id:
        notify(inspector, NotificationType.INSPECTION_SCHEDULED, "Inspection scheduled",
               f"{inspection.title} at {prop.name} on {inspection.scheduled_date:%Y-%m-%d}",
               {"inspection_id": inspection.id}, email=True)
    audit.record("inspection.create", "inspection", inspection.id, {"property_id": prop.id})
    db.session.commit()
    cache.invalidate_user(prop.manager_id)
    return jsonify({"success": True, "inspection": inspection.serialize()}), 201


@bp.get("/inspections/<int:inspection_id>")
@auth_required
def get_inspection(inspection_id):
    inspection = _get_inspection(inspection_id)
    return jsonify({"success": True, "inspection": inspection.serialize()}), 200


@bp.patch("/inspections/<int:inspection_id>")
@auth_required
@require_active_subscription
def update_inspection(inspection_id):
    inspection = _get_inspection(inspection_id, write=True)
    if inspection.status in (InspectionStatus.COMPLETED, InspectionStatus.CANCELLED):
        raise ApiError(400, f"Cannot edit a {inspection.status.lower()} inspection", ErrorCodes.BIZ_OPERATION_NOT_ALLOWED)

    changes = load(InspectionUpdate).model_dump(exclude_unset=True)
    if "unit_id" in changes:
        _check_unit(inspection.property_id, changes["unit_id"])
    if changes.get("assigned_to_id") is not None:
        _inspector(changes["assigned_to_id"], inspection.property)
    for field, value in changes.items():
        if value is None and field in ("title", "type", "scheduled_date"):
            continue
        setattr(inspection, field, value)
    if "scheduled_date" in changes:
        inspection.overdue_notified_at = None

    audit.record("inspection.update", "inspection", inspection.id, {"fields": sorted(changes)})
    db.session.commit()
    cache.invalidate_user(inspection.property.manager_id)
    return jsonify({"success": True, "inspection": inspection.serialize()}), 200


@bp.delete("/inspections/<int:inspection_id>")
@auth_required
def delete_inspection(inspection_id):
    inspection = _get_inspection(inspection_id, write=True)
    remove_entity_files("inspection", [inspection.id])
    manager_id = inspection.property.manager_id
    audit.record("inspection.delete", "inspection", inspection.id)
    db.session.delete(inspection)
    db.session.commit()
    cache.invalidate_user(manager_id)
    return jsonify({"success": True, "message": "Inspection deleted"}), 200


@bp.post("/inspections/<int:inspection_id>/start")
@auth_required
@require_active_subscription
def start_inspection(inspection_id):
    user, inspection = _get_for_worker(inspection_id)
    _transition(inspection, InspectionStatus.IN_PROGRESS, user)
    inspection.started_at = datetime.utcnow()
    db.session.commit()
    return jsonify({"success": True, "inspection": inspection.serialize()}), 200


@bp.post("/inspections/<int:inspection_id>/complete")
@auth_required
@require_active_subscription
def complete_inspection(inspection_id):
    """Technicians submit for approval; managers and admins complete directly"""
    user, inspection = _get_for_worker(inspection_id)
    data = load(InspectionComplete)

    _transition(inspection, InspectionStatus.PENDING_APPROVAL, user)
    if data.findings is not None:
        inspection.findings = data.findings
    if data.notes is not None:
        inspection.notes = data.notes

    if user.role == Role.TECHNICIAN:
        notify(inspection.property.manager, NotificationType.SYSTEM, "Inspection awaiting approval",
               f"{user.full_name} submitted {inspection.title} for approval", {"inspection_id": inspection.id},
               email=True)
    else:
        _transition(inspection, InspectionStatus.COMPLETED, user)
        inspection.completed_date = datetime.utcnow()
        inspection.approved_by_id = user.id
        inspection.approved_at = inspection.completed_date
    db.session.commit()
    return jsonify({"success": True, "inspection": inspection.serialize()}), 200


@bp.post("/inspections/<int:inspection_id>/approve")
@auth_required
@require_active_subscription
def approve_inspection(inspection_id):
    inspection = _get_inspection(inspection_id, write=True)
    user = current_user()
    _transition(inspection, InspectionStatus.COMPLETED, user)
    now = datetime.utcnow()
    inspection.completed_date = now
    inspection.approved_by_id = user.id
    inspection.approved_at = now
    inspection.rejection_reason = None
    if inspection.assigned_to is not None:
        notify(inspection.assigned_to, NotificationType.SYSTEM, "Inspection approved",
               f"{inspection.title} was approved", {"inspection_id": inspection.id})
    db.session.commit()
    return jsonify({"success": True, "inspection": inspection.serialize()}), 200


@bp.post("/inspections/<int:inspection_id>/reject")
@auth_required
@require_active_subscription
def reject_inspection(inspection_id):
    inspection = _get_inspection(inspection_id, write=True)
    data = load(ReasonBody)
    _transition(inspection, InspectionStatus.IN_PROGRESS, current_user())
    inspection.rejection_reason = data.reason
    if inspection.assigned_to is not None:
        notify(inspection.assigned_to, NotificationType.SYSTEM, "Inspection returned",
               f"{inspection.title} needs more work: {data.reason}", {"inspection_id": inspection.id}, email=True)
    db.session.commit()
    return jsonify({"success": True, "inspection": inspection.serialize()}), 200


@bp.post("/inspections/<int:inspection_id>/cancel")
@auth_required
def cancel_inspection(inspection_id):
    inspection = _get_inspection(inspection_id, write=True)
    _transition(inspection, InspectionStatus.CANCELLED, current_user())
    db.session.commit()
    return jsonify({"success": True, "inspection": inspection.serialize()}), 200


@bp.get("/inspections/<int:inspection_id>/report.pdf")
@auth_required
def inspection_pdf(inspection_id):
    inspection = _get_inspection(inspection_id)
    resp = make_response(inspection_report(inspection))
    resp.headers["Content-Type"] = "application/pdf"
    resp.headers["Content-Disposition"] = f'inline; filename="inspection-{inspection.id}.pdf"'
    return resp
