from flask import Blueprint, jsonify, request

from ..constants import Role
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import MaintenancePlan
from ..schemas import MaintenancePlanCreate, MaintenancePlanUpdate, load
from ..security.access import accessible_property_ids, require_property_access
from ..security.auth import current_user, require_active_subscription, require_role
from ..services import audit

bp = Blueprint("maintenance_plans", __name__)


def _get_plan(plan_id):
    plan = db.session.get(MaintenancePlan, plan_id)
    if plan is None:
        raise ApiError(404, "Maintenance plan not found", ErrorCodes.RES_NOT_FOUND)
    require_property_access(current_user(), plan.property_id, write=True)
    return plan


@bp.get("/maintenance-plans")
@require_role(Role.PROPERTY_MANAGER, Role.ADMIN)
def list_plans():
    query = MaintenancePlan.query.filter(MaintenancePlan.property_id.in_(accessible_property_ids(current_user())))
    property_id = request.args.get("property_id", type=int)
    if property_id:
        query = query.filter(MaintenancePlan.property_id == property_id)
    active = request.args.get("active")
    if active is not None:
        query = query.filter(MaintenancePlan.is_active.is_(active.lower() in ("1", "true", "yes")))
    plans = query.order_by(MaintenancePlan.next_due_date).all()
    return jsonify({"success": True, "plans": [p.serialize() for p in plans]}), 200


@bp.post("/maintenance-plans")
@require_role(Role.PROPERTY_MANAGER, Role.ADMIN)
@require_active_subscription
def create_plan():
    data = load(MaintenancePlanCreate)
    user = current_user()
    require_property_access(user, data.property_id, write=True)

    plan = MaintenancePlan(created_by_id=user.id, **data.model_dump())
    db.session.add(plan)
    db.session.flush()
    audit.record("maintenance_plan.create", "maintenance_plan", plan.id, {"property_id": plan.property_id})
    db.session.commit()
    return jsonify({"success": True, "plan": plan.serialize()}), 201


@bp.get("/maintenance-plans/<int:plan_id>")
@require_role(Role.PROPERTY_MANAGER, Role.ADMIN)
def get_plan(plan_id):
    plan = _get_plan(plan_id)
    data = plan.serialize()
    data["recent_jobs"] = [j.serialize() for j in sorted(plan.jobs, key=lambda j: j.id, reverse=True)[:10]]
    return jsonify({"success": True, "plan": data}), 200


@bp.patch("/maintenance-plans/<int:plan_id>")
@require_role(Role.PROPERTY_MANAGER, Role.ADMIN)
@require_active_subscription
def update_plan(plan_id):
    plan = _get_plan(plan_id)
    changes = load(MaintenancePlanUpdate).model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is not None:
            setattr(plan, field, value)
    audit.record("maintenance_plan.update", "maintenance_plan", plan.id, {"fields": sorted(changes)})
    db.session.commit()
    return jsonify({"success": True, "plan": plan.serialize()}), 200


@bp.delete("/maintenance-plans/<int:plan_id>")
@require_role(Role.PROPERTY_MANAGER, Role.ADMIN)
def delete_plan(plan_id):
    plan = _get_plan(plan_id)
    for job in plan.jobs:
        job.maintenance_plan_id = None
    audit.record("maintenance_plan.delete", "maintenance_plan", plan.id)
    db.session.delete(plan)
    db.session.commit()
    return jsonify({"success": True, "message": "Maintenance plan deleted"}), 200
