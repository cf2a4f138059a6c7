"""
Service requests raised by owners and tenants.

A request is reviewed and estimated by the property manager, optionally
approved by an owner, and finally converted into a maintenance job.
"""
import logging
from datetime import datetime

from flask import Blueprint, jsonify, request
from sqlalchemy import or_

from ..constants import JobStatus, NotificationType, Role, ServiceRequestStatus
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import Job, ServiceRequest, Unit, User
from ..schemas import ConvertToJobBody, EstimateBody, OwnerApproveBody, ReasonBody, ServiceRequestCreate, load
from ..security.access import (
    accessible_property_ids,
    active_tenancy,
    is_property_owner,
    property_access,
    require_property_access,
    WRITE,
)
from ..security.auth import auth_required, current_user, ensure_manager_subscription, require_active_subscription, require_role
from ..services import audit, cache
from ..services.notifications import notify
from ..workflow import SERVICE_REQUEST_TRANSITIONS, ensure_transition
from . import flag, page_args
from .uploads import remove_entity_files

logger = logging.getLogger(__name__)

bp = Blueprint("service_requests", __name__)

SR = ServiceRequestStatus
ESTIMABLE = (SR.SUBMITTED, SR.UNDER_REVIEW, SR.PENDING_MANAGER_REVIEW)


def scoped_requests(user):
    query = ServiceRequest.query
    if user.role == Role.ADMIN:
        return query
    if user.role == Role.TENANT:
        return query.filter(ServiceRequest.requested_by_id == user.id)
    if user.role == Role.TECHNICIAN:
        return query.join(Job, Job.id == ServiceRequest.converted_to_job_id).filter(Job.assigned_to_id == user.id)
    return query.filter(ServiceRequest.property_id.in_(accessible_property_ids(user)))


def _get_request(request_id):
    sr = db.session.get(ServiceRequest, request_id)
    if sr is None:
        raise ApiError(404, "Service request not found", ErrorCodes.RES_SERVICE_REQUEST_NOT_FOUND)
    user = current_user()
    if user.role == Role.TENANT and sr.requested_by_id == user.id:
        return sr
    if scoped_requests(user).filter(ServiceRequest.id == sr.id).first() is None:
        raise ApiError(403, "You do not have access to this service request", ErrorCodes.ACC_PROPERTY_ACCESS_DENIED)
    return sr


def _modifiable(sr):
    if sr.archived_at is not None:
        raise ApiError(403, "Archived service requests cannot be modified", ErrorCodes.BIZ_OPERATION_NOT_ALLOWED)
    return sr


def _for_manager(request_id):
    sr = db.session.get(ServiceRequest, request_id)
    if sr is None:
        raise ApiError(404, "Service request not found", ErrorCodes.RES_SERVICE_REQUEST_NOT_FOUND)
    require_property_access(current_user(), sr.property_id, write=True)
    return _modifiable(sr)


def _for_owner(request_id):
    sr = db.session.get(ServiceRequest, request_id)
    if sr is None:
        raise ApiError(404, "Service request not found", ErrorCodes.RES_SERVICE_REQUEST_NOT_FOUND)
    if not is_property_owner(current_user(), sr.property):
        raise ApiError(403, "Only an owner of this property can do this", ErrorCodes.ACC_PROPERTY_ACCESS_DENIED)
    ensure_manager_subscription(sr.property)
    return _modifiable(sr)


def _set_status(sr, new_status, details=None):
    ensure_transition(SERVICE_REQUEST_TRANSITIONS, sr.status, new_status)
    previous = sr.status
    sr.status = new_status
    audit.record("service_request.status", "service_request", sr.id,
                 {"from": previous, "to": new_status, **(details or {})})


def _tell_requester(sr, message):
    if sr.requested_by_id != current_user().id:
        notify(sr.requested_by, NotificationType.SERVICE_REQUEST_UPDATE, f"Update on \"{sr.title}\"", message,
               {"service_request_id": sr.id, "status": sr.status})


def _tell_owners(sr, title, message):
    for link in sr.property.owners:
        notify(link.owner, NotificationType.SERVICE_REQUEST_UPDATE, title, message,
               {"service_request_id": sr.id, "status": sr.status}, email=True)


def _respond(sr, status=200):
    cache.invalidate_user(sr.property.manager_id)
    return jsonify({"success": True, "service_request": sr.serialize()}), status


@bp.get("/service-requests")
@auth_required
def list_requests():
    user = current_user()
    limit, offset = page_args()
    query = scoped_requests(user)

    if flag("archived"):
        query = query.filter(ServiceRequest.archived_at.isnot(None))
    else:
        query = query.filter(ServiceRequest.archived_at.is_(None))
    for arg, column in (
        ("status", ServiceRequest.status),
        ("category", ServiceRequest.category),
        ("priority", ServiceRequest.priority),
    ):
        value = request.args.get(arg)
        if value:
            query = query.filter(column.in_(value.split(",")))
    property_id = request.args.get("property_id", type=int)
    if property_id:
        query = query.filter(ServiceRequest.property_id == property_id)
    q = (request.args.get("q") or "").strip()
    if q:
        query = query.filter(or_(ServiceRequest.title.ilike(f"%{q}%"), ServiceRequest.description.ilike(f"%{q}%")))

    total = query.count()
    items = query.order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc()).limit(limit).offset(offset).all()
    return jsonify({"success": True, "total": total, "service_requests": [sr.serialize() for sr in items]}), 200


@bp.post("/service-requests")
@require_role(Role.OWNER, Role.TENANT)
def create_request():
    """Owners and tenants raise requests; managers and technicians cannot"""
    data = load(ServiceRequestCreate)
    user = current_user()
    prop = require_property_access(user, data.property_id)

    unit_id = data.unit_id
    if user.role == Role.TENANT:
        tenancy = active_tenancy(user, prop.id)
        if tenancy is None:
            raise ApiError(403, "You do not have an active tenancy at this property", ErrorCodes.ACC_PROPERTY_ACCESS_DENIED)
        if unit_id is None:
            unit_id = tenancy.unit_id
        elif unit_id != tenancy.unit_id:
            raise ApiError(403, "Tenants can only raise requests for their own unit", ErrorCodes.ACC_ACCESS_DENIED)
    elif not is_property_owner(user, prop):
        raise ApiError(403, "Only an owner of this property can raise requests", ErrorCodes.ACC_PROPERTY_ACCESS_DENIED)
    if unit_id is not None:
        unit = db.session.get(Unit, unit_id)
        if unit is None or unit.property_id != prop.id:
            raise ApiError(400, "Unit does not belong to the property", ErrorCodes.RES_UNIT_NOT_FOUND)

    ensure_manager_subscription(prop)

    with_budget = user.role == Role.OWNER and data.owner_estimated_budget is not None
    sr = ServiceRequest(
        title=data.title,
        description=data.description,
        category=data.category,
        priority=data.priority,
        property_id=prop.id,
        unit_id=unit_id,
        requested_by_id=user.id,
        owner_estimated_budget=data.owner_estimated_budget if user.role == Role.OWNER else None,
        status=SR.PENDING_MANAGER_REVIEW if with_budget else SR.SUBMITTED,
    )
    db.session.add(sr)
    db.session.flush()
    notify(prop.manager, NotificationType.SERVICE_REQUEST_UPDATE, "New service request",
           f"{user.full_name} submitted \"{sr.title}\" for {prop.name}", {"service_request_id": sr.id}, email=True)
    audit.record("service_request.create", "service_request", sr.id, {"property_id": prop.id})
    db.session.commit()
    logger.info("Service request %s created by user %s", sr.id, user.id)
    return _respond(sr, 201)


@bp.get("/service-requests/<int:request_id>")
@auth_required
def get_request(request_id):
    return jsonify({"success": True, "service_request": _get_request(request_id).serialize()}), 200


@bp.post("/service-requests/<int:request_id>/review")
@auth_required
@require_active_subscription
def start_review(request_id):
    sr = _for_manager(request_id)
    _set_status(sr, SR.UNDER_REVIEW)
    _tell_requester(sr, "Your request is being reviewed by the property manager.")
    db.session.commit()
    return _respond(sr)


@bp.post("/service-requests/<int:request_id>/estimate")
@auth_required
@require_active_subscription
def add_estimate(request_id):
    sr = _for_manager(request_id)
    data = load(EstimateBody)
    if sr.status not in ESTIMABLE:
        raise ApiError(
            400,
            f"Cannot add an estimate to a request in status {sr.status}",
            ErrorCodes.BIZ_INVALID_STATUS_TRANSITION,
            {"current_status": sr.status, "allowed_from": list(ESTIMABLE)},
        )

    previous = sr.status
    sr.manager_estimated_cost = data.manager_estimated_cost
    sr.cost_breakdown_notes = data.cost_breakdown_notes
    # without owners the estimate waits on the manager's own approve or reject
    sr.status = SR.PENDING_OWNER_APPROVAL if sr.property.owners else SR.UNDER_REVIEW
    audit.record("service_request.estimate", "service_request", sr.id,
                 {"from": previous, "to": sr.status, "estimate": data.manager_estimated_cost})
    _tell_owners(sr, "Cost estimate awaiting your approval",
                 f"\"{sr.title}\" is estimated at ${data.manager_estimated_cost:,.2f}.")
    db.session.commit()
    return _respond(sr)


@bp.post("/service-requests/<int:request_id>/approve")
@require_role(Role.OWNER)
def owner_approve(request_id):
    sr = _for_owner(request_id)
    data = load(OwnerApproveBody)
    _set_status(sr, SR.APPROVED_BY_OWNER)
    sr.approved_budget = data.approved_budget if data.approved_budget is not None else sr.manager_estimated_cost
    sr.owner_approved_by_id = current_user().id
    sr.owner_approved_at = datetime.utcnow()
    notify(sr.property.manager, NotificationType.SERVICE_REQUEST_UPDATE, "Owner approved estimate",
           f"\"{sr.title}\" was approved by {current_user().full_name}", {"service_request_id": sr.id}, email=True)
    db.session.commit()
    return _respond(sr)


@bp.post("/service-requests/<int:request_id>/reject")
@require_role(Role.OWNER)
def owner_reject(request_id):
    sr = _for_owner(request_id)
    data = load(ReasonBody)
    _set_status(sr, SR.REJECTED_BY_OWNER, {"reason": data.reason})
    sr.rejection_reason = data.reason
    notify(sr.property.manager, NotificationType.SERVICE_REQUEST_UPDATE, "Owner rejected estimate",
           f"\"{sr.title}\" was rejected: {data.reason}", {"service_request_id": sr.id}, email=True)
    db.session.commit()
    return _respond(sr)


@bp.post("/service-requests/<int:request_id>/manager-approve")
@auth_required
@require_active_subscription
def manager_approve(request_id):
    sr = _for_manager(request_id)
    _set_status(sr, SR.APPROVED)
    _tell_requester(sr, "Your request has been approved.")
    db.session.commit()
    return _respond(sr)


@bp.post("/service-requests/<int:request_id>/manager-reject")
@auth_required
@require_active_subscription
def manager_reject(request_id):
    sr = _for_manager(request_id)
    data = load(ReasonBody)
    _set_status(sr, SR.REJECTED, {"reason": data.reason})
    sr.rejection_reason = data.reason
    _tell_requester(sr, f"Your request was rejected: {data.reason}")
    db.session.commit()
    return _respond(sr)


@bp.post("/service-requests/<int:request_id>/resubmit")
@auth_required
@require_active_subscription
def resubmit(request_id):
    """Reopen an owner-rejected request so the manager can revise the estimate"""
    sr = _for_manager(request_id)
    _set_status(sr, SR.PENDING_MANAGER_REVIEW)
    sr.rejection_reason = None
    db.session.commit()
    return _respond(sr)


@bp.post("/service-requests/<int:request_id>/convert-to-job")
@auth_required
@require_active_subscription
def convert_to_job(request_id):
    """Create a job from an approved request and mark the request converted, atomically"""
    sr = _for_manager(request_id)
    data = load(ConvertToJobBody)
    ensure_transition(SERVICE_REQUEST_TRANSITIONS, sr.status, SR.CONVERTED_TO_JOB)

    assignee = None
    if data.assigned_to_id is not None:
        assignee = db.session.get(User, data.assigned_to_id)
        if assignee is None or assignee.role != Role.TECHNICIAN:
            raise ApiError(400, "Assignee must be a technician", ErrorCodes.VAL_INVALID_INPUT)

    if sr.approved_budget is not None:
        estimated = sr.approved_budget
    elif data.estimated_cost is not None:
        estimated = data.estimated_cost
    else:
        estimated = sr.manager_estimated_cost

    user = current_user()
    try:
        job = Job(
            title=sr.title,
            description=sr.description,
            property_id=sr.property_id,
            unit_id=sr.unit_id,
            priority=data.priority or sr.priority,
            status=JobStatus.ASSIGNED if assignee else JobStatus.OPEN,
            assigned_to_id=assignee.id if assignee else None,
            scheduled_date=data.scheduled_date,
            estimated_cost=estimated,
            created_by_id=user.id,
            notes=f"Created from service request #{sr.id}",
        )
        db.session.add(job)
        db.session.flush()
        _set_status(sr, SR.CONVERTED_TO_JOB, {"job_id": job.id})
        sr.converted_to_job_id = job.id
        if assignee is not None:
            notify(assignee, NotificationType.JOB_ASSIGNED, "New job assigned",
                   f"You have been assigned: {job.title}", {"job_id": job.id}, email=True)
        _tell_requester(sr, "Your request has been scheduled as a maintenance job.")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    cache.invalidate_user(sr.property.manager_id)
    return jsonify({"success": True, "service_request": sr.serialize(), "job": job.serialize()}), 201


@bp.delete("/service-requests/<int:request_id>")
@auth_required
def delete_request(request_id):
    user = current_user()
    sr = db.session.get(ServiceRequest, request_id)
    if sr is None:
        raise ApiError(404, "Service request not found", ErrorCodes.RES_SERVICE_REQUEST_NOT_FOUND)
    if sr.requested_by_id != user.id and property_access(user, sr.property) != WRITE:
        raise ApiError(403, "Only the requester or the property manager can delete this request",
                       ErrorCodes.ACC_ACCESS_DENIED)
    remove_entity_files("service_request", [sr.id])
    manager_id = sr.property.manager_id
    audit.record("service_request.delete", "service_request", sr.id)
    db.session.delete(sr)
    db.session.commit()
    cache.invalidate_user(manager_id)
    return jsonify({"success": True, "message": "Service request deleted"}), 200
