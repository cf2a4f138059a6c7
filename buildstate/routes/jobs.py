import logging
from datetime import datetime

from flask import Blueprint, jsonify, request

from ..constants import JobStatus, NotificationType, Role, ServiceRequestStatus
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import Job, JobComment, ServiceRequest, Unit, User
from ..schemas import CommentCreate, JobCreate, JobStatusUpdate, JobUpdate, ReasonBody, load
from ..security.access import accessible_property_ids, property_access, require_property_access, search_filter, WRITE
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
from ..workflow import JOB_TRANSITIONS, ensure_transition
from . import page_args
from .uploads import remove_entity_files

logger = logging.getLogger(__name__)

bp = Blueprint("jobs", __name__)


def scoped_jobs(user):
    """Jobs visible to `user`: technicians see their assignments, everyone else goes by property."""
    query = Job.query
    if user.role == Role.TECHNICIAN:
        return query.filter(Job.assigned_to_id == user.id)
    if user.role != Role.ADMIN:
        query = query.filter(Job.property_id.in_(accessible_property_ids(user)))
    return query


def _get_job(job_id, write=False):
    job = db.session.get(Job, job_id)
    if job is None:
        raise ApiError(404, "Job not found", ErrorCodes.RES_JOB_NOT_FOUND)
    user = current_user()
    if user.role == Role.TECHNICIAN and not write:
        if job.assigned_to_id != user.id:
            raise ApiError(403, "This job is not assigned to you", ErrorCodes.ACC_ACCESS_DENIED)
        return job
    require_property_access(user, job.property_id, write=write)
    return job


def _technician(user_id):
    if user_id is None:
        return None
    tech = db.session.get(User, user_id)
    if tech is None or tech.role != Role.TECHNICIAN or not tech.is_active:
        raise ApiError(400, "Assignee must be an active technician", ErrorCodes.VAL_INVALID_INPUT)
    return tech


def _check_unit(property_id, unit_id):
    if unit_id is None:
        return
    unit = db.session.get(Unit, unit_id)
    if unit is None or unit.property_id != property_id:
        raise ApiError(400, "Unit does not belong to the property", ErrorCodes.RES_UNIT_NOT_FOUND)


def _notify_assigned(job):
    notify(db.session.get(User, job.assigned_to_id), NotificationType.JOB_ASSIGNED, "New job assigned",
           f"You have been assigned: {job.title}", {"job_id": job.id}, email=True)


def touch_caches(job):
    cache.invalidate_user(job.property.manager_id)
    if job.assigned_to_id:
        cache.invalidate_user(job.assigned_to_id)


def apply_status(job, new_status, actor, notes=None, actual_cost=None):
    """Move `job` to `new_status` with side effects. Same status is a no-op."""
    if new_status == job.status:
        return False
    ensure_transition(JOB_TRANSITIONS, job.status, new_status)
    if new_status == JobStatus.ASSIGNED and job.assigned_to_id is None:
        raise ApiError(400, "Assign a technician before marking the job assigned", ErrorCodes.VAL_MISSING_FIELD)

    now = datetime.utcnow()
    previous = job.status
    job.status = new_status
    if notes:
        job.notes = f"{job.notes}\n{notes}" if job.notes else notes
    if actual_cost is not None:
        job.actual_cost = actual_cost

    manager = job.property.manager
    if new_status == JobStatus.ASSIGNED:
        _notify_assigned(job)
    elif new_status == JobStatus.IN_PROGRESS:
        job.started_at = job.started_at or now
        if actor.id != manager.id:
            notify(manager, NotificationType.SYSTEM, "Job started", f"{actor.full_name} started: {job.title}",
                   {"job_id": job.id})
    elif new_status == JobStatus.COMPLETED:
        job.completed_date = now
        notify(manager, NotificationType.JOB_COMPLETED, "Job completed", f"{job.title} has been completed",
               {"job_id": job.id}, email=True)
        linked = ServiceRequest.query.filter_by(
            converted_to_job_id=job.id, status=ServiceRequestStatus.CONVERTED_TO_JOB
        ).all()
        for sr in linked:
            sr.status = ServiceRequestStatus.COMPLETED
            notify(sr.requested_by, NotificationType.SERVICE_REQUEST_UPDATE, "Service request completed",
                   f"Work on \"{sr.title}\" has been completed.", {"service_request_id": sr.id})

    audit.record("job.status", "job", job.id, {"from": previous, "to": new_status}, user=actor)
    return True


@bp.get("/jobs")
@auth_required
def list_jobs():
    user = current_user()
    limit, offset = page_args()
    query = scoped_jobs(user)

    for arg, column in (("status", Job.status), ("priority", Job.priority)):
        value = request.args.get(arg)
        if value:
            query = query.filter(column.in_(value.split(",")))
    property_id = request.args.get("property_id", type=int)
    if property_id:
        query = query.filter(Job.property_id == property_id)
    query = search_filter(query, Job, (request.args.get("q") or "").strip(), "title", "description")

    total = query.count()
    jobs = query.order_by(Job.created_at.desc(), Job.id.desc()).limit(limit).offset(offset).all()
    return jsonify({"success": True, "total": total, "jobs": [j.serialize() for j in jobs]}), 200


def open_job(user, fields, details=None):
    """Create a job for `user` from validated fields; the caller commits."""
    prop = require_property_access(user, fields["property_id"], write=True)
    _check_unit(prop.id, fields.get("unit_id"))
    tech = _technician(fields.get("assigned_to_id"))
    if user.role == Role.PROPERTY_MANAGER:
        ensure_within_limit(user, "jobs_per_month", usage_for(user)["jobs_per_month"])

    job = Job(created_by_id=user.id, status=JobStatus.ASSIGNED if tech else JobStatus.OPEN, **fields)
    db.session.add(job)
    db.session.flush()
    if tech:
        _notify_assigned(job)
    audit.record("job.create", "job", job.id, {"property_id": prop.id, **(details or {})})
    return job


@bp.post("/jobs")
@require_role(Role.PROPERTY_MANAGER, Role.ADMIN)
@require_active_subscription
def create_job():
    job = open_job(current_user(), load(JobCreate).model_dump())
    db.session.commit()
    touch_caches(job)
    return jsonify({"success": True, "job": job.serialize()}), 201


@bp.get("/jobs/<int:job_id>")
@auth_required
def get_job(job_id):
    job = _get_job(job_id)
    data = job.serialize()
    data["comments"] = [c.serialize() for c in job.comments]
    return jsonify({"success": True, "job": data}), 200


@bp.patch("/jobs/<int:job_id>")
@auth_required
@require_active_subscription
def update_job(job_id):
    job = _get_job(job_id, write=True)
    changes = load(JobUpdate).model_dump(exclude_unset=True)

    if "unit_id" in changes:
        _check_unit(job.property_id, changes["unit_id"])
    reassigned = False
    if "assigned_to_id" in changes and changes["assigned_to_id"] != job.assigned_to_id:
        _technician(changes["assigned_to_id"])
        reassigned = changes["assigned_to_id"] is not None

    for field, value in changes.items():
        if value is None and field in ("title", "priority"):
            continue
        setattr(job, field, value)
    db.session.flush()

    if reassigned:
        if job.status == JobStatus.OPEN:
            job.status = JobStatus.ASSIGNED
        _notify_assigned(job)
    elif job.assigned_to_id is None and job.status == JobStatus.ASSIGNED:
        job.status = JobStatus.OPEN

    audit.record("job.update", "job", job.id, {"fields": sorted(changes)})
    db.session.commit()
    touch_caches(job)
    return jsonify({"success": True, "job": job.serialize()}), 200


@bp.delete("/jobs/<int:job_id>")
@auth_required
def delete_job(job_id):
    job = _get_job(job_id, write=True)
    remove_entity_files("job", [job.id])
    # the source request goes back to its approved state
    for sr in ServiceRequest.query.filter_by(converted_to_job_id=job.id).all():
        sr.converted_to_job_id = None
        if sr.status == ServiceRequestStatus.CONVERTED_TO_JOB:
            restored = ServiceRequestStatus.APPROVED_BY_OWNER if sr.owner_approved_at else ServiceRequestStatus.APPROVED
            audit.record("service_request.status", "service_request", sr.id,
                         {"from": sr.status, "to": restored, "job_id": job.id, "reason": "job deleted"})
            sr.status = restored
    touch_caches(job)
    audit.record("job.delete", "job", job.id, {"title": job.title})
    db.session.delete(job)
    db.session.commit()
    return jsonify({"success": True, "message": "Job deleted"}), 200


@bp.patch("/jobs/<int:job_id>/status")
@auth_required
@require_active_subscription
def update_status(job_id):
    """Property manager or assigned technician moves a job through its lifecycle"""
    user = current_user()
    job = db.session.get(Job, job_id)
    if job is None:
        raise ApiError(404, "Job not found", ErrorCodes.RES_JOB_NOT_FOUND)

    is_assignee = user.role == Role.TECHNICIAN and job.assigned_to_id == user.id
    if not is_assignee and property_access(user, job.property) != WRITE:
        raise ApiError(
            403,
            "Only the property manager or the assigned technician can update this job",
            ErrorCodes.ACC_ACCESS_DENIED,
        )
    if is_assignee:
        ensure_manager_subscription(job.property)

    data = load(JobStatusUpdate)
    changed = apply_status(job, data.status, user, data.notes, data.actual_cost)
    db.session.commit()
    if changed:
        touch_caches(job)
    return jsonify({"success": True, "job": job.serialize()}), 200


def _assigned_job(job_id):
    user = current_user()
    job = db.session.get(Job, job_id)
    if job is None:
        raise ApiError(404, "Job not found", ErrorCodes.RES_JOB_NOT_FOUND)
    if job.assigned_to_id != user.id:
        raise ApiError(403, "This job is not assigned to you", ErrorCodes.ACC_ACCESS_DENIED)
    ensure_manager_subscription(job.property)
    return user, job


@bp.post("/jobs/<int:job_id>/accept")
@require_role(Role.TECHNICIAN)
def accept_job(job_id):
    user, job = _assigned_job(job_id)
    apply_status(job, JobStatus.IN_PROGRESS, user)
    db.session.commit()
    touch_caches(job)
    return jsonify({"success": True, "job": job.serialize()}), 200


@bp.post("/jobs/<int:job_id>/reject")
@require_role(Role.TECHNICIAN)
def reject_job(job_id):
    user, job = _assigned_job(job_id)
    data = load(ReasonBody)
    if job.status != JobStatus.ASSIGNED:
        raise ApiError(
            400,
            f"Only assigned jobs can be rejected (current status {job.status})",
            ErrorCodes.BIZ_INVALID_STATUS_TRANSITION,
        )

    note = f"Rejected by {user.full_name}: {data.reason}"
    job.notes = f"{job.notes}\n{note}" if job.notes else note
    job.assigned_to_id = None
    job.status = JobStatus.OPEN
    notify(job.property.manager, NotificationType.SYSTEM, "Job rejected",
           f"{user.full_name} rejected: {job.title}", {"job_id": job.id, "reason": data.reason}, email=True)
    audit.record("job.reject", "job", job.id, {"reason": data.reason})
    db.session.commit()
    cache.invalidate_user(user.id)
    touch_caches(job)
    return jsonify({"success": True, "job": job.serialize()}), 200


@bp.get("/jobs/<int:job_id>/comments")
@auth_required
def list_comments(job_id):
    job = _get_job(job_id)
    return jsonify({"success": True, "comments": [c.serialize() for c in job.comments]}), 200


@bp.post("/jobs/<int:job_id>/comments")
@auth_required
def add_comment(job_id):
    job = _get_job(job_id)
    data = load(CommentCreate)
    comment = JobComment(job_id=job.id, user_id=current_user().id, content=data.content)
    db.session.add(comment)
    db.session.commit()
    return jsonify({"success": True, "comment": comment.serialize()}), 201
