import logging

from flask import Blueprint, jsonify, request

from ..constants import Role
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import JobTemplate
from ..schemas import JobTemplateCreate, JobTemplateUpdate, JobTemplateUse, load
from ..security.access import search_filter
from ..security.auth import current_user, require_active_subscription, require_role
from ..services import audit
from . import page_args
from .jobs import open_job, touch_caches

logger = logging.getLogger(__name__)

bp = Blueprint("job_templates", __name__)


def _own_template(template_id):
    template = db.session.get(JobTemplate, template_id)
    if template is None:
        raise ApiError(404, "Job template not found", ErrorCodes.RES_NOT_FOUND)
    if template.manager_id != current_user().id:
        raise ApiError(403, "Access denied", ErrorCodes.ACC_ACCESS_DENIED)
    return template


@bp.get("/job-templates")
@require_role(Role.PROPERTY_MANAGER)
def list_templates():
    limit, offset = page_args()
    query = JobTemplate.query.filter_by(manager_id=current_user().id)
    category = request.args.get("category")
    if category:
        query = query.filter(JobTemplate.category == category)
    active = request.args.get("is_active")
    if active is not None:
        query = query.filter(JobTemplate.is_active.is_(active.lower() in ("1", "true", "yes")))
    query = search_filter(query, JobTemplate, (request.args.get("q") or "").strip(), "name", "description")

    total = query.count()
    templates = (
        query.order_by(JobTemplate.is_active.desc(), JobTemplate.usage_count.desc(), JobTemplate.created_at.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return jsonify({
        "success": True,
        "total": total,
        "limit": limit,
        "offset": offset,
        "templates": [t.serialize() for t in templates],
    }), 200


@bp.get("/job-templates/<int:template_id>")
@require_role(Role.PROPERTY_MANAGER)
def get_template(template_id):
    return jsonify({"success": True, "template": _own_template(template_id).serialize()}), 200


@bp.post("/job-templates")
@require_role(Role.PROPERTY_MANAGER)
@require_active_subscription
def create_template():
    data = load(JobTemplateCreate)
    template = JobTemplate(manager_id=current_user().id, **data.model_dump())
    db.session.add(template)
    db.session.flush()
    audit.record("job_template.create", "job_template", template.id, {"name": template.name})
    db.session.commit()
    return jsonify({"success": True, "template": template.serialize()}), 201


@bp.patch("/job-templates/<int:template_id>")
@require_role(Role.PROPERTY_MANAGER)
@require_active_subscription
def update_template(template_id):
    template = _own_template(template_id)
    changes = load(JobTemplateUpdate).model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is None and field in ("name", "description", "priority", "is_active", "required_skills"):
            continue
        setattr(template, field, value)
    audit.record("job_template.update", "job_template", template.id, {"fields": sorted(changes)})
    db.session.commit()
    return jsonify({"success": True, "template": template.serialize()}), 200


@bp.delete("/job-templates/<int:template_id>")
@require_role(Role.PROPERTY_MANAGER)
def delete_template(template_id):
    template = _own_template(template_id)
    audit.record("job_template.delete", "job_template", template.id, {"name": template.name})
    db.session.delete(template)
    db.session.commit()
    return jsonify({"success": True, "message": "Job template deleted"}), 200


@bp.post("/job-templates/<int:template_id>/use")
@require_role(Role.PROPERTY_MANAGER)
@require_active_subscription
def use_template(template_id):
    """Create a job on one of the caller's properties from a template"""
    template = _own_template(template_id)
    if not template.is_active:
        raise ApiError(400, "This job template is inactive", ErrorCodes.BIZ_OPERATION_NOT_ALLOWED)
    data = load(JobTemplateUse)

    notes = "\n\n".join(part for part in (template.instructions, data.notes) if part) or None
    job = open_job(current_user(), {
        "title": template.name,
        "description": template.description,
        "priority": template.priority,
        "estimated_cost": template.estimated_cost,
        "property_id": data.property_id,
        "unit_id": data.unit_id,
        "assigned_to_id": data.assigned_to_id,
        "scheduled_date": data.scheduled_date,
        "notes": notes,
    }, {"template_id": template.id})
    template.usage_count = (template.usage_count or 0) + 1
    db.session.commit()
    touch_caches(job)
    logger.info("Job %s created from template %s", job.id, template.id)
    return jsonify({"success": True, "job": job.serialize(), "template": template.serialize()}), 201
