from datetime import datetime, timedelta

from flask import Blueprint, jsonify
from sqlalchemy import func

from ..constants import InspectionStatus, JobStatus, ServiceRequestStatus
from ..extensions import db
from ..models import Inspection, Job, Property, ServiceRequest, Unit
from ..security.access import accessible_property_ids
from ..security.auth import auth_required, current_user
from ..services.cache import cached_response
from .inspections import scoped_inspections
from .jobs import scoped_jobs
from .service_requests import scoped_requests

bp = Blueprint("dashboard", __name__)


@bp.get("/dashboard/summary")
@auth_required
@cached_response(ttl=300)
def summary():
    """Headline counts for everything in the caller's scope"""
    user = current_user()
    now = datetime.utcnow()
    property_ids = accessible_property_ids(user)

    properties = Property.query.filter(Property.id.in_(property_ids), Property.archived_at.is_(None)).count()

    units_by_status = dict(
        db.session.query(Unit.status, func.count(Unit.id))
        .filter(Unit.property_id.in_(property_ids))
        .group_by(Unit.status)
        .all()
    )

    jobs_by_status = {}
    for status, count in (
        scoped_jobs(user).filter(Job.status.in_(JobStatus.ACTIVE))
        .with_entities(Job.status, func.count(Job.id))
        .group_by(Job.status)
        .all()
    ):
        jobs_by_status[status] = count

    inspections = scoped_inspections(user).filter(Inspection.status == InspectionStatus.SCHEDULED)
    upcoming = inspections.filter(
        Inspection.scheduled_date >= now, Inspection.scheduled_date <= now + timedelta(days=7)
    ).count()
    overdue = inspections.filter(Inspection.scheduled_date < now).count()

    pending_requests = (
        scoped_requests(user)
        .filter(ServiceRequest.status.in_(ServiceRequestStatus.OPEN), ServiceRequest.archived_at.is_(None))
        .count()
    )

    return jsonify({
        "success": True,
        "summary": {
            "properties": properties,
            "units": {"total": sum(units_by_status.values()), "by_status": units_by_status},
            "jobs": {"open": sum(jobs_by_status.values()), "by_status": jobs_by_status},
            "inspections": {"upcoming": upcoming, "overdue": overdue},
            "service_requests": {"pending": pending_requests},
        },
        "generated_at": now.isoformat(),
    }), 200
