from flask import request


def page_args(default_limit=50, max_limit=200):
    """limit/offset from the query string, clamped to sane bounds."""
    try:
        limit = int(request.args.get("limit", default_limit))
    except (TypeError, ValueError):
        limit = default_limit
    try:
        offset = int(request.args.get("offset", 0))
    except (TypeError, ValueError):
        offset = 0
    return max(1, min(limit, max_limit)), max(0, offset)


def flag(name):
    return (request.args.get(name) or "").lower() in ("1", "true", "yes")


def invalidate_property_caches(prop):
    """Drop cached property lists and dashboards for everyone attached to `prop`."""
    from ..extensions import db
    from ..models import Inspection, Job, Unit, UnitTenant
    from ..services import cache

    user_ids = {prop.manager_id, *(o.owner_id for o in prop.owners)}
    tenants = (
        db.session.query(UnitTenant.tenant_id)
        .join(Unit, Unit.id == UnitTenant.unit_id)
        .filter(Unit.property_id == prop.id, UnitTenant.is_active.is_(True))
    )
    user_ids.update(row[0] for row in tenants)
    for model in (Job, Inspection):
        assignees = db.session.query(model.assigned_to_id).filter(model.property_id == prop.id).distinct()
        user_ids.update(row[0] for row in assignees)
    for user_id in user_ids:
        if user_id is not None:
            cache.invalidate_user(user_id)
