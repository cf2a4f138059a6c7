"""Property-scoped access rules shared by every resource hanging off a property."""
from sqlalchemy import or_, select

from ..constants import Role
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import Inspection, Job, Property, PropertyOwner, Unit, UnitTenant

READ = "read"
WRITE = "write"


def accessible_property_ids(user):
    """A SELECT of property ids `user` may see, suitable for `Property.id.in_(...)`."""
    if user.role == Role.ADMIN:
        return select(Property.id)
    if user.role == Role.PROPERTY_MANAGER:
        return select(Property.id).where(Property.manager_id == user.id)
    if user.role == Role.OWNER:
        return select(PropertyOwner.property_id).where(PropertyOwner.owner_id == user.id)
    if user.role == Role.TENANT:
        return (
            select(Unit.property_id)
            .join(UnitTenant, UnitTenant.unit_id == Unit.id)
            .where(UnitTenant.tenant_id == user.id, UnitTenant.is_active.is_(True))
        )
    if user.role == Role.TECHNICIAN:
        return select(Job.property_id).where(Job.assigned_to_id == user.id).union(
            select(Inspection.property_id).where(Inspection.assigned_to_id == user.id)
        )
    return select(Property.id).where(Property.id.is_(None))


def property_access(user, prop):
    """Return WRITE, READ or None for `user` on `prop`."""
    if user.role == Role.ADMIN:
        return WRITE
    if user.role == Role.PROPERTY_MANAGER:
        return WRITE if prop.manager_id == user.id else None
    if user.role == Role.OWNER:
        return READ if any(o.owner_id == user.id for o in prop.owners) else None
    if user.role == Role.TENANT:
        exists = (
            db.session.query(UnitTenant.id)
            .join(Unit, Unit.id == UnitTenant.unit_id)
            .filter(Unit.property_id == prop.id, UnitTenant.tenant_id == user.id, UnitTenant.is_active.is_(True))
            .first()
        )
        return READ if exists else None
    if user.role == Role.TECHNICIAN:
        assigned = (
            db.session.query(Job.id)
            .filter(Job.property_id == prop.id, Job.assigned_to_id == user.id)
            .first()
            or db.session.query(Inspection.id)
            .filter(Inspection.property_id == prop.id, Inspection.assigned_to_id == user.id)
            .first()
        )
        return READ if assigned else None
    return None


def get_property(property_id):
    prop = db.session.get(Property, property_id)
    if prop is None:
        raise ApiError(404, "Property not found", ErrorCodes.RES_PROPERTY_NOT_FOUND)
    return prop


def require_property_access(user, prop_or_id, write=False):
    prop = prop_or_id if isinstance(prop_or_id, Property) else get_property(prop_or_id)
    level = property_access(user, prop)
    if level is None:
        raise ApiError(403, "You do not have access to this property", ErrorCodes.ACC_PROPERTY_ACCESS_DENIED)
    if write and level != WRITE:
        message = "Owners have read-only access" if user.role == Role.OWNER else "Only the property manager can modify this property"
        raise ApiError(403, message, ErrorCodes.ACC_PROPERTY_ACCESS_DENIED)
    return prop


def is_property_owner(user, prop):
    return user.role == Role.OWNER and any(o.owner_id == user.id for o in prop.owners)


def active_tenancy(user, property_id=None):
    query = UnitTenant.query.filter(UnitTenant.tenant_id == user.id, UnitTenant.is_active.is_(True))
    if property_id is not None:
        query = query.join(Unit, Unit.id == UnitTenant.unit_id).filter(Unit.property_id == property_id)
    return query.order_by(UnitTenant.lease_start.desc()).first()


def search_filter(query, model, q, *columns):
    if not q:
        return query
    like = f"%{q}%"
    return query.filter(or_(*[getattr(model, c).ilike(like) for c in columns]))
