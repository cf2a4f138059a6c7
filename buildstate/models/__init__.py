from ..extensions import db
from .user import User, Invite, UserToken
from .property import Property, PropertyOwner, Unit, UnitTenant
from .inspection import Inspection
from .job import Job, JobComment, JobTemplate, MaintenancePlan
from .service_request import ServiceRequest
from .billing import Subscription, PromoCode
from .blog import BlogPost, BlogCategory, BlogTag
from .activity import AuditLog, Notification, NotificationPreference, PageView
from .upload import UploadedFile

__all__ = [
    'db',
    'User',
    'Invite',
    'UserToken',
    'Property',
    'PropertyOwner',
    'Unit',
    'UnitTenant',
    'Inspection',
    'Job',
    'JobComment',
    'JobTemplate',
    'MaintenancePlan',
    'ServiceRequest',
    'Subscription',
    'PromoCode',
    'BlogPost',
    'BlogCategory',
    'BlogTag',
    'AuditLog',
    'Notification',
    'NotificationPreference',
    'PageView',
    'UploadedFile',
]
