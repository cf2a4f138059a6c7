"""String constants stored in the database and exchanged over the API."""


class Role:
    PROPERTY_MANAGER = "PROPERTY_MANAGER"
    OWNER = "OWNER"
    TENANT = "TENANT"
    TECHNICIAN = "TECHNICIAN"
    ADMIN = "ADMIN"
    ALL = (PROPERTY_MANAGER, OWNER, TENANT, TECHNICIAN, ADMIN)
    INVITABLE = (OWNER, TENANT, TECHNICIAN)


class SubscriptionPlan:
    FREE_TRIAL = "FREE_TRIAL"
    BASIC = "BASIC"
    PROFESSIONAL = "PROFESSIONAL"
    ENTERPRISE = "ENTERPRISE"
    ALL = (FREE_TRIAL, BASIC, PROFESSIONAL, ENTERPRISE)
    PAID = (BASIC, PROFESSIONAL, ENTERPRISE)


class SubscriptionStatus:
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"
    ALL = (TRIAL, ACTIVE, PENDING, SUSPENDED, CANCELLED)


class PropertyStatus:
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    UNDER_MAINTENANCE = "UNDER_MAINTENANCE"
    ALL = (ACTIVE, INACTIVE, UNDER_MAINTENANCE)


class PropertyType:
    RESIDENTIAL = "RESIDENTIAL"
    COMMERCIAL = "COMMERCIAL"
    MIXED_USE = "MIXED_USE"
    INDUSTRIAL = "INDUSTRIAL"
    ALL = (RESIDENTIAL, COMMERCIAL, MIXED_USE, INDUSTRIAL)


class UnitStatus:
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    MAINTENANCE = "MAINTENANCE"
    VACANT = "VACANT"
    PENDING_MOVE_IN = "PENDING_MOVE_IN"
    PENDING_MOVE_OUT = "PENDING_MOVE_OUT"
    ALL = (AVAILABLE, OCCUPIED, MAINTENANCE, VACANT, PENDING_MOVE_IN, PENDING_MOVE_OUT)


class InspectionType:
    ROUTINE = "ROUTINE"
    MOVE_IN = "MOVE_IN"
    MOVE_OUT = "MOVE_OUT"
    EMERGENCY = "EMERGENCY"
    COMPLIANCE = "COMPLIANCE"
    ALL = (ROUTINE, MOVE_IN, MOVE_OUT, EMERGENCY, COMPLIANCE)


class InspectionStatus:
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    ALL = (SCHEDULED, IN_PROGRESS, PENDING_APPROVAL, COMPLETED, CANCELLED)


class JobStatus:
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    ALL = (OPEN, ASSIGNED, IN_PROGRESS, COMPLETED, CANCELLED)
    ACTIVE = (OPEN, ASSIGNED, IN_PROGRESS)


class JobPriority:
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"
    ALL = (LOW, MEDIUM, HIGH, URGENT)


class ServiceRequestStatus:
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    PENDING_MANAGER_REVIEW = "PENDING_MANAGER_REVIEW"
    PENDING_OWNER_APPROVAL = "PENDING_OWNER_APPROVAL"
    APPROVED = "APPROVED"
    APPROVED_BY_OWNER = "APPROVED_BY_OWNER"
    REJECTED = "REJECTED"
    REJECTED_BY_OWNER = "REJECTED_BY_OWNER"
    CONVERTED_TO_JOB = "CONVERTED_TO_JOB"
    COMPLETED = "COMPLETED"
    ALL = (
        SUBMITTED,
        UNDER_REVIEW,
        PENDING_MANAGER_REVIEW,
        PENDING_OWNER_APPROVAL,
        APPROVED,
        APPROVED_BY_OWNER,
        REJECTED,
        REJECTED_BY_OWNER,
        CONVERTED_TO_JOB,
        COMPLETED,
    )
    OPEN = (SUBMITTED, UNDER_REVIEW, PENDING_MANAGER_REVIEW, PENDING_OWNER_APPROVAL)
    ARCHIVABLE = (REJECTED, COMPLETED)


class ServiceRequestCategory:
    PLUMBING = "PLUMBING"
    ELECTRICAL = "ELECTRICAL"
    HVAC = "HVAC"
    APPLIANCE = "APPLIANCE"
    STRUCTURAL = "STRUCTURAL"
    PEST_CONTROL = "PEST_CONTROL"
    LANDSCAPING = "LANDSCAPING"
    GENERAL = "GENERAL"
    OTHER = "OTHER"
    ALL = (PLUMBING, ELECTRICAL, HVAC, APPLIANCE, STRUCTURAL, PEST_CONTROL, LANDSCAPING, GENERAL, OTHER)


class MaintenanceFrequency:
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMIANNUALLY = "SEMIANNUALLY"
    ANNUALLY = "ANNUALLY"
    ALL = (DAILY, WEEKLY, BIWEEKLY, MONTHLY, QUARTERLY, SEMIANNUALLY, ANNUALLY)


class InviteStatus:
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class BlogPostStatus:
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"
    ALL = (DRAFT, PUBLISHED, ARCHIVED)


class DiscountType:
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"
    ALL = (PERCENTAGE, FIXED)


class NotificationType:
    INSPECTION_SCHEDULED = "INSPECTION_SCHEDULED"
    INSPECTION_REMINDER = "INSPECTION_REMINDER"
    JOB_ASSIGNED = "JOB_ASSIGNED"
    JOB_COMPLETED = "JOB_COMPLETED"
    SERVICE_REQUEST_UPDATE = "SERVICE_REQUEST_UPDATE"
    SUBSCRIPTION_EXPIRING = "SUBSCRIPTION_EXPIRING"
    PAYMENT_DUE = "PAYMENT_DUE"
    SYSTEM = "SYSTEM"


class DigestFrequency:
    NONE = "NONE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    ALL = (NONE, DAILY, WEEKLY, MONTHLY)


class TokenPurpose:
    PASSWORD_RESET = "PASSWORD_RESET"
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
