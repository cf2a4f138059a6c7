"""
Request body schemas.

Pydantic models validating JSON payloads before they reach the database layer.
Handlers call `load(Model)`; a failed validation bubbles up as a pydantic
`ValidationError` and is rendered as a 400 by the error handlers.
"""
from datetime import datetime
from typing import Annotated, List, Literal, Optional

from flask import request
from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, field_validator

from .utils import parse_datetime, round_half_up

RoleName = Literal["PROPERTY_MANAGER", "OWNER", "TENANT", "TECHNICIAN", "ADMIN"]
InvitableRole = Literal["OWNER", "TENANT", "TECHNICIAN"]
PropertyTypeName = Literal["RESIDENTIAL", "COMMERCIAL", "MIXED_USE", "INDUSTRIAL"]
PropertyStatusName = Literal["ACTIVE", "INACTIVE", "UNDER_MAINTENANCE"]
UnitStatusName = Literal["AVAILABLE", "OCCUPIED", "MAINTENANCE", "VACANT", "PENDING_MOVE_IN", "PENDING_MOVE_OUT"]
PriorityName = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]
JobStatusName = Literal["OPEN", "ASSIGNED", "IN_PROGRESS", "COMPLETED", "CANCELLED"]
InspectionTypeName = Literal["ROUTINE", "MOVE_IN", "MOVE_OUT", "EMERGENCY", "COMPLIANCE"]
CategoryName = Literal[
    "PLUMBING", "ELECTRICAL", "HVAC", "APPLIANCE", "STRUCTURAL", "PEST_CONTROL", "LANDSCAPING", "GENERAL", "OTHER"
]
FrequencyName = Literal["DAILY", "WEEKLY", "BIWEEKLY", "MONTHLY", "QUARTERLY", "SEMIANNUALLY", "ANNUALLY"]
PlanName = Literal["FREE_TRIAL", "BASIC", "PROFESSIONAL", "ENTERPRISE"]
PaidPlanName = Literal["BASIC", "PROFESSIONAL", "ENTERPRISE"]
SubscriptionStatusName = Literal["TRIAL", "ACTIVE", "PENDING", "SUSPENDED", "CANCELLED"]
BlogStatusName = Literal["DRAFT", "PUBLISHED", "ARCHIVED"]
DigestFrequencyName = Literal["NONE", "DAILY", "WEEKLY", "MONTHLY"]


def _area(value):
    try:
        return round_half_up(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError("area must be a finite number")


# Areas are stored as whole numbers; fractional input is rounded half-up.
Area = Annotated[Optional[Annotated[int, Field(ge=0)]], BeforeValidator(_area)]

Money = Optional[Annotated[float, Field(ge=0, allow_inf_nan=False)]]
PositiveAmount = Optional[Annotated[float, Field(gt=0, allow_inf_nan=False)]]

# Timestamps are persisted as naive UTC.
UtcDateTime = Annotated[datetime, AfterValidator(parse_datetime)]


class Schema(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


def load(model, data=None):
    """Validate the current request's JSON body (or `data`) against `model`."""
    if data is None:
        data = request.get_json(silent=True) or {}
    return model.model_validate(data)


# ---------------------------------------------------------------- auth
class RegisterRequest(Schema):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=1)
    phone: Optional[str] = Field(default=None, max_length=50)
    role: Optional[RoleName] = None
    invite_token: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v):
        return v.lower()


class LoginRequest(Schema):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v):
        return v.lower()


class ChangePasswordRequest(Schema):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class ForgotPasswordRequest(Schema):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v):
        return v.lower()


class ResetPasswordRequest(Schema):
    selector: str = Field(min_length=1)
    token: str = Field(min_length=1)
    password: str = Field(min_length=1)


class VerifyEmailRequest(Schema):
    selector: str = Field(min_length=1)
    token: str = Field(min_length=1)


class InviteCreate(Schema):
    email: EmailStr
    role: InvitableRole
    property_id: Optional[int] = None
    unit_id: Optional[int] = None

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v):
        return v.lower()


# ---------------------------------------------------------------- properties
class UnitFields(Schema):
    unit_number: str = Field(min_length=1, max_length=50)
    floor: Optional[int] = None
    bedrooms: Optional[int] = Field(default=None, ge=0)
    bathrooms: Optional[float] = Field(default=None, ge=0)
    area: Area = None
    rent_amount: Money = None
    status: UnitStatusName = "AVAILABLE"
    description: Optional[str] = None


class UnitCreate(UnitFields):
    property_id: int


class UnitUpdate(Schema):
    unit_number: Optional[str] = Field(default=None, min_length=1, max_length=50)
    floor: Optional[int] = None
    bedrooms: Optional[int] = Field(default=None, ge=0)
    bathrooms: Optional[float] = Field(default=None, ge=0)
    area: Area = None
    rent_amount: Money = None
    status: Optional[UnitStatusName] = None
    description: Optional[str] = None


def _check_year_built(v):
    if v is not None and not (1800 <= v <= datetime.utcnow().year):
        raise ValueError(f"year_built must be between 1800 and {datetime.utcnow().year}")
    return v


class PropertyCreate(Schema):
    name: str = Field(min_length=1, max_length=255)
    address: str = Field(min_length=1, max_length=512)
    city: str = Field(min_length=1, max_length=100)
    state: Optional[str] = Field(default=None, max_length=100)
    zip_code: Optional[str] = Field(default=None, max_length=20)
    country: str = Field(default="United States", min_length=1, max_length=100)
    property_type: PropertyTypeName
    status: PropertyStatusName = "ACTIVE"
    description: Optional[str] = None
    year_built: Optional[int] = None
    total_area: Area = None
    image_url: Optional[str] = None
    units: List[UnitFields] = Field(default_factory=list)

    @field_validator("year_built")
    @classmethod
    def _year_range(cls, v):
        return _check_year_built(v)


class PropertyUpdate(Schema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    address: Optional[str] = Field(default=None, min_length=1, max_length=512)
    city: Optional[str] = Field(default=None, min_length=1, max_length=100)
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = Field(default=None, min_length=1)
    property_type: Optional[PropertyTypeName] = None
    status: Optional[PropertyStatusName] = None
    description: Optional[str] = None
    year_built: Optional[int] = None
    total_area: Area = None
    image_url: Optional[str] = None

    @field_validator("year_built")
    @classmethod
    def _year_range(cls, v):
        return _check_year_built(v)


class OwnerLink(Schema):
    owner_id: int
    ownership_percentage: float = Field(default=100, gt=0, le=100)


class TenantAssign(Schema):
    tenant_id: int
    lease_start: UtcDateTime
    lease_end: UtcDateTime
    monthly_rent: float = Field(default=0, ge=0)
    deposit_amount: Money = None

    @field_validator("lease_end")
    @classmethod
    def _after_start(cls, v, info):
        start = info.data.get("lease_start")
        if start and v <= start:
            raise ValueError("lease_end must be after lease_start")
        return v


# ---------------------------------------------------------------- jobs
class JobCreate(Schema):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    property_id: int
    unit_id: Optional[int] = None
    priority: PriorityName = "MEDIUM"
    assigned_to_id: Optional[int] = None
    scheduled_date: Optional[UtcDateTime] = None
    estimated_cost: Money = None
    notes: Optional[str] = None


class JobTemplateCreate(Schema):
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    category: Optional[str] = Field(default=None, max_length=50)
    priority: PriorityName = "MEDIUM"
    estimated_cost: PositiveAmount = None
    estimated_hours: PositiveAmount = None
    instructions: Optional[str] = None
    required_skills: List[str] = Field(default_factory=list)


class JobTemplateUpdate(Schema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = Field(default=None, max_length=50)
    priority: Optional[PriorityName] = None
    estimated_cost: PositiveAmount = None
    estimated_hours: PositiveAmount = None
    instructions: Optional[str] = None
    required_skills: Optional[List[str]] = None
    is_active: Optional[bool] = None


class JobTemplateUse(Schema):
    property_id: int
    unit_id: Optional[int] = None
    assigned_to_id: Optional[int] = None
    scheduled_date: Optional[UtcDateTime] = None
    notes: Optional[str] = None


class JobUpdate(Schema):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    unit_id: Optional[int] = None
    priority: Optional[PriorityName] = None
    assigned_to_id: Optional[int] = None
    scheduled_date: Optional[UtcDateTime] = None
    estimated_cost: Money = None
    actual_cost: Money = None
    notes: Optional[str] = None


class JobStatusUpdate(Schema):
    status: JobStatusName
    notes: Optional[str] = None
    actual_cost: Money = None


class CommentCreate(Schema):
    content: str = Field(min_length=1, max_length=5000)


class ReasonBody(Schema):
    reason: str = Field(min_length=1, max_length=2000)


# ---------------------------------------------------------------- inspections
class InspectionCreate(Schema):
    property_id: int
    unit_id: Optional[int] = None
    title: Optional[str] = Field(default=None, max_length=255)
    type: InspectionTypeName = "ROUTINE"
    scheduled_date: UtcDateTime
    assigned_to_id: Optional[int] = None
    notes: Optional[str] = None


class InspectionUpdate(Schema):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[InspectionTypeName] = None
    scheduled_date: Optional[UtcDateTime] = None
    assigned_to_id: Optional[int] = None
    unit_id: Optional[int] = None
    notes: Optional[str] = None


class InspectionComplete(Schema):
    findings: Optional[str] = None
    notes: Optional[str] = None


# ---------------------------------------------------------------- service requests
class ServiceRequestCreate(Schema):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    category: CategoryName = "GENERAL"
    priority: PriorityName = "MEDIUM"
    property_id: int
    unit_id: Optional[int] = None
    owner_estimated_budget: Optional[float] = Field(default=None, gt=0)


class EstimateBody(Schema):
    manager_estimated_cost: float = Field(gt=0)
    cost_breakdown_notes: Optional[str] = None


class OwnerApproveBody(Schema):
    approved_budget: Optional[float] = Field(default=None, gt=0)


class ConvertToJobBody(Schema):
    assigned_to_id: Optional[int] = None
    estimated_cost: Optional[float] = Field(default=None, ge=0)
    scheduled_date: Optional[UtcDateTime] = None
    priority: Optional[PriorityName] = None


# ---------------------------------------------------------------- maintenance plans
class MaintenancePlanCreate(Schema):
    property_id: int
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    frequency: FrequencyName = "MONTHLY"
    next_due_date: UtcDateTime
    auto_create_jobs: bool = True
    is_active: bool = True


class MaintenancePlanUpdate(Schema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    frequency: Optional[FrequencyName] = None
    next_due_date: Optional[UtcDateTime] = None
    auto_create_jobs: Optional[bool] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------- billing
class CheckoutRequest(Schema):
    plan: PaidPlanName
    promo_code: Optional[str] = None


class PromoCodeCreate(Schema):
    code: str = Field(min_length=2, max_length=50)
    description: Optional[str] = None
    discount_type: Literal["PERCENTAGE", "FIXED"] = "PERCENTAGE"
    discount_value: float = Field(gt=0)
    max_uses: Optional[int] = Field(default=None, ge=1)
    valid_from: Optional[UtcDateTime] = None
    valid_until: Optional[UtcDateTime] = None
    applicable_plans: List[PaidPlanName] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def _upper(cls, v):
        return v.upper()

    @field_validator("discount_value")
    @classmethod
    def _percentage_cap(cls, v, info):
        if info.data.get("discount_type") == "PERCENTAGE" and v > 100:
            raise ValueError("percentage discount cannot exceed 100")
        return v


class PromoCodeUpdate(Schema):
    description: Optional[str] = None
    discount_value: Optional[float] = Field(default=None, gt=0)
    max_uses: Optional[int] = Field(default=None, ge=1)
    valid_until: Optional[UtcDateTime] = None
    applicable_plans: Optional[List[PaidPlanName]] = None
    is_active: Optional[bool] = None


class PromoValidateRequest(Schema):
    code: str = Field(min_length=1)
    plan: PaidPlanName


# ---------------------------------------------------------------- blog
class BlogPostCreate(Schema):
    title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1, description="Markdown body")
    excerpt: Optional[str] = None
    status: BlogStatusName = "DRAFT"
    cover_image: Optional[str] = None
    meta_title: Optional[str] = Field(default=None, max_length=255)
    meta_description: Optional[str] = Field(default=None, max_length=500)
    category_ids: List[int] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class BlogPostUpdate(Schema):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    content: Optional[str] = Field(default=None, min_length=1)
    excerpt: Optional[str] = None
    status: Optional[BlogStatusName] = None
    cover_image: Optional[str] = None
    meta_title: Optional[str] = Field(default=None, max_length=255)
    meta_description: Optional[str] = Field(default=None, max_length=500)
    category_ids: Optional[List[int]] = None
    tags: Optional[List[str]] = None


class NamedItem(Schema):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None


class GenerateRequest(Schema):
    topic: Optional[str] = Field(default=None, max_length=255)
    category_id: Optional[int] = None
    publish: bool = False


# ---------------------------------------------------------------- analytics / admin
class PageViewRequest(Schema):
    path: str = Field(min_length=1, max_length=1024)
    referrer: Optional[str] = Field(default=None, max_length=1024)
    session_id: Optional[str] = Field(default=None, max_length=128)


class AdminUserUpdate(Schema):
    is_active: Optional[bool] = None
    role: Optional[RoleName] = None
    subscription_plan: Optional[PlanName] = None
    subscription_status: Optional[SubscriptionStatusName] = None
    trial_end_date: Optional[UtcDateTime] = None


# ---------------------------------------------------------------- notification preferences
class NotificationPreferencesUpdate(Schema):
    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    job_assigned: Optional[bool] = None
    job_status_changed: Optional[bool] = None
    job_completed: Optional[bool] = None
    inspection_scheduled: Optional[bool] = None
    inspection_completed: Optional[bool] = None
    service_request_created: Optional[bool] = None
    service_request_approved: Optional[bool] = None
    payment_failed: Optional[bool] = None
    payment_succeeded: Optional[bool] = None
    trial_expiring: Optional[bool] = None
    email_digest_frequency: Optional[DigestFrequencyName] = None
