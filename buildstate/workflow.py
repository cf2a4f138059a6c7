"""Status lifecycles for inspections, jobs and service requests."""
from __future__ import annotations

from typing import Mapping, Sequence

from .constants import InspectionStatus, JobStatus, ServiceRequestStatus
from .errors import ApiError, ErrorCodes

SR = ServiceRequestStatus

SERVICE_REQUEST_TRANSITIONS: Mapping[str, Sequence[str]] = {
    SR.SUBMITTED: (SR.UNDER_REVIEW, SR.REJECTED),
    SR.UNDER_REVIEW: (SR.APPROVED, SR.REJECTED, SR.PENDING_OWNER_APPROVAL),
    SR.PENDING_MANAGER_REVIEW: (SR.PENDING_OWNER_APPROVAL, SR.REJECTED),
    SR.PENDING_OWNER_APPROVAL: (SR.APPROVED_BY_OWNER, SR.REJECTED_BY_OWNER),
    SR.APPROVED: (SR.CONVERTED_TO_JOB, SR.REJECTED),
    SR.APPROVED_BY_OWNER: (SR.CONVERTED_TO_JOB, SR.REJECTED),
    SR.REJECTED: (),
    SR.REJECTED_BY_OWNER: (SR.PENDING_MANAGER_REVIEW,),
    SR.CONVERTED_TO_JOB: (SR.COMPLETED,),
    SR.COMPLETED: (),
}

INSPECTION_TRANSITIONS: Mapping[str, Sequence[str]] = {
    InspectionStatus.SCHEDULED: (InspectionStatus.IN_PROGRESS, InspectionStatus.CANCELLED),
    InspectionStatus.IN_PROGRESS: (InspectionStatus.PENDING_APPROVAL, InspectionStatus.CANCELLED),
    InspectionStatus.PENDING_APPROVAL: (InspectionStatus.COMPLETED, InspectionStatus.IN_PROGRESS),
    InspectionStatus.COMPLETED: (),
    InspectionStatus.CANCELLED: (),
}

JOB_TRANSITIONS: Mapping[str, Sequence[str]] = {
    JobStatus.OPEN: (JobStatus.ASSIGNED, JobStatus.CANCELLED),
    JobStatus.ASSIGNED: (JobStatus.IN_PROGRESS, JobStatus.CANCELLED),
    JobStatus.IN_PROGRESS: (JobStatus.COMPLETED, JobStatus.CANCELLED),
    JobStatus.COMPLETED: (),
    JobStatus.CANCELLED: (),
}


def allowed_transitions(table: Mapping[str, Sequence[str]], current: str) -> list[str]:
    return list(table.get(current, ()))


def is_valid_transition(table: Mapping[str, Sequence[str]], current: str, new: str) -> bool:
    return new in table.get(current, ())


def ensure_transition(table: Mapping[str, Sequence[str]], current: str, new: str) -> None:
    """Raise a 400 ApiError unless `current -> new` is a legal move in `table`."""
    if is_valid_transition(table, current, new):
        return
    allowed = allowed_transitions(table, current)
    raise ApiError(
        400,
        f"Invalid status transition from {current} to {new}. "
        f"Allowed transitions: {', '.join(allowed) if allowed else 'none'}",
        ErrorCodes.BIZ_INVALID_STATUS_TRANSITION,
        {"current_status": current, "requested_status": new, "allowed": allowed},
    )
