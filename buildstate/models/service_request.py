from datetime import datetime

from ..constants import JobPriority, ServiceRequestCategory, ServiceRequestStatus
from ..extensions import db
from ..utils import isoformat, to_float


class ServiceRequest(db.Model):
    __tablename__ = 'service_requests'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(30), nullable=False, default=ServiceRequestCategory.GENERAL)
    priority = db.Column(db.String(20), nullable=False, default=JobPriority.MEDIUM)
    status = db.Column(db.String(30), nullable=False, default=ServiceRequestStatus.SUBMITTED, index=True)

    property_id = db.Column(db.Integer, db.ForeignKey('properties.id'), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey('units.id', ondelete='SET NULL'), nullable=True)
    requested_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    # Approval workflow
    owner_estimated_budget = db.Column(db.Numeric(10, 2), nullable=True)
    manager_estimated_cost = db.Column(db.Numeric(10, 2), nullable=True)
    cost_breakdown_notes = db.Column(db.Text, nullable=True)
    approved_budget = db.Column(db.Numeric(10, 2), nullable=True)
    owner_approved_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    owner_approved_at = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    converted_to_job_id = db.Column(db.Integer, db.ForeignKey('jobs.id', ondelete='SET NULL'), nullable=True)
    archived_at = db.Column(db.DateTime, nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    property = db.relationship('Property', backref=db.backref('service_requests', lazy=True))
    unit = db.relationship('Unit')
    requested_by = db.relationship('User', foreign_keys=[requested_by_id])
    converted_job = db.relationship('Job', foreign_keys=[converted_to_job_id])

    def __repr__(self):
        return f'<ServiceRequest {self.id}: {self.title} ({self.status})>'

    def serialize(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'category': self.category,
            'priority': self.priority,
            'status': self.status,
            'property_id': self.property_id,
            'property_name': self.property.name if self.property else None,
            'unit_id': self.unit_id,
            'unit_number': self.unit.unit_number if self.unit else None,
            'requested_by_id': self.requested_by_id,
            'requested_by_name': self.requested_by.full_name if self.requested_by else None,
            'requested_by_role': self.requested_by.role if self.requested_by else None,
            'owner_estimated_budget': to_float(self.owner_estimated_budget),
            'manager_estimated_cost': to_float(self.manager_estimated_cost),
            'cost_breakdown_notes': self.cost_breakdown_notes,
            'approved_budget': to_float(self.approved_budget),
            'owner_approved_by_id': self.owner_approved_by_id,
            'owner_approved_at': isoformat(self.owner_approved_at),
            'rejection_reason': self.rejection_reason,
            'converted_to_job_id': self.converted_to_job_id,
            'archived_at': isoformat(self.archived_at),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
