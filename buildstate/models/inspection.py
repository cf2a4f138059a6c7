from datetime import datetime

from ..constants import InspectionStatus, InspectionType
from ..extensions import db
from ..utils import isoformat


class Inspection(db.Model):
    __tablename__ = 'inspections'

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id'), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey('units.id', ondelete='SET NULL'), nullable=True)
    title = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(30), nullable=False, default=InspectionType.ROUTINE)
    status = db.Column(db.String(30), nullable=False, default=InspectionStatus.SCHEDULED, index=True)
    scheduled_date = db.Column(db.DateTime, nullable=False, index=True)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_date = db.Column(db.DateTime, nullable=True)

    assigned_to_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    approved_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    findings = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    overdue_notified_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    property = db.relationship('Property', backref=db.backref('inspections', lazy=True))
    unit = db.relationship('Unit')
    assigned_to = db.relationship('User', foreign_keys=[assigned_to_id])
    created_by = db.relationship('User', foreign_keys=[created_by_id])

    def is_overdue(self, now=None):
        return self.status == InspectionStatus.SCHEDULED and self.scheduled_date < (now or datetime.utcnow())

    def __repr__(self):
        return f'<Inspection {self.id}: {self.type} {self.status}>'

    def serialize(self):
        return {
            'id': self.id,
            'property_id': self.property_id,
            'property_name': self.property.name if self.property else None,
            'unit_id': self.unit_id,
            'unit_number': self.unit.unit_number if self.unit else None,
            'title': self.title,
            'type': self.type,
            'status': self.status,
            'scheduled_date': isoformat(self.scheduled_date),
            'started_at': isoformat(self.started_at),
            'completed_date': isoformat(self.completed_date),
            'assigned_to_id': self.assigned_to_id,
            'assigned_to_name': self.assigned_to.full_name if self.assigned_to else None,
            'created_by_id': self.created_by_id,
            'approved_by_id': self.approved_by_id,
            'approved_at': isoformat(self.approved_at),
            'notes': self.notes,
            'findings': self.findings,
            'rejection_reason': self.rejection_reason,
            'is_overdue': self.is_overdue(),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
