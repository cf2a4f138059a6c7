from datetime import datetime

from ..constants import JobPriority, JobStatus, MaintenanceFrequency
from ..extensions import db
from ..utils import isoformat, to_float


class Job(db.Model):
    __tablename__ = 'jobs'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id'), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey('units.id', ondelete='SET NULL'), nullable=True)
    status = db.Column(db.String(30), nullable=False, default=JobStatus.OPEN, index=True)
    priority = db.Column(db.String(20), nullable=False, default=JobPriority.MEDIUM)

    assigned_to_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)

    scheduled_date = db.Column(db.DateTime, nullable=True)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_date = db.Column(db.DateTime, nullable=True)
    estimated_cost = db.Column(db.Numeric(10, 2), nullable=True)
    actual_cost = db.Column(db.Numeric(10, 2), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    maintenance_plan_id = db.Column(
        db.Integer, db.ForeignKey('maintenance_plans.id', ondelete='SET NULL'), nullable=True, index=True
    )

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    property = db.relationship('Property', backref=db.backref('jobs', lazy=True))
    unit = db.relationship('Unit')
    assigned_to = db.relationship('User', foreign_keys=[assigned_to_id])
    created_by = db.relationship('User', foreign_keys=[created_by_id])
    comments = db.relationship(
        'JobComment', backref='job', lazy=True, cascade='all, delete-orphan', order_by='JobComment.created_at'
    )

    def __repr__(self):
        return f'<Job {self.id}: {self.title} ({self.status})>'

    def serialize(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'property_id': self.property_id,
            'property_name': self.property.name if self.property else None,
            'unit_id': self.unit_id,
            'unit_number': self.unit.unit_number if self.unit else None,
            'status': self.status,
            'priority': self.priority,
            'assigned_to_id': self.assigned_to_id,
            'assigned_to_name': self.assigned_to.full_name if self.assigned_to else None,
            'created_by_id': self.created_by_id,
            'scheduled_date': isoformat(self.scheduled_date),
            'started_at': isoformat(self.started_at),
            'completed_date': isoformat(self.completed_date),
            'estimated_cost': to_float(self.estimated_cost),
            'actual_cost': to_float(self.actual_cost),
            'notes': self.notes,
            'maintenance_plan_id': self.maintenance_plan_id,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }


class JobComment(db.Model):
    __tablename__ = 'job_comments'

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, db.ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User')

    def serialize(self):
        return {
            'id': self.id,
            'job_id': self.job_id,
            'user_id': self.user_id,
            'user_name': self.user.full_name if self.user else None,
            'content': self.content,
            'created_at': isoformat(self.created_at),
        }


class MaintenancePlan(db.Model):
    __tablename__ = 'maintenance_plans'

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    frequency = db.Column(db.String(20), nullable=False, default=MaintenanceFrequency.MONTHLY)
    next_due_date = db.Column(db.DateTime, nullable=False, index=True)
    auto_create_jobs = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_generated_at = db.Column(db.DateTime, nullable=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    property = db.relationship('Property', backref=db.backref('maintenance_plans', lazy=True))
    jobs = db.relationship('Job', backref='maintenance_plan', lazy=True)

    def __repr__(self):
        return f'<MaintenancePlan {self.id}: {self.name} ({self.frequency})>'

    def serialize(self):
        return {
            'id': self.id,
            'property_id': self.property_id,
            'property_name': self.property.name if self.property else None,
            'name': self.name,
            'description': self.description,
            'frequency': self.frequency,
            'next_due_date': isoformat(self.next_due_date),
            'auto_create_jobs': self.auto_create_jobs,
            'is_active': self.is_active,
            'last_generated_at': isoformat(self.last_generated_at),
            'created_by_id': self.created_by_id,
            'created_at': isoformat(self.created_at),
        }


class JobTemplate(db.Model):
    """Reusable job definition owned by a property manager."""
    __tablename__ = 'job_templates'

    id = db.Column(db.Integer, primary_key=True)
    manager_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(50), nullable=True, index=True)
    priority = db.Column(db.String(20), nullable=False, default=JobPriority.MEDIUM)
    estimated_cost = db.Column(db.Numeric(10, 2), nullable=True)
    estimated_hours = db.Column(db.Numeric(6, 2), nullable=True)
    instructions = db.Column(db.Text, nullable=True)
    required_skills = db.Column(db.JSON, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<JobTemplate {self.id}: {self.name}>'

    def serialize(self):
        return {
            'id': self.id,
            'manager_id': self.manager_id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'priority': self.priority,
            'estimated_cost': to_float(self.estimated_cost),
            'estimated_hours': to_float(self.estimated_hours),
            'instructions': self.instructions,
            'required_skills': self.required_skills or [],
            'is_active': self.is_active,
            'usage_count': self.usage_count,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
