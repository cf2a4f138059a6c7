from datetime import datetime

from sqlalchemy.orm import validates

from ..constants import PropertyStatus, PropertyType, UnitStatus
from ..extensions import db
from ..utils import isoformat, round_half_up, to_float


class Property(db.Model):
    __tablename__ = 'properties'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.String(512), nullable=False)
    city = db.Column(db.String(100), nullable=False)
    state = db.Column(db.String(100), nullable=True)
    zip_code = db.Column(db.String(20), nullable=True)
    country = db.Column(db.String(100), nullable=False, default='United States')
    property_type = db.Column(db.String(30), nullable=False, default=PropertyType.RESIDENTIAL)
    status = db.Column(db.String(30), nullable=False, default=PropertyStatus.ACTIVE)

    # Property details
    description = db.Column(db.Text, nullable=True)
    year_built = db.Column(db.Integer, nullable=True)
    total_area = db.Column(db.Integer, nullable=True)  # whole square metres/feet
    image_url = db.Column(db.String(1024), nullable=True)

    manager_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    archived_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    manager = db.relationship('User', foreign_keys=[manager_id])
    units = db.relationship('Unit', backref='property', lazy=True, order_by='Unit.unit_number')
    owners = db.relationship('PropertyOwner', backref='property', lazy=True, cascade='all, delete-orphan')

    @validates('total_area')
    def _round_area(self, key, value):
        return round_half_up(value)

    @property
    def is_archived(self):
        return self.archived_at is not None

    def occupancy_stats(self):
        total = len(self.units)
        occupied = sum(1 for u in self.units if u.status == UnitStatus.OCCUPIED)
        maintenance = sum(1 for u in self.units if u.status == UnitStatus.MAINTENANCE)
        vacant = sum(1 for u in self.units if u.status in (UnitStatus.VACANT, UnitStatus.AVAILABLE))
        rate = round(occupied / total * 100, 1) if total else 0
        return {
            'total_units': total,
            'occupied': occupied,
            'vacant': vacant,
            'maintenance': maintenance,
            'occupancy_rate': rate,
        }

    def __repr__(self):
        return f'<Property {self.id}: {self.name}>'

    def serialize(self, include_units=False):
        data = {
            'id': self.id,
            'name': self.name,
            'address': self.address,
            'city': self.city,
            'state': self.state,
            'zip_code': self.zip_code,
            'country': self.country,
            'property_type': self.property_type,
            'status': self.status,
            'description': self.description,
            'year_built': self.year_built,
            'total_area': self.total_area,
            'image_url': self.image_url,
            'manager_id': self.manager_id,
            'owner_ids': [o.owner_id for o in self.owners],
            'archived_at': isoformat(self.archived_at),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
            'unit_count': len(self.units),
        }
        if include_units:
            data['units'] = [u.serialize() for u in self.units]
            data['occupancy'] = self.occupancy_stats()
        return data


class PropertyOwner(db.Model):
    __tablename__ = 'property_owners'
    __table_args__ = (db.UniqueConstraint('property_id', 'owner_id', name='uq_property_owner'),)

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id', ondelete='CASCADE'), nullable=False, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    ownership_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=100)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    owner = db.relationship('User')

    def serialize(self):
        return {
            'id': self.id,
            'property_id': self.property_id,
            'owner_id': self.owner_id,
            'owner_name': self.owner.full_name if self.owner else None,
            'owner_email': self.owner.email if self.owner else None,
            'ownership_percentage': to_float(self.ownership_percentage),
        }


class Unit(db.Model):
    __tablename__ = 'units'
    __table_args__ = (db.UniqueConstraint('property_id', 'unit_number', name='uq_unit_number_per_property'),)

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id'), nullable=False, index=True)
    unit_number = db.Column(db.String(50), nullable=False)

    # Unit details
    floor = db.Column(db.Integer, nullable=True)
    bedrooms = db.Column(db.Integer, nullable=True)
    bathrooms = db.Column(db.Numeric(3, 1), nullable=True)
    area = db.Column(db.Integer, nullable=True)
    rent_amount = db.Column(db.Numeric(10, 2), nullable=True)
    status = db.Column(db.String(30), nullable=False, default=UnitStatus.AVAILABLE)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenancies = db.relationship('UnitTenant', backref='unit', lazy=True, cascade='all, delete-orphan')

    @validates('area')
    def _round_area(self, key, value):
        return round_half_up(value)

    def active_tenancies(self):
        return [t for t in self.tenancies if t.is_active]

    def __repr__(self):
        return f'<Unit {self.id}: {self.unit_number}>'

    def serialize(self, include_tenants=False):
        data = {
            'id': self.id,
            'property_id': self.property_id,
            'unit_number': self.unit_number,
            'floor': self.floor,
            'bedrooms': self.bedrooms,
            'bathrooms': to_float(self.bathrooms),
            'area': self.area,
            'rent_amount': to_float(self.rent_amount),
            'status': self.status,
            'description': self.description,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
        if include_tenants:
            data['tenants'] = [t.serialize() for t in self.active_tenancies()]
        return data


class UnitTenant(db.Model):
    __tablename__ = 'unit_tenants'

    id = db.Column(db.Integer, primary_key=True)
    unit_id = db.Column(db.Integer, db.ForeignKey('units.id', ondelete='CASCADE'), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    lease_start = db.Column(db.DateTime, nullable=False)
    lease_end = db.Column(db.DateTime, nullable=False)
    monthly_rent = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    deposit_amount = db.Column(db.Numeric(10, 2), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    move_out_date = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    tenant = db.relationship('User')

    def serialize(self):
        return {
            'id': self.id,
            'unit_id': self.unit_id,
            'tenant_id': self.tenant_id,
            'tenant_name': self.tenant.full_name if self.tenant else None,
            'tenant_email': self.tenant.email if self.tenant else None,
            'lease_start': isoformat(self.lease_start),
            'lease_end': isoformat(self.lease_end),
            'monthly_rent': to_float(self.monthly_rent),
            'deposit_amount': to_float(self.deposit_amount),
            'is_active': self.is_active,
            'move_out_date': isoformat(self.move_out_date),
        }
