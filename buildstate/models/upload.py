from datetime import datetime

from ..extensions import db
from ..utils import isoformat


class UploadedFile(db.Model):
    __tablename__ = 'uploaded_files'

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    original_name = db.Column(db.String(255), nullable=False)
    mime_type = db.Column(db.String(100), nullable=False)
    size = db.Column(db.Integer, nullable=False)
    storage = db.Column(db.String(20), nullable=False)  # local, cloudinary
    storage_key = db.Column(db.String(1024), nullable=False)
    url = db.Column(db.String(1024), nullable=False)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (db.Index('ix_uploaded_files_entity', 'entity_type', 'entity_id'),)

    def __repr__(self):
        return f'<UploadedFile {self.id}: {self.entity_type}/{self.entity_id} {self.original_name}>'

    def serialize(self):
        return {
            'id': self.id,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'original_name': self.original_name,
            'mime_type': self.mime_type,
            'size': self.size,
            'storage': self.storage,
            'url': self.url,
            'uploaded_by_id': self.uploaded_by_id,
            'created_at': isoformat(self.created_at),
        }
