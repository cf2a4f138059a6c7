import logging

from flask import Blueprint, current_app, jsonify, request, send_from_directory
from sqlalchemy.exc import SQLAlchemyError

from ..constants import Role
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import Inspection, Job, Property, ServiceRequest, Unit, UploadedFile
from ..security.access import property_access, WRITE
from ..security.auth import auth_required, current_user
from ..security.rate_limit import rate_limit, upload_limiter
from ..services import audit, storage

logger = logging.getLogger(__name__)

bp = Blueprint("uploads", __name__)

ENTITY_MODELS = {
    "property": Property,
    "unit": Unit,
    "inspection": Inspection,
    "job": Job,
    "service_request": ServiceRequest,
}
ENTITY_TYPES = (*ENTITY_MODELS, "blog", "document", "profile")

_STORAGE_ERROR_CODES = {
    storage.UploadErrorTypes.INVALID_TYPE: (400, ErrorCodes.FILE_INVALID_TYPE),
    storage.UploadErrorTypes.FILE_TOO_LARGE: (413, ErrorCodes.FILE_TOO_LARGE),
    storage.UploadErrorTypes.VALIDATION_ERROR: (400, ErrorCodes.VAL_VALIDATION_ERROR),
}


def _entity_property(entity_type, entity_id):
    """Property owning the entity, None for entities that are not property scoped."""
    model = ENTITY_MODELS.get(entity_type)
    if model is None:
        return None
    entity = db.session.get(model, entity_id)
    if entity is None:
        raise ApiError(404, f"{entity_type.replace('_', ' ').capitalize()} not found", ErrorCodes.RES_NOT_FOUND)
    return entity if isinstance(entity, Property) else entity.property


def _check_entity_access(user, entity_type, entity_id):
    if user.role == Role.ADMIN:
        return
    if entity_type == "blog":
        raise ApiError(403, "Only administrators can upload blog media", ErrorCodes.ACC_ROLE_REQUIRED)
    if entity_type in ("profile", "document"):
        if entity_id != user.id:
            raise ApiError(403, "You can only upload your own files", ErrorCodes.ACC_ACCESS_DENIED)
        return

    prop = _entity_property(entity_type, entity_id)
    if user.role == Role.TECHNICIAN and entity_type in ("job", "inspection"):
        entity = db.session.get(ENTITY_MODELS[entity_type], entity_id)
        if entity.assigned_to_id == user.id:
            return
    if property_access(user, prop) is None:
        raise ApiError(403, "You do not have access to this property", ErrorCodes.ACC_PROPERTY_ACCESS_DENIED)


def _remove_stored(record):
    try:
        storage.remove(record.storage, record.storage_key)
    except storage.StorageError as e:
        logger.error("Storage deletion failed for file %s: %s", record.id, e)
        raise ApiError(502, "Could not delete the file from storage", ErrorCodes.FILE_UPLOAD_FAILED,
                       {"error_type": e.error_type, "file_id": record.id})


def remove_entity_files(entity_type, entity_ids):
    """
    Delete every upload attached to the given entities, storage first.

    Call before any other change in the request: when storage fails part way,
    rows whose objects are already gone are committed away before the 502.
    """
    ids = [i for i in entity_ids if i is not None]
    if not ids:
        return 0
    records = UploadedFile.query.filter(
        UploadedFile.entity_type == entity_type, UploadedFile.entity_id.in_(ids)
    ).all()
    for record in records:
        try:
            _remove_stored(record)
        except ApiError:
            db.session.commit()
            raise
        db.session.delete(record)
    return len(records)


def _can_delete(user, record):
    if user.role == Role.ADMIN or record.uploaded_by_id == user.id:
        return True
    if record.entity_type in ENTITY_MODELS:
        model = ENTITY_MODELS[record.entity_type]
        entity = db.session.get(model, record.entity_id)
        if entity is not None:
            prop = entity if isinstance(entity, Property) else entity.property
            return property_access(user, prop) == WRITE
    return False


@bp.post("/uploads")
@auth_required
@rate_limit(upload_limiter)
def upload():
    user = current_user()
    file = request.files.get("file")
    if file is None or not file.filename:
        raise ApiError(400, "No file uploaded", ErrorCodes.FILE_NO_FILE_UPLOADED)

    entity_type = (request.form.get("entity_type") or "").strip().lower()
    if entity_type not in ENTITY_TYPES:
        raise ApiError(
            400,
            f"entity_type must be one of: {', '.join(ENTITY_TYPES)}",
            ErrorCodes.VAL_VALIDATION_ERROR,
        )
    try:
        entity_id = int(request.form.get("entity_id") or (user.id if entity_type in ("profile", "document") else ""))
    except ValueError:
        raise ApiError(400, "entity_id must be an integer", ErrorCodes.VAL_VALIDATION_ERROR)
    _check_entity_access(user, entity_type, entity_id)

    data = file.read()
    mime_type = file.mimetype or ""
    try:
        storage.validate_file(file.filename, mime_type, len(data))
        stored = storage.store(data, file.filename, entity_type, mime_type)
    except storage.StorageError as e:
        status, code = _STORAGE_ERROR_CODES.get(e.error_type, (502, ErrorCodes.FILE_UPLOAD_FAILED))
        logger.warning("Upload rejected for user %s: %s", user.id, e)
        raise ApiError(status, str(e), code, {"error_type": e.error_type})

    record = UploadedFile(
        entity_type=entity_type,
        entity_id=entity_id,
        original_name=file.filename[:255],
        mime_type=mime_type,
        size=len(data),
        storage=stored.storage,
        storage_key=stored.key,
        url=stored.url,
        uploaded_by_id=user.id,
    )
    try:
        db.session.add(record)
        db.session.flush()
        audit.record("file.upload", entity_type, entity_id, {"file_id": record.id, "storage": stored.storage})
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        try:
            storage.remove(stored.storage, stored.key)
        except storage.StorageError as e:
            logger.error("Could not remove orphaned upload %s from %s: %s", stored.key, stored.storage, e)
        raise
    logger.info("Stored %s (%s bytes) in %s as %s", file.filename, len(data), stored.storage, stored.key)
    return jsonify({"success": True, "file": record.serialize()}), 201


@bp.get("/uploads")
@auth_required
def list_uploads():
    user = current_user()
    entity_type = (request.args.get("entity_type") or "").strip().lower()
    entity_id = request.args.get("entity_id", type=int)
    if not entity_type or entity_id is None:
        raise ApiError(400, "entity_type and entity_id are required", ErrorCodes.VAL_MISSING_FIELD)
    _check_entity_access(user, entity_type, entity_id)
    files = (
        UploadedFile.query.filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(UploadedFile.created_at.desc())
        .all()
    )
    return jsonify({"success": True, "files": [f.serialize() for f in files]}), 200


@bp.delete("/uploads/<int:file_id>")
@auth_required
def delete_upload(file_id):
    """Remove the stored object first; the database row only goes once storage confirms"""
    user = current_user()
    record = db.session.get(UploadedFile, file_id)
    if record is None:
        raise ApiError(404, "File not found", ErrorCodes.RES_NOT_FOUND)
    if not _can_delete(user, record):
        raise ApiError(403, "You cannot delete this file", ErrorCodes.ACC_ACCESS_DENIED)

    _remove_stored(record)
    audit.record("file.delete", record.entity_type, record.entity_id, {"file_id": record.id})
    db.session.delete(record)
    db.session.commit()
    return jsonify({"success": True, "message": "File deleted"}), 200


@bp.get("/uploads/health")
def upload_health():
    return jsonify({"success": True, "storage": storage.health()}), 200


@bp.get("/uploads/files/<path:path>")
def serve_file(path):
    return send_from_directory(current_app.config["UPLOAD_FOLDER"], path)
