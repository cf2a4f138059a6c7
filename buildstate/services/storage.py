"""
File storage for uploads.

Cloudinary is used when credentials are configured; otherwise, or when a
Cloudinary upload fails, files land on local disk under UPLOAD_FOLDER and are
served by the uploads blueprint.
"""
import hashlib
import logging
import os
import time
import uuid
from dataclasses import dataclass

import requests
from flask import current_app, url_for
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

MB = 1024 * 1024

IMAGE_TYPES = {
    "image/jpeg": ("jpg", "jpeg"),
    "image/png": ("png",),
    "image/webp": ("webp",),
    "image/gif": ("gif",),
    "image/heic": ("heic",),
    "image/heif": ("heif",),
}
DOCUMENT_TYPES = {
    "application/pdf": ("pdf",),
    "application/msword": ("doc",),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ("docx",),
    "application/vnd.ms-excel": ("xls",),
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ("xlsx",),
    "text/plain": ("txt",),
    "text/csv": ("csv",),
}
IMAGE_MAX_SIZE = 10 * MB
DOCUMENT_MAX_SIZE = 20 * MB


class UploadErrorTypes:
    RATE_LIMITED = "RATE_LIMITED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    STORAGE_ERROR = "STORAGE_ERROR"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_TYPE = "INVALID_TYPE"
    NOT_FOUND = "NOT_FOUND"


class StorageError(Exception):
    def __init__(self, message, error_type=UploadErrorTypes.STORAGE_ERROR):
        super().__init__(message)
        self.error_type = error_type


@dataclass
class StoredFile:
    storage: str
    key: str
    url: str


def extension_of(filename):
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def validate_file(filename, mime_type, size):
    """Return the size limit category or raise StorageError with a typed reason."""
    ext = extension_of(filename)
    if mime_type in IMAGE_TYPES and ext in IMAGE_TYPES[mime_type]:
        limit = IMAGE_MAX_SIZE
    elif mime_type in DOCUMENT_TYPES and ext in DOCUMENT_TYPES[mime_type]:
        limit = DOCUMENT_MAX_SIZE
    else:
        raise StorageError(f"File type {mime_type or 'unknown'} (.{ext}) is not allowed", UploadErrorTypes.INVALID_TYPE)
    if size <= 0:
        raise StorageError("File is empty", UploadErrorTypes.VALIDATION_ERROR)
    if size > limit:
        raise StorageError(
            f"File exceeds the {limit // MB}MB limit for this type", UploadErrorTypes.FILE_TOO_LARGE
        )
    return "image" if limit == IMAGE_MAX_SIZE else "document"


class LocalStorage:
    name = "local"

    def __init__(self, root):
        self.root = root

    def save(self, data: bytes, filename: str, folder: str) -> StoredFile:
        safe_folder = secure_filename(folder) or "misc"
        stored_name = f"{uuid.uuid4().hex}_{secure_filename(filename) or 'file'}"
        directory = os.path.join(self.root, safe_folder)
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, stored_name)
        try:
            with open(path, "wb") as fh:
                fh.write(data)
        except OSError as e:
            raise StorageError(f"Could not write file: {e}")
        key = f"{safe_folder}/{stored_name}"
        return StoredFile(self.name, key, url_for("uploads.serve_file", path=key))

    def delete(self, key: str) -> None:
        path = os.path.realpath(os.path.join(self.root, key))
        if not path.startswith(os.path.realpath(self.root) + os.sep):
            raise StorageError("Invalid storage key")
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.info("Local file already removed: %s", key)
        except OSError as e:
            raise StorageError(f"Could not delete file: {e}")

    def healthy(self) -> bool:
        try:
            os.makedirs(self.root, exist_ok=True)
            return os.access(self.root, os.W_OK)
        except OSError:
            return False


class CloudinaryStorage:
    name = "cloudinary"
    api_base = "https://api.cloudinary.com/v1_1"

    def __init__(self, cloud_name, api_key, api_secret, timeout=30):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = timeout

    def _sign(self, params: dict) -> str:
        payload = "&".join(f"{k}={params[k]}" for k in sorted(params))
        return hashlib.sha1((payload + self.api_secret).encode("utf-8")).hexdigest()

    def save(self, data: bytes, filename: str, folder: str, mime_type: str = "") -> StoredFile:
        resource_type = "image" if mime_type.startswith("image/") else "raw"
        params = {
            "folder": f"buildstate/{secure_filename(folder) or 'misc'}",
            "public_id": uuid.uuid4().hex,
            "timestamp": int(time.time()),
        }
        body = {**params, "api_key": self.api_key, "signature": self._sign(params)}
        try:
            resp = requests.post(
                f"{self.api_base}/{self.cloud_name}/{resource_type}/upload",
                data=body,
                files={"file": (filename, data, mime_type or "application/octet-stream")},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            result = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise StorageError(f"Cloudinary upload failed: {e}", UploadErrorTypes.UPLOAD_FAILED)
        return StoredFile(self.name, f"{resource_type}:{result['public_id']}", result["secure_url"])

    def delete(self, key: str) -> None:
        resource_type, _, public_id = key.partition(":")
        params = {"public_id": public_id, "timestamp": int(time.time())}
        body = {**params, "api_key": self.api_key, "signature": self._sign(params)}
        try:
            resp = requests.post(
                f"{self.api_base}/{self.cloud_name}/{resource_type}/destroy", data=body, timeout=self.timeout
            )
            resp.raise_for_status()
            result = resp.json().get("result")
        except (requests.RequestException, ValueError) as e:
            raise StorageError(f"Cloudinary delete failed: {e}")
        if result not in ("ok", "not found"):
            raise StorageError(f"Cloudinary delete returned {result!r}")

    def healthy(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)


def local_storage():
    return LocalStorage(current_app.config["UPLOAD_FOLDER"])


def cloud_storage():
    cfg = current_app.config
    if cfg.get("CLOUDINARY_CLOUD_NAME") and cfg.get("CLOUDINARY_API_KEY") and cfg.get("CLOUDINARY_API_SECRET"):
        return CloudinaryStorage(cfg["CLOUDINARY_CLOUD_NAME"], cfg["CLOUDINARY_API_KEY"], cfg["CLOUDINARY_API_SECRET"])
    return None


def backend_for(name):
    if name == CloudinaryStorage.name:
        backend = cloud_storage()
        if backend is None:
            raise StorageError("Cloudinary is not configured", UploadErrorTypes.NOT_CONFIGURED)
        return backend
    return local_storage()


def store(data: bytes, filename: str, folder: str, mime_type: str) -> StoredFile:
    """Store bytes in the cloud when possible, otherwise on local disk."""
    cloud = cloud_storage()
    if cloud is not None:
        try:
            return cloud.save(data, filename, folder, mime_type)
        except StorageError as e:
            logger.warning("Cloud upload failed, falling back to local storage: %s", e)
    return local_storage().save(data, filename, folder)


def remove(storage_name: str, key: str) -> None:
    backend_for(storage_name).delete(key)


def health():
    cloud = cloud_storage()
    return {
        "primary": "cloudinary" if cloud else "local",
        "cloudinary_configured": cloud is not None,
        "local_writable": local_storage().healthy(),
    }
