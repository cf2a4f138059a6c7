# buildstate/errors.py
"""Shared error vocabulary and JSON error responses for the API."""
from __future__ import annotations

import logging
from typing import Any, Optional

from flask import jsonify, request
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ErrorCodes:
    # Generic
    ERR_INTERNAL_SERVER = "ERR_INTERNAL_SERVER"
    ERR_BAD_REQUEST = "ERR_BAD_REQUEST"
    ERR_NOT_FOUND = "ERR_NOT_FOUND"

    # Authentication
    AUTH_UNAUTHORIZED = "AUTH_UNAUTHORIZED"
    AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"
    AUTH_NO_TOKEN = "AUTH_NO_TOKEN"
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_TOKEN_EXPIRED = "AUTH_TOKEN_EXPIRED"
    AUTH_INSUFFICIENT_PERMISSIONS = "AUTH_INSUFFICIENT_PERMISSIONS"
    AUTH_ACCOUNT_INACTIVE = "AUTH_ACCOUNT_INACTIVE"

    # Access control
    ACC_ACCESS_DENIED = "ACC_ACCESS_DENIED"
    ACC_PROPERTY_ACCESS_DENIED = "ACC_PROPERTY_ACCESS_DENIED"
    ACC_ROLE_REQUIRED = "ACC_ROLE_REQUIRED"
    ACC_CSRF_TOKEN_INVALID = "ACC_CSRF_TOKEN_INVALID"

    # Validation
    VAL_VALIDATION_ERROR = "VAL_VALIDATION_ERROR"
    VAL_MISSING_FIELD = "VAL_MISSING_FIELD"
    VAL_INVALID_REQUEST = "VAL_INVALID_REQUEST"
    VAL_PASSWORD_WEAK = "VAL_PASSWORD_WEAK"
    VAL_DUPLICATE = "VAL_DUPLICATE"
    VAL_INVALID_INPUT = "VAL_INVALID_INPUT"
    VAL_INVALID_FORMAT = "VAL_INVALID_FORMAT"
    VAL_INVALID_EMAIL = "VAL_INVALID_EMAIL"

    # Resources
    RES_NOT_FOUND = "RES_NOT_FOUND"
    RES_PROPERTY_NOT_FOUND = "RES_PROPERTY_NOT_FOUND"
    RES_USER_NOT_FOUND = "RES_USER_NOT_FOUND"
    RES_UNIT_NOT_FOUND = "RES_UNIT_NOT_FOUND"
    RES_JOB_NOT_FOUND = "RES_JOB_NOT_FOUND"
    RES_SERVICE_REQUEST_NOT_FOUND = "RES_SERVICE_REQUEST_NOT_FOUND"
    RES_INSPECTION_NOT_FOUND = "RES_INSPECTION_NOT_FOUND"
    RES_ALREADY_EXISTS = "RES_ALREADY_EXISTS"
    RES_REPORT_NOT_FOUND = "RES_REPORT_NOT_FOUND"
    RES_INVITE_NOT_FOUND = "RES_INVITE_NOT_FOUND"
    RES_TENANT_NOT_FOUND = "RES_TENANT_NOT_FOUND"

    # Business rules
    BIZ_OPERATION_NOT_ALLOWED = "BIZ_OPERATION_NOT_ALLOWED"
    BIZ_INVALID_STATUS_TRANSITION = "BIZ_INVALID_STATUS_TRANSITION"
    BIZ_EMAIL_ALREADY_REGISTERED = "BIZ_EMAIL_ALREADY_REGISTERED"
    BIZ_INVITE_EXPIRED = "BIZ_INVITE_EXPIRED"
    BIZ_INVITE_ALREADY_ACCEPTED = "BIZ_INVITE_ALREADY_ACCEPTED"
    BIZ_SETUP_ALREADY_COMPLETED = "BIZ_SETUP_ALREADY_COMPLETED"
    BIZ_SCHEDULING_CONFLICT = "BIZ_SCHEDULING_CONFLICT"

    # External services
    EXT_STRIPE_NOT_CONFIGURED = "EXT_STRIPE_NOT_CONFIGURED"
    EXT_STRIPE_ERROR = "EXT_STRIPE_ERROR"
    EXT_SERVICE_UNAVAILABLE = "EXT_SERVICE_UNAVAILABLE"

    # Subscription
    SUB_MANAGER_SUBSCRIPTION_REQUIRED = "SUB_MANAGER_SUBSCRIPTION_REQUIRED"
    SUB_TRIAL_EXPIRED = "SUB_TRIAL_EXPIRED"
    SUB_USAGE_LIMIT_REACHED = "SUB_USAGE_LIMIT_REACHED"
    SUB_SUBSCRIPTION_REQUIRED = "SUB_SUBSCRIPTION_REQUIRED"

    # Files
    FILE_UPLOAD_FAILED = "FILE_UPLOAD_FAILED"
    FILE_NO_FILE_UPLOADED = "FILE_NO_FILE_UPLOADED"
    FILE_INVALID_TYPE = "FILE_INVALID_TYPE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"

    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"


_STATUS_DEFAULT_CODES = {
    400: ErrorCodes.ERR_BAD_REQUEST,
    401: ErrorCodes.AUTH_UNAUTHORIZED,
    403: ErrorCodes.ACC_ACCESS_DENIED,
    404: ErrorCodes.ERR_NOT_FOUND,
    405: ErrorCodes.ERR_BAD_REQUEST,
    409: ErrorCodes.RES_ALREADY_EXISTS,
    413: ErrorCodes.FILE_TOO_LARGE,
    429: ErrorCodes.RATE_LIMIT_EXCEEDED,
}


class ApiError(Exception):
    """Raised from anywhere inside a request to produce a structured error response."""

    def __init__(
        self,
        status: int,
        message: str,
        code: Optional[str] = None,
        details: Any = None,
        headers: Optional[dict] = None,
    ):
        super().__init__(message)
        self.status = status
        self.message = message
        self.code = code or _STATUS_DEFAULT_CODES.get(status, ErrorCodes.ERR_INTERNAL_SERVER)
        self.details = details
        self.headers = headers or {}


def send_error(status: int, message: str, code: Optional[str] = None, details: Any = None):
    body = {
        "success": False,
        "message": message,
        "code": code or _STATUS_DEFAULT_CODES.get(status, ErrorCodes.ERR_INTERNAL_SERVER),
    }
    if details is not None:
        body["details"] = details
    return jsonify(body), status


def not_found(message: str, code: str = ErrorCodes.RES_NOT_FOUND) -> ApiError:
    return ApiError(404, message, code)


def forbidden(message: str, code: str = ErrorCodes.ACC_ACCESS_DENIED) -> ApiError:
    return ApiError(403, message, code)


def bad_request(message: str, code: str = ErrorCodes.VAL_VALIDATION_ERROR, details: Any = None) -> ApiError:
    return ApiError(400, message, code, details)


def register_error_handlers(app):
    from .extensions import db

    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        resp, status = send_error(e.status, e.message, e.code, e.details)
        for key, value in e.headers.items():
            resp.headers[key] = value
        return resp, status

    @app.errorhandler(ValidationError)
    def _validation_error(e: ValidationError):
        details = e.errors(include_url=False, include_context=False, include_input=False)
        return send_error(400, "Validation failed", ErrorCodes.VAL_VALIDATION_ERROR, details)

    @app.errorhandler(SQLAlchemyError)
    def _database_error(e: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error on %s %s", request.method, request.path)
        return send_error(500, "Internal server error", ErrorCodes.ERR_INTERNAL_SERVER)

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        status = e.code or 500
        if status >= 500:
            logger.error("HTTP %s on %s: %s", status, request.path, e.description)
        return send_error(status, e.description or e.name)

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        db.session.rollback()
        logger.exception("Unhandled exception on %s %s", request.method, request.path)
        return send_error(500, "Internal server error", ErrorCodes.ERR_INTERNAL_SERVER)


def register_jwt_handlers(jwt):
    """Route Flask-JWT-Extended failures through the same error envelope."""

    @jwt.unauthorized_loader
    def _missing_token(reason):
        return send_error(401, "Authentication required", ErrorCodes.AUTH_NO_TOKEN)

    @jwt.invalid_token_loader
    def _invalid_token(reason):
        return send_error(401, "Invalid token", ErrorCodes.AUTH_INVALID_TOKEN)

    @jwt.expired_token_loader
    def _expired_token(jwt_header, jwt_payload):
        return send_error(401, "Token has expired", ErrorCodes.AUTH_TOKEN_EXPIRED)

    @jwt.revoked_token_loader
    def _revoked_token(jwt_header, jwt_payload):
        return send_error(401, "Token has been revoked", ErrorCodes.AUTH_INVALID_TOKEN)

    @jwt.needs_fresh_token_loader
    def _stale_token(jwt_header, jwt_payload):
        return send_error(401, "Fresh token required", ErrorCodes.AUTH_INVALID_TOKEN)
