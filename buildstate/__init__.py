# buildstate/__init__.py
from __future__ import annotations

import logging
import os
import time
import uuid
from datetime import datetime
from typing import Any, Optional

from flask import Flask, g, jsonify, request
from flask_cors import CORS
from werkzeug.middleware.proxy_fix import ProxyFix

from .errors import register_error_handlers, register_jwt_handlers
from .extensions import db, jwt, mail, migrate

logger = logging.getLogger(__name__)


# --- Config ------------------------------------------------------------------
def _get_allowed_origins(app: Flask) -> list[str]:
    """Allowed CORS origins: the frontend plus any comma-separated extras."""
    default = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        app.config.get("FRONTEND_URL") or "",
    ]
    extra = app.config.get("CORS_ALLOWED_ORIGINS") or ""
    extra_list = [o.strip() for o in extra.split(",") if o.strip()]
    return sorted({o.rstrip("/") for o in default + extra_list if o})


def _load_config(app: Flask, config_object: Optional[str | Any]) -> None:
    if config_object is None:
        config_object = os.getenv("CONFIG_CLASS", "buildstate.config.Config")

    if isinstance(config_object, str):
        module, _, cls = config_object.rpartition(".")
        if module:
            config_object = getattr(__import__(module, fromlist=[cls]), cls)
    app.config.from_object(config_object)

    validate = getattr(config_object, "validate", None)
    if callable(validate):
        validate()
    app.config.setdefault("API_PREFIX", "/api")


def _configure_logging(app: Flask) -> None:
    """JSON logs to stdout, one access line per request."""
    level = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    app.logger.setLevel(level)
    root = logging.getLogger()
    root.setLevel(level)

    # avoid duplicate handlers in reloaders
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt='{"ts":"%(asctime)s","level":"%(levelname)s","msg":"%(message)s","name":"%(name)s"}',
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
        handler.setFormatter(formatter)
        root.addHandler(handler)

    if app.config.get("SENTRY_DSN"):
        app.logger.warning("SENTRY_DSN is set but error reporting goes to the application log only")

    @app.before_request
    def _start_timer():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        g.request_started = time.perf_counter()

    @app.after_request
    def _log_request(resp):
        started = g.get("request_started")
        if started is not None:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "%s %s %s %.1fms request_id=%s",
                request.method, request.path, resp.status_code, elapsed_ms, g.request_id,
            )
            resp.headers.setdefault("X-Request-ID", g.request_id)
        return resp


def _configure_cors(app: Flask) -> None:
    CORS(
        app,
        resources={r"/api/*": {"origins": _get_allowed_origins(app)}},
        supports_credentials=True,
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-Requested-With",
            "X-Request-ID",
            "X-Session-ID",
        ],
        expose_headers=[
            "Content-Type",
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
        max_age=86400,
    )

    @app.after_request
    def _add_extra_cors_headers(resp):
        resp.headers.setdefault("Vary", "Origin")
        resp.headers.setdefault("Access-Control-Allow-Credentials", "true")
        return resp


def _configure_proxy(app: Flask) -> None:
    """Respect X-Forwarded-* from the hosting platform's load balancer."""
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)  # type: ignore


def _init_extensions(app: Flask) -> None:
    for ext in (db, migrate, jwt, mail):
        if ext is migrate:
            ext.init_app(app, db)
        else:
            ext.init_app(app)

    register_error_handlers(app)
    register_jwt_handlers(jwt)

    from .services import cache

    @jwt.token_in_blocklist_loader
    def _token_revoked(jwt_header, jwt_payload):
        return bool(cache.get(f"revoked:{jwt_payload['jti']}"))

    # make sure every table is known to the metadata before migrations run
    from . import models  # noqa: F401


def _register_blueprints(app: Flask) -> None:
    """Register all API blueprints; uploads live under the v2 prefix."""
    from .routes import (
        admin,
        auth,
        billing,
        blog,
        dashboard,
        health,
        inspections,
        invites,
        job_templates,
        jobs,
        maintenance_plans,
        notifications,
        properties,
        service_requests,
        units,
        uploads,
    )

    prefix = app.config["API_PREFIX"]

    def _register(module, url_prefix: str = prefix) -> None:
        app.register_blueprint(module.bp, url_prefix=url_prefix)
        app.logger.debug("Registered blueprint %s at %s", module.bp.name, url_prefix)

    for module in (
        auth,
        invites,
        properties,
        units,
        jobs,
        job_templates,
        inspections,
        service_requests,
        maintenance_plans,
        billing,
        blog,
        dashboard,
        admin,
        notifications,
        health,
    ):
        _register(module)
    _register(uploads, url_prefix=prefix + "/v2")


def _register_cli(app: Flask) -> None:
    from .cli import register_commands

    register_commands(app)


# --- Application Factory ------------------------------------------------------
def create_app(config_object: Optional[str | Any] = None) -> Flask:
    """
    Standard Flask application factory.

    `config_object` may be:
      - a config object
      - dotted path to a config class (e.g., "buildstate.config.ProductionConfig")
      - None (then CONFIG_CLASS env or buildstate.config.Config)
    """
    app = Flask(__name__, instance_relative_config=True)
    _load_config(app, config_object)

    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    # Core middleware/logging/CORS
    _configure_logging(app)
    _configure_proxy(app)
    _configure_cors(app)

    # Init extensions & blueprints
    _init_extensions(app)
    _register_blueprints(app)
    _register_cli(app)

    @app.get("/")
    def root():
        service = app.config.get("SERVICE_NAME", "buildstate-backend")
        return jsonify({
            "service": service,
            "message": f"See {app.config['API_PREFIX']}/health",
            "time": datetime.utcnow().isoformat() + "Z",
        }), 200

    # Fast path for CORS preflights to anything under /api
    @app.route(app.config["API_PREFIX"] + "/<path:_any>", methods=["OPTIONS"])
    def preflight(_any: str):
        return ("", 204)

    return app
