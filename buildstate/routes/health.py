import logging
from datetime import datetime

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..services import cache

logger = logging.getLogger(__name__)

bp = Blueprint("health", __name__)


@bp.get("/health")
def health():
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("Health check database failure: %s", e)
        database = "error"

    status = "ok" if database == "ok" else "degraded"
    return jsonify({
        "status": status,
        "time": datetime.utcnow().isoformat() + "Z",
        "service": current_app.config["SERVICE_NAME"],
        "database": database,
        "cache": cache.backend_name(),
    }), 200 if status == "ok" else 503
