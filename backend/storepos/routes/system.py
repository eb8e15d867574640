# backend/storepos/routes/system.py
"""
System health and activity endpoints.
"""

import time

from flask import Blueprint, current_app, request
from sqlalchemy.exc import SQLAlchemyError

from ..decorators import api_response
from ..extensions import db
from ..models import Bill, Product
from ..services import activity_service
from ..time_utils import parse_date_bound, to_utc_z, utcnow
from ..validation import parse_optional_id

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with two cheap counts.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        bill_count = db.session.query(Bill).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"products": product_count, "bills": bill_count},
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503
    return {
        "status": database_health["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database_health},
    }, http_status


@system_bp.get("/api/activity")
@api_response()
def activity_route():
    """
    Activity log, newest first.

    Query params: user_id, module, start_date, end_date (inclusive), limit (default 100).
    """
    entries = activity_service.list_activity(
        user_id=parse_optional_id(request.args.get("user_id"), "user_id"),
        module=request.args.get("module") or None,
        start=parse_date_bound(request.args.get("start_date"), "start_date"),
        end=parse_date_bound(request.args.get("end_date"), "end_date", end=True),
        limit=parse_optional_id(request.args.get("limit"), "limit") or 100,
    )
    return [entry.to_dict() for entry in entries]
