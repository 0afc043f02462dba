# Overview: Flask routes for system health and version.

"""
System health and version endpoints.

Health checks cover the record store and the image store; both are needed for
the shop to keep working.
"""

import os
import sys
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Bike, LoanerBike, User
from ..services import image_store
from bikeshop.time_utils import utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        bike_count = db.session.query(Bike).filter(Bike.deleted_at.is_(None)).count()
        loaner_count = db.session.query(LoanerBike).count()
        user_count = db.session.query(User).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "bikes": bike_count,
                "loaner_bikes": loaner_count,
                "users": user_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_image_store_health() -> dict:
    """Upload directory exists (or can be created) and is writable."""
    start_time = time.time()
    try:
        path = image_store.upload_dir()
        path.mkdir(parents=True, exist_ok=True)
        writable = os.access(path, os.W_OK)
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy" if writable else "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"writable": writable},
        }
    except OSError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Image store health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Image store error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    image_store_health = check_image_store_health()

    all_checks = [database_health, image_store_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "image_store": image_store_health,
        }
    }, http_status


@system_bp.get("/version")
def version():
    """
    Version endpoint for deployment debugging.

    Does NOT expose secret keys, database credentials or internal paths.
    """
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": API_VERSION,
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
