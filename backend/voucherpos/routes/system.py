# backend/voucherpos/routes/system.py
"""
System health endpoint.

Checks database connectivity and reports voucher stock so a terminal fleet
can be monitored without touching the settlement paths.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Retailer, VoucherInventory
from ..models.vouchers import UNIT_STATUS_AVAILABLE
from ..services.bill_payment_service import VENDOR_REGISTRY_KEY
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        retailer_count = db.session.query(Retailer).count()
        available_units = db.session.query(VoucherInventory).filter_by(status=UNIT_STATUS_AVAILABLE).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "retailers": retailer_count,
                "available_vouchers": available_units,
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


def check_vendor_health() -> dict:
    """Bill payment providers registered on this app (no outbound calls)."""
    providers = sorted(current_app.extensions.get(VENDOR_REGISTRY_KEY, {}))
    return {
        "status": "healthy" if providers else "degraded",
        "details": {"providers": providers},
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (no bill payment providers)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    vendor_health = check_vendor_health()

    if database_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    elif vendor_health["status"] == "degraded":
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "bill_payment_vendors": vendor_health,
        }
    }
    return response, http_status
