# Overview: Flask API routes for commission rates and commission previews.

from flask import Blueprint, request, jsonify, current_app

from ..services import commission_service
from ..services.errors import SettlementError
from ..validation import error_response, require_int


commissions_bp = Blueprint("commissions", __name__, url_prefix="/api/commissions")


@commissions_bp.put("/rates")
def set_rate_route():
    """
    Set the retailer/agent shares (0-1) of one commission group for one voucher type.
    """
    try:
        data = request.get_json(silent=True) or {}
        rate = commission_service.set_group_rate(
            require_int(data, "commission_group_id"),
            require_int(data, "voucher_type_id"),
            data.get("retailer_pct"),
            data.get("agent_pct"),
        )
        return jsonify({"rate": rate.to_dict()}), 200
    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set commission rate")
        return jsonify({"error": "Internal server error"}), 500


@commissions_bp.put("/supplier/<int:voucher_type_id>")
def set_supplier_pct_route(voucher_type_id: int):
    try:
        data = request.get_json(silent=True) or {}
        voucher_type = commission_service.set_supplier_commission_pct(
            voucher_type_id, data.get("supplier_commission_pct")
        )
        return jsonify({"voucher_type": voucher_type.to_dict()}), 200
    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set supplier commission")
        return jsonify({"error": "Internal server error"}), 500


@commissions_bp.get("/estimate")
def estimate_route():
    """Query params: terminal_id, voucher_type_id, value_cents"""
    try:
        args = request.args
        estimate = commission_service.estimate_commission(
            require_int(args, "terminal_id"),
            require_int(args, "voucher_type_id"),
            require_int(args, "value_cents"),
        )
        return jsonify({"estimate": estimate}), 200
    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to estimate commission")
        return jsonify({"error": "Internal server error"}), 500
