# Overview: Flask API routes for retailer accounts (summary, deposits, credit limit).

from flask import Blueprint, request, jsonify, current_app

from ..services import retailer_service
from ..services.errors import SettlementError
from ..validation import error_response, require_int


retailers_bp = Blueprint("retailers", __name__, url_prefix="/api/retailers")


@retailers_bp.get("/<int:retailer_id>")
def account_route(retailer_id: int):
    try:
        return jsonify({"retailer": retailer_service.account_summary(retailer_id)}), 200
    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load retailer account")
        return jsonify({"error": "Internal server error"}), 500


@retailers_bp.post("/<int:retailer_id>/balance")
def adjust_balance_route(retailer_id: int):
    """
    Body: amount_cents, type ("deposit" | "adjustment"), notes
    """
    try:
        data = request.get_json(silent=True) or {}
        result = retailer_service.adjust_balance(
            retailer_id,
            require_int(data, "amount_cents"),
            kind=data.get("type") or "deposit",
            notes=data.get("notes"),
        )
        return jsonify({"transaction": result}), 201
    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust retailer balance")
        return jsonify({"error": "Internal server error"}), 500


@retailers_bp.put("/<int:retailer_id>/credit-limit")
def credit_limit_route(retailer_id: int):
    try:
        data = request.get_json(silent=True) or {}
        retailer = retailer_service.set_credit_limit(retailer_id, require_int(data, "credit_limit_cents"))
        return jsonify({"retailer": retailer.to_dict()}), 200
    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set credit limit")
        return jsonify({"error": "Internal server error"}), 500
