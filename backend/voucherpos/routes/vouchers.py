# Overview: Flask API routes for voucher inventory (availability, batch ingestion).

from flask import Blueprint, request, jsonify, current_app

from ..services import inventory_service, voucher_import_service
from ..services.errors import SettlementError
from ..validation import error_response, optional_int


vouchers_bp = Blueprint("vouchers", __name__, url_prefix="/api/vouchers")


@vouchers_bp.get("/availability")
def availability_route():
    try:
        voucher_type_id = optional_int(request.args, "voucher_type_id")
        stock = inventory_service.availability_by_denomination(voucher_type_id)
        return jsonify({"availability": stock}), 200
    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load voucher availability")
        return jsonify({"error": "Internal server error"}), 500


@vouchers_bp.post("/ingest")
def ingest_route():
    """
    Add a batch of vouchers.

    Body: {"mode": "merge" | "replace", "vouchers": [{voucher_type_id,
    denomination_cents, pin, serial_number?}, ...]}
    """
    try:
        data = request.get_json(silent=True) or {}
        records = data.get("vouchers")
        if not isinstance(records, list):
            return jsonify({"error": "vouchers must be a list"}), 400

        result = voucher_import_service.ingest_vouchers(records, mode=data.get("mode") or "merge")
        return jsonify({"result": result.to_dict()}), 201
    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to ingest vouchers")
        return jsonify({"error": "Internal server error"}), 500
