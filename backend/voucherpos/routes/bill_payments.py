# Overview: Flask API routes for bill payments (validate account, pay).

from flask import Blueprint, request, jsonify, current_app

from ..services import bill_payment_service
from ..services.errors import SettlementError
from ..validation import error_response, optional_int, require_int, require_str


bill_payments_bp = Blueprint("bill_payments", __name__, url_prefix="/api/bill-payments")


@bill_payments_bp.post("/validate")
def validate_route():
    """Look up an account (meter, smartcard) with the provider before paying."""
    try:
        data = request.get_json(silent=True) or {}
        validation = bill_payment_service.validate_account(
            provider=require_str(data, "provider"),
            account_reference=require_str(data, "account_reference"),
            product=data.get("product"),
        )
        return jsonify({"validation": validation.to_dict()}), 200
    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate bill payment account")
        return jsonify({"error": "Internal server error"}), 500


@bill_payments_bp.post("")
def pay_route():
    try:
        data = request.get_json(silent=True) or {}
        result = bill_payment_service.pay_bill(
            terminal_id=require_int(data, "terminal_id"),
            voucher_type_id=require_int(data, "voucher_type_id"),
            provider=require_str(data, "provider"),
            account_reference=require_str(data, "account_reference"),
            product=data.get("product"),
            amount_cents=optional_int(data, "amount_cents"),
        )
        if not result.ok:
            return jsonify(result.to_dict()), result.error.http_status
        return jsonify(result.to_dict()), 201
    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process bill payment")
        return jsonify({"error": "Internal server error"}), 500


@bill_payments_bp.get("")
def list_route():
    try:
        payments = bill_payment_service.list_bill_payments(
            terminal_id=optional_int(request.args, "terminal_id"),
            status=request.args.get("status") or None,
        )
        return jsonify({"bill_payments": payments}), 200
    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list bill payments")
        return jsonify({"error": "Internal server error"}), 500
