# Overview: Flask API routes for voucher sales; parses input and returns JSON responses.

"""Voucher sale API routes"""

from flask import Blueprint, request, jsonify, current_app

from ..services import sales_service
from ..services.errors import SettlementError
from ..validation import error_response, optional_datetime, optional_int, require_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/vouchers")
def sell_voucher_route():
    """
    Sell one voucher from a terminal.

    Body: terminal_id, voucher_type_id and either denomination_cents or
    inventory_unit_id; optional channel (terminal, retailer, cashier, ott).
    When retailer_id, retailer_pct and agent_pct are all supplied the
    caller's rates are used instead of the commission group's.
    """
    try:
        data = request.get_json(silent=True) or {}
        terminal_id = require_int(data, "terminal_id")
        voucher_type_id = require_int(data, "voucher_type_id")
        denomination_cents = optional_int(data, "denomination_cents")
        inventory_unit_id = optional_int(data, "inventory_unit_id")
        channel = data.get("channel") or sales_service.CHANNEL_TERMINAL

        if "retailer_pct" in data or "agent_pct" in data:
            result = sales_service.complete_sale(
                retailer_id=require_int(data, "retailer_id"),
                terminal_id=terminal_id,
                voucher_type_id=voucher_type_id,
                inventory_unit_id=inventory_unit_id,
                denomination_cents=denomination_cents,
                sale_amount_cents=optional_int(data, "sale_amount_cents"),
                retailer_pct=data.get("retailer_pct"),
                agent_pct=data.get("agent_pct"),
                channel=channel,
            )
        else:
            result = sales_service.complete_voucher_sale(
                terminal_id=terminal_id,
                voucher_type_id=voucher_type_id,
                denomination_cents=denomination_cents,
                inventory_unit_id=inventory_unit_id,
                channel=channel,
            )

        if not result.ok:
            return error_response(result.error)
        return jsonify(result.to_dict()), 201

    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete voucher sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>/receipt")
def receipt_route(sale_id: int):
    """Re-print the receipt of a completed sale."""
    try:
        receipt = sales_service.get_receipt(sale_id)
        return jsonify({"receipt": receipt.to_dict()}), 200
    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build receipt")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
def list_sales_route():
    """
    Sales history, newest first.

    Query params: terminal_id, retailer_id, start, end (ISO-8601, inclusive), limit
    """
    try:
        args = request.args
        terminal_id = optional_int(args, "terminal_id")
        retailer_id = optional_int(args, "retailer_id")
        if terminal_id is None and retailer_id is None:
            return jsonify({"error": "terminal_id or retailer_id required"}), 400

        limit = optional_int(args, "limit") or 100
        sales = sales_service.sales_history(
            terminal_id=terminal_id,
            retailer_id=retailer_id,
            start=optional_datetime(args, "start"),
            end=optional_datetime(args, "end", end_of_day=True),
            limit=max(1, min(limit, 500)),
        )
        return jsonify({"sales": sales, "count": len(sales)}), 200

    except SettlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500
