# Overview: Request payload/query parsing shared by the API routes.

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from flask import jsonify

from .services.errors import SettlementError, SettlementValidationError
from .time_utils import parse_iso_datetime

_INTEGER = re.compile(r"-?[0-9]+")


def _to_int(value: Any, field: str) -> int:
    # Strict: reject bools, floats and decimal strings so cents are never truncated
    if isinstance(value, bool):
        raise SettlementValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if _INTEGER.fullmatch(stripped):
            return int(stripped)
    raise SettlementValidationError(f"{field} must be an integer")


def require_int(data: dict, field: str) -> int:
    value = data.get(field)
    if value is None or value == "":
        raise SettlementValidationError(f"{field} required")
    return _to_int(value, field)


def optional_int(data, field: str) -> int | None:
    value = data.get(field)
    if value is None or value == "":
        return None
    return _to_int(value, field)


def require_str(data: dict, field: str) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise SettlementValidationError(f"{field} required")
    return value.strip()


def optional_datetime(args, field: str, *, end_of_day: bool = False) -> datetime | None:
    try:
        return parse_iso_datetime(args.get(field), end_of_day=end_of_day)
    except ValueError:
        raise SettlementValidationError(f"{field} must be an ISO-8601 datetime")


def error_response(exc: SettlementError):
    return jsonify(exc.to_dict()), exc.http_status
