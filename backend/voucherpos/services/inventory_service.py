# Overview: Voucher inventory allocation and stock queries.

from __future__ import annotations

import logging

from sqlalchemy import func

from ..config import config_value
from ..extensions import db
from ..models import VoucherInventory, VoucherType
from ..models.vouchers import UNIT_STATUS_AVAILABLE
from .errors import ClaimConflict, SettlementValidationError
"""
Voucher Inventory Invariants (authoritative)

- A unit is sold at most once: the only transition into "sold" is a single
  conditional UPDATE guarded by status = 'available'.
- For N available units of (type, denomination) and M concurrent requests,
  exactly min(N, M) claims succeed, each on a distinct unit.
- Losing a race (ClaimConflict) is retried against the pool; an empty pool is
  OutOfStock and is never retried.
- A claim only becomes visible when the settlement transaction commits; a
  rolled-back settlement leaves the unit available.
"""

logger = logging.getLogger(__name__)


def allocate_unit(
    repo,
    *,
    voucher_type_id: int,
    denomination_cents: int | None = None,
    inventory_unit_id: int | None = None,
    attempts: int | None = None,
):
    """
    Claim one unit for a settlement, either a specific unit or any unit of the
    requested denomination.

    Raises OutOfStock when nothing matches and ClaimConflict when every attempt
    lost a race.
    """
    if inventory_unit_id is not None:
        return repo.claim_unit_by_id(inventory_unit_id, voucher_type_id)

    if denomination_cents is None:
        raise SettlementValidationError("inventory_unit_id or denomination_cents required")
    if denomination_cents <= 0:
        raise SettlementValidationError("denomination_cents must be positive")

    attempts = attempts or int(config_value("CLAIM_RETRY_ATTEMPTS", 3))
    last_conflict = None
    for attempt in range(max(attempts, 1)):
        try:
            return repo.claim_unit(voucher_type_id, denomination_cents)
        except ClaimConflict as exc:
            last_conflict = exc
            logger.info(
                "Claim conflict on voucher_type=%s denomination=%s (attempt %s/%s)",
                voucher_type_id, denomination_cents, attempt + 1, attempts,
            )
    raise last_conflict


def availability_by_denomination(voucher_type_id: int | None = None) -> list[dict]:
    """Available unit counts grouped by voucher type and denomination."""
    q = (
        db.session.query(
            VoucherInventory.voucher_type_id,
            VoucherType.name,
            VoucherType.supplier_commission_pct,
            VoucherInventory.denomination_cents,
            func.count(VoucherInventory.id).label("available"),
        )
        .join(VoucherType, VoucherType.id == VoucherInventory.voucher_type_id)
        .filter(VoucherInventory.status == UNIT_STATUS_AVAILABLE)
    )
    if voucher_type_id is not None:
        q = q.filter(VoucherInventory.voucher_type_id == voucher_type_id)

    rows = q.group_by(
        VoucherInventory.voucher_type_id,
        VoucherType.name,
        VoucherType.supplier_commission_pct,
        VoucherInventory.denomination_cents,
    ).order_by(VoucherInventory.voucher_type_id, VoucherInventory.denomination_cents).all()

    return [
        {
            "voucher_type_id": row.voucher_type_id,
            "voucher_type_name": row.name,
            "supplier_commission_pct": (
                str(row.supplier_commission_pct) if row.supplier_commission_pct is not None else None
            ),
            "denomination_cents": row.denomination_cents,
            "available": int(row.available),
        }
        for row in rows
    ]
