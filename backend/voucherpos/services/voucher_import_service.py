# Overview: Batch ingestion of voucher inventory (merge or replace per voucher type).

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import VoucherInventory, VoucherType
from ..models.vouchers import UNIT_STATUS_AVAILABLE
from .errors import NotFoundError, PersistenceFailure, SettlementValidationError

logger = logging.getLogger(__name__)

MODE_MERGE = "merge"
MODE_REPLACE = "replace"
VALID_MODES = (MODE_MERGE, MODE_REPLACE)


@dataclass(frozen=True)
class VoucherRecord:
    voucher_type_id: int
    denomination_cents: int
    pin: str
    serial_number: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any], row_number: int) -> "VoucherRecord":
        if not isinstance(raw, dict):
            raise SettlementValidationError("Voucher record must be an object", details={"row": row_number})

        pin = str(raw.get("pin") or "").strip()
        if not pin:
            raise SettlementValidationError("pin required", details={"row": row_number})

        try:
            voucher_type_id = int(raw.get("voucher_type_id"))
            denomination_cents = raw.get("denomination_cents")
            if isinstance(denomination_cents, bool) or not isinstance(denomination_cents, int):
                raise ValueError
        except (TypeError, ValueError):
            raise SettlementValidationError(
                "voucher_type_id and integer denomination_cents required",
                details={"row": row_number},
            )
        if denomination_cents <= 0:
            raise SettlementValidationError("denomination_cents must be positive", details={"row": row_number})

        serial = raw.get("serial_number")
        return cls(
            voucher_type_id=voucher_type_id,
            denomination_cents=denomination_cents,
            pin=pin,
            serial_number=str(serial).strip() if serial not in (None, "") else None,
        )


@dataclass(frozen=True)
class IngestResult:
    mode: str
    inserted: int
    duplicates: int
    removed: int

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "inserted": self.inserted,
            "duplicates": self.duplicates,
            "removed": self.removed,
        }


def _coerce(records: Iterable) -> list[VoucherRecord]:
    coerced = []
    for idx, record in enumerate(records, start=1):
        coerced.append(record if isinstance(record, VoucherRecord) else VoucherRecord.from_dict(record, idx))
    return coerced


def ingest_vouchers(records: Iterable, *, mode: str = MODE_MERGE) -> IngestResult:
    """
    Add a batch of validated voucher records to inventory.

    merge:   pins already in inventory (or repeated in the batch) are skipped.
    replace: every *available* unit of the batch's voucher types is deleted
             first; sold units are never touched.

    The batch is all-or-nothing.
    """
    if mode not in VALID_MODES:
        raise SettlementValidationError(f"Invalid ingest mode: {mode}", details={"valid_modes": list(VALID_MODES)})

    batch = _coerce(records)
    if not batch:
        raise SettlementValidationError("No voucher records supplied")

    type_ids = {r.voucher_type_id for r in batch}
    known = {row.id for row in db.session.query(VoucherType.id).filter(VoucherType.id.in_(type_ids)).all()}
    missing = sorted(type_ids - known)
    if missing:
        raise NotFoundError("Voucher type not found", details={"voucher_type_ids": missing})

    removed = 0
    if mode == MODE_REPLACE:
        removed = (
            db.session.query(VoucherInventory)
            .filter(
                VoucherInventory.voucher_type_id.in_(type_ids),
                VoucherInventory.status == UNIT_STATUS_AVAILABLE,
            )
            .delete(synchronize_session=False)
        )

    pins = {r.pin for r in batch}
    existing = {
        row.pin
        for row in db.session.query(VoucherInventory.pin).filter(VoucherInventory.pin.in_(pins)).all()
    }

    inserted = 0
    duplicates = 0
    seen: set[str] = set()
    for record in batch:
        if record.pin in existing or record.pin in seen:
            duplicates += 1
            continue
        seen.add(record.pin)
        db.session.add(VoucherInventory(
            voucher_type_id=record.voucher_type_id,
            denomination_cents=record.denomination_cents,
            pin=record.pin,
            serial_number=record.serial_number,
            status=UNIT_STATUS_AVAILABLE,
        ))
        inserted += 1

    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise PersistenceFailure("Voucher batch could not be stored", details={"reason": "duplicate pin"}) from exc

    logger.info(
        "Voucher batch ingested (mode=%s inserted=%s duplicates=%s removed=%s)",
        mode, inserted, duplicates, removed,
    )
    return IngestResult(mode=mode, inserted=inserted, duplicates=duplicates, removed=removed)
