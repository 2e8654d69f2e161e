# Overview: Voucher sale settlement: allocate, split commission, settle the ledger, record, receipt.

"""
Sales Service - voucher sale settlement engine

Every sale channel (retailer, terminal, cashier, OTT, bill payments) settles
through this module:

    Idle -> Allocating -> Calculating -> Waterfalling -> Persisting -> Done
                 \\____________\\______________\\______________\\--> Failed(reason)

One settlement is one repository transaction. The retailer row is locked
first, then a unit is claimed, and everything is committed together. Any
failure rolls the transaction back, which is also the compensation for the
claim: the unit is available again and no ledger row exists.

Entry points return a SaleResult envelope carrying either the receipt or a
typed SettlementError, never both.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..config import config_value
from ..extensions import db
from ..models import Retailer, Sale, Terminal, VoucherInventory, VoucherType
from ..models.sales import TRANSACTION_TYPE_SALE
from .commission_service import CommissionRates, CommissionBreakdown, calculate_commission
from .concurrency import run_with_retry
from .errors import (
    NotFoundError,
    PersistenceFailure,
    RateNotConfigured,
    SettlementError,
    SettlementValidationError,
)
from .inventory_service import allocate_unit
from .ledger_service import WaterfallResult, apply_waterfall, sale_notes
from .receipt_service import Receipt, build_receipt
from .settlement_repository import SqlSettlementRepository

logger = logging.getLogger(__name__)


CHANNEL_RETAILER = "retailer"
CHANNEL_TERMINAL = "terminal"
CHANNEL_CASHIER = "cashier"
CHANNEL_OTT = "ott"
CHANNEL_BILL_PAYMENT = "bill_payment"

VALID_CHANNELS = (CHANNEL_RETAILER, CHANNEL_TERMINAL, CHANNEL_CASHIER, CHANNEL_OTT, CHANNEL_BILL_PAYMENT)


class SaleStage(str, Enum):
    IDLE = "idle"
    ALLOCATING = "allocating"
    CALCULATING = "calculating"
    WATERFALLING = "waterfalling"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class SettlementRun:
    """Tracks one settlement attempt through its stages for logging and failure reporting."""

    def __init__(self, channel: str, terminal_id: int, voucher_type_id: int):
        if channel not in VALID_CHANNELS:
            raise SettlementValidationError(f"Invalid sale channel: {channel}")
        self.channel = channel
        self.terminal_id = terminal_id
        self.voucher_type_id = voucher_type_id
        self.stage = SaleStage.IDLE
        self.claimed_unit_id: int | None = None

    def advance(self, stage: SaleStage) -> None:
        logger.debug(
            "Settlement %s -> %s (channel=%s terminal=%s voucher_type=%s)",
            self.stage.value, stage.value, self.channel, self.terminal_id, self.voucher_type_id,
        )
        self.stage = stage

    def fail(self, error: SettlementError) -> None:
        error.details.setdefault("stage", self.stage.value)
        if self.claimed_unit_id is not None:
            logger.info(
                "Settlement failed at %s; unit %s released by rollback",
                self.stage.value, self.claimed_unit_id,
            )
        logger.warning(
            "Settlement failed: %s at %s (channel=%s terminal=%s): %s",
            error.code, self.stage.value, self.channel, self.terminal_id, error.message,
        )
        self.stage = SaleStage.FAILED


@dataclass(frozen=True)
class SaleResult:
    sale_id: int | None = None
    voucher_code: str | None = None
    serial_number: str | None = None
    receipt: Receipt | None = None
    error: SettlementError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, receipt: Receipt) -> "SaleResult":
        return cls(
            sale_id=receipt.sale_id,
            voucher_code=receipt.voucher_code,
            serial_number=receipt.serial_number,
            receipt=receipt,
        )

    @classmethod
    def failure(cls, error: SettlementError) -> "SaleResult":
        return cls(error=error)

    def to_dict(self) -> dict:
        if self.error is not None:
            return self.error.to_dict()
        return {
            "sale_id": self.sale_id,
            "voucher_code": self.voucher_code,
            "serial_number": self.serial_number,
            "receipt": self.receipt.to_dict(),
        }


# =============================================================================
# SALE RECORDER
# =============================================================================

def record_sale(
    repo,
    *,
    unit,
    terminal,
    retailer,
    product_name: str,
    breakdown: CommissionBreakdown,
    waterfall: WaterfallResult,
):
    """
    Persist the sale, the retailer's new balance state and the ledger row.

    Runs inside the caller's transaction, so a failure here also undoes the
    claim. Storage errors surface as PersistenceFailure; lock and version
    conflicts propagate unchanged so the whole settlement can be retried.
    """
    try:
        record = repo.insert_sale(
            voucher_inventory_id=unit.id,
            terminal_id=terminal.id,
            retailer_id=retailer.id,
            sale_amount_cents=breakdown.sale_amount_cents,
            supplier_commission_cents=breakdown.supplier_commission_cents,
            retailer_commission_cents=breakdown.retailer_commission_cents,
            agent_commission_cents=breakdown.agent_commission_cents,
            profit_cents=breakdown.profit_cents,
        )
        repo.apply_ledger_update(
            retailer_id=retailer.id,
            new_balance_cents=waterfall.new_balance_cents,
            new_credit_used_cents=waterfall.new_credit_used_cents,
            retailer_commission_cents=breakdown.retailer_commission_cents,
            agent_id=retailer.agent_id,
            agent_commission_cents=breakdown.agent_commission_cents,
            terminal_id=terminal.id,
        )
        repo.insert_transaction(
            retailer_id=retailer.id,
            agent_id=retailer.agent_id,
            sale_id=record.id,
            type=TRANSACTION_TYPE_SALE,
            amount_cents=breakdown.sale_amount_cents,
            balance_after_cents=waterfall.new_balance_cents,
            credit_used_after_cents=waterfall.new_credit_used_cents,
            notes=sale_notes(
                sale_amount_cents=breakdown.sale_amount_cents,
                terminal_name=terminal.name,
                product_name=product_name,
                waterfall=waterfall,
            ),
        )
    except (OperationalError, StaleDataError):
        raise
    except SQLAlchemyError as exc:
        raise PersistenceFailure(
            "Sale could not be recorded",
            details={"reason": exc.__class__.__name__},
        ) from exc
    return record


# =============================================================================
# PIPELINE
# =============================================================================

def _settle(repo, run: SettlementRun, *, terminal, retailer, voucher_type, rates, claim, sale_amount_cents=None) -> Receipt:
    run.advance(SaleStage.ALLOCATING)
    unit = claim()
    run.claimed_unit_id = unit.id

    amount = unit.denomination_cents if sale_amount_cents is None else sale_amount_cents

    run.advance(SaleStage.CALCULATING)
    breakdown = calculate_commission(amount, rates)

    run.advance(SaleStage.WATERFALLING)
    waterfall = apply_waterfall(
        balance_cents=retailer.balance_cents,
        credit_limit_cents=retailer.credit_limit_cents,
        credit_used_cents=retailer.credit_used_cents,
        sale_amount_cents=breakdown.sale_amount_cents,
        commission_credit_cents=breakdown.retailer_commission_cents,
    )

    run.advance(SaleStage.PERSISTING)
    record = record_sale(
        repo,
        unit=unit,
        terminal=terminal,
        retailer=retailer,
        product_name=voucher_type.name,
        breakdown=breakdown,
        waterfall=waterfall,
    )

    receipt = build_receipt(
        sale_id=record.id,
        ref_number=record.ref_number,
        created_at=record.created_at,
        pin=unit.pin,
        serial_number=unit.serial_number,
        retailer_name=retailer.name,
        terminal_name=terminal.name,
        terminal_id=terminal.id,
        product_name=voucher_type.name,
        sale_amount_cents=breakdown.sale_amount_cents,
        retailer_commission_cents=breakdown.retailer_commission_cents,
        agent_commission_cents=breakdown.agent_commission_cents,
    )
    run.advance(SaleStage.DONE)
    return receipt


def _execute(run: SettlementRun, repo, op) -> SaleResult:
    try:
        receipt = run_with_retry(op, rollback=repo.rollback)
    except SettlementError as exc:
        run.fail(exc)
        return SaleResult.failure(exc)
    except SQLAlchemyError as exc:
        logger.exception("Settlement storage failure")
        failure = PersistenceFailure(
            "Sale could not be recorded",
            details={"reason": exc.__class__.__name__},
        )
        run.fail(failure)
        return SaleResult.failure(failure)

    logger.info(
        "Sale %s completed (ref=%s channel=%s terminal=%s amount_cents=%s)",
        receipt.sale_id, receipt.ref_number, run.channel, receipt.terminal_id, receipt.sale_amount_cents,
    )
    return SaleResult.success(receipt)


def _require_terminal(repo, terminal_id: int, retailer_id: int | None = None):
    terminal = repo.find_terminal(terminal_id)
    if terminal is None:
        raise NotFoundError("Terminal not found", details={"terminal_id": terminal_id})
    if retailer_id is not None and terminal.retailer_id != retailer_id:
        raise SettlementValidationError(
            "Terminal does not belong to retailer",
            details={"terminal_id": terminal_id, "retailer_id": retailer_id},
        )
    return terminal


def _require_voucher_type(repo, voucher_type_id: int):
    voucher_type = repo.find_voucher_type(voucher_type_id)
    if voucher_type is None:
        raise NotFoundError("Voucher type not found", details={"voucher_type_id": voucher_type_id})
    return voucher_type


def _require_group_rate(repo, retailer, voucher_type_id: int):
    rate = repo.find_commission_rate(retailer.commission_group_id, voucher_type_id)
    if rate is None:
        raise RateNotConfigured(
            "Commission rate not found for this voucher type",
            details={
                "retailer_id": retailer.id,
                "commission_group_id": retailer.commission_group_id,
                "voucher_type_id": voucher_type_id,
            },
        )
    return rate


# =============================================================================
# ENTRY POINTS
# =============================================================================

def complete_sale(
    *,
    retailer_id: int,
    terminal_id: int,
    voucher_type_id: int,
    retailer_pct,
    agent_pct,
    inventory_unit_id: int | None = None,
    denomination_cents: int | None = None,
    sale_amount_cents: int | None = None,
    channel: str = CHANNEL_TERMINAL,
    repo=None,
) -> SaleResult:
    """
    Settle one pre-existing voucher with caller-supplied commission shares.

    Either inventory_unit_id (sell that unit) or denomination_cents (sell any
    unit of that face value) selects the inventory. sale_amount_cents defaults
    to the unit's denomination.
    """
    repo = repo or SqlSettlementRepository()
    try:
        run = SettlementRun(channel, terminal_id, voucher_type_id)
        if retailer_pct is None or agent_pct is None:
            raise RateNotConfigured(
                "Commission rate not found for this voucher type",
                details={"retailer_id": retailer_id, "voucher_type_id": voucher_type_id},
            )
        if inventory_unit_id is None and denomination_cents is None:
            raise SettlementValidationError("inventory_unit_id or denomination_cents required")
    except SettlementError as exc:
        logger.warning("Sale rejected before settlement: %s", exc.message)
        return SaleResult.failure(exc)

    def _op():
        with repo.transaction():
            terminal = _require_terminal(repo, terminal_id, retailer_id)
            retailer = repo.read_retailer_snapshot(retailer_id)
            voucher_type = _require_voucher_type(repo, voucher_type_id)
            rates = CommissionRates.from_config(
                supplier_commission_pct=voucher_type.supplier_commission_pct,
                retailer_pct=retailer_pct,
                agent_pct=agent_pct,
            )
            return _settle(
                repo,
                run,
                terminal=terminal,
                retailer=retailer,
                voucher_type=voucher_type,
                rates=rates,
                claim=lambda: allocate_unit(
                    repo,
                    voucher_type_id=voucher_type_id,
                    denomination_cents=denomination_cents,
                    inventory_unit_id=inventory_unit_id,
                ),
                sale_amount_cents=sale_amount_cents,
            )

    return _execute(run, repo, _op)


def complete_voucher_sale(
    *,
    terminal_id: int,
    voucher_type_id: int,
    denomination_cents: int | None = None,
    inventory_unit_id: int | None = None,
    channel: str = CHANNEL_TERMINAL,
    repo=None,
) -> SaleResult:
    """
    Sell a voucher from a terminal: the retailer and its commission-group rate
    are resolved from the terminal, then the sale is settled.
    """
    repo = repo or SqlSettlementRepository()
    try:
        run = SettlementRun(channel, terminal_id, voucher_type_id)
        if inventory_unit_id is None and denomination_cents is None:
            raise SettlementValidationError("inventory_unit_id or denomination_cents required")
    except SettlementError as exc:
        return SaleResult.failure(exc)

    def _op():
        with repo.transaction():
            terminal = _require_terminal(repo, terminal_id)
            retailer = repo.read_retailer_snapshot(terminal.retailer_id)
            voucher_type = _require_voucher_type(repo, voucher_type_id)
            rate = _require_group_rate(repo, retailer, voucher_type_id)
            rates = CommissionRates.from_config(
                supplier_commission_pct=voucher_type.supplier_commission_pct,
                retailer_pct=rate.retailer_pct,
                agent_pct=rate.agent_pct,
            )
            return _settle(
                repo,
                run,
                terminal=terminal,
                retailer=retailer,
                voucher_type=voucher_type,
                rates=rates,
                claim=lambda: allocate_unit(
                    repo,
                    voucher_type_id=voucher_type_id,
                    denomination_cents=denomination_cents,
                    inventory_unit_id=inventory_unit_id,
                ),
            )

    return _execute(run, repo, _op)


def complete_synthesized_sale(
    *,
    terminal_id: int,
    voucher_type_id: int,
    sale_amount_cents: int,
    pin: str,
    serial_number: str | None = None,
    channel: str = CHANNEL_BILL_PAYMENT,
    repo=None,
) -> SaleResult:
    """
    Settle a sale whose credential was just produced by an external vendor.

    Only call this after the vendor confirmed success. The unit is created
    already sold with the vendor code as its pin, then the same commission,
    ledger and recording contract applies. A voucher type without a supplier
    commission uses BILL_PAYMENT_FALLBACK_SUPPLIER_PCT.
    """
    repo = repo or SqlSettlementRepository()
    try:
        run = SettlementRun(channel, terminal_id, voucher_type_id)
        if not pin:
            raise SettlementValidationError("Vendor code (pin) required")
        if isinstance(sale_amount_cents, bool) or not isinstance(sale_amount_cents, int) or sale_amount_cents <= 0:
            raise SettlementValidationError("sale_amount_cents must be a positive integer")
    except SettlementError as exc:
        return SaleResult.failure(exc)

    def _op():
        with repo.transaction():
            terminal = _require_terminal(repo, terminal_id)
            retailer = repo.read_retailer_snapshot(terminal.retailer_id)
            voucher_type = _require_voucher_type(repo, voucher_type_id)
            rate = _require_group_rate(repo, retailer, voucher_type_id)
            supplier_pct = voucher_type.supplier_commission_pct
            if supplier_pct is None:
                supplier_pct = config_value("BILL_PAYMENT_FALLBACK_SUPPLIER_PCT", "2.50")
                logger.info(
                    "Voucher type %s has no supplier commission; using fallback %s%%",
                    voucher_type_id, supplier_pct,
                )
            rates = CommissionRates.from_config(
                supplier_commission_pct=supplier_pct,
                retailer_pct=rate.retailer_pct,
                agent_pct=rate.agent_pct,
            )
            return _settle(
                repo,
                run,
                terminal=terminal,
                retailer=retailer,
                voucher_type=voucher_type,
                rates=rates,
                claim=lambda: repo.insert_sold_unit(
                    voucher_type_id=voucher_type_id,
                    denomination_cents=sale_amount_cents,
                    pin=pin,
                    serial_number=serial_number,
                ),
                sale_amount_cents=sale_amount_cents,
            )

    return _execute(run, repo, _op)


# =============================================================================
# READ SIDE
# =============================================================================

def get_receipt(sale_id: int) -> Receipt:
    """Rebuild the receipt of a completed sale (re-print)."""
    row = (
        db.session.query(Sale, VoucherInventory, VoucherType, Terminal, Retailer)
        .join(VoucherInventory, VoucherInventory.id == Sale.voucher_inventory_id)
        .join(VoucherType, VoucherType.id == VoucherInventory.voucher_type_id)
        .join(Terminal, Terminal.id == Sale.terminal_id)
        .join(Retailer, Retailer.id == Sale.retailer_id)
        .filter(Sale.id == sale_id)
        .first()
    )
    if row is None:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})

    sale, unit, voucher_type, terminal, retailer = row
    return build_receipt(
        sale_id=sale.id,
        ref_number=sale.ref_number,
        created_at=sale.created_at,
        pin=unit.pin,
        serial_number=unit.serial_number,
        retailer_name=retailer.name,
        terminal_name=terminal.name,
        terminal_id=terminal.id,
        product_name=voucher_type.name,
        sale_amount_cents=sale.sale_amount_cents,
        retailer_commission_cents=sale.retailer_commission_cents,
        agent_commission_cents=sale.agent_commission_cents,
    )


def sales_history(
    *,
    terminal_id: int | None = None,
    retailer_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> list[dict]:
    """
    Completed sales, newest first.

    Date filters are inclusive: start <= created_at <= end.
    """
    q = (
        db.session.query(Sale, VoucherInventory, VoucherType.name, Terminal.name)
        .join(VoucherInventory, VoucherInventory.id == Sale.voucher_inventory_id)
        .join(VoucherType, VoucherType.id == VoucherInventory.voucher_type_id)
        .join(Terminal, Terminal.id == Sale.terminal_id)
    )
    if terminal_id is not None:
        q = q.filter(Sale.terminal_id == terminal_id)
    if retailer_id is not None:
        q = q.filter(Sale.retailer_id == retailer_id)
    if start is not None:
        q = q.filter(Sale.created_at >= start)
    if end is not None:
        q = q.filter(Sale.created_at <= end)

    rows = q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()

    history = []
    for sale, unit, voucher_type_name, terminal_name in rows:
        item = sale.to_dict()
        item.update({
            "terminal_name": terminal_name,
            "voucher_type": voucher_type_name,
            "voucher_amount_cents": unit.denomination_cents,
            "pin": unit.pin,
            "serial_number": unit.serial_number,
        })
        history.append(item)
    return history
