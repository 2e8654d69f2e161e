# Overview: Storage capabilities used by the settlement engine (SQLAlchemy implementation).

"""
Settlement repository

The settlement engine never touches the session directly; it is handed a
repository exposing exactly the capabilities it needs:

    claim_unit, claim_unit_by_id, insert_sold_unit,
    read_retailer_snapshot, apply_ledger_update,
    insert_sale, insert_transaction,
    find_terminal, find_voucher_type, find_commission_rate,
    transaction, rollback

SqlSettlementRepository is the production implementation. Any object with
the same methods (for example an in-memory double in tests) can be injected.

Claim semantics:
- A claim is ONE conditional UPDATE that flips status available -> sold only
  if the row is still available. There is no read-then-update window.
- Zero rows updated while available stock remains means another settlement
  won the race: ClaimConflict (retryable). No stock at all: OutOfStock.
- The candidate row is locked with a blocking FOR UPDATE (no SKIP LOCKED) on
  backends that support it, so a claim waits for an in-flight settlement on
  the same row and then sees its final status.
"""

from __future__ import annotations

import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError

from ..config import config_value
from ..extensions import db
from ..models import (
    Agent,
    CommissionGroup,
    CommissionGroupRate,
    LedgerTransaction,
    Retailer,
    Sale,
    Terminal,
    VoucherInventory,
    VoucherType,
)
from ..models.vouchers import UNIT_STATUS_AVAILABLE, UNIT_STATUS_SOLD
from ..time_utils import utcnow
from .concurrency import lock_for_update
from .errors import ClaimConflict, NotFoundError, OutOfStock, PersistenceFailure


@dataclass(frozen=True)
class ClaimedUnit:
    id: int
    voucher_type_id: int
    denomination_cents: int
    pin: str
    serial_number: str | None


@dataclass(frozen=True)
class RetailerSnapshot:
    id: int
    name: str
    agent_id: int | None
    commission_group_id: int | None
    balance_cents: int
    credit_limit_cents: int
    credit_used_cents: int
    commission_balance_cents: int


@dataclass(frozen=True)
class TerminalInfo:
    id: int
    name: str
    retailer_id: int


@dataclass(frozen=True)
class VoucherTypeInfo:
    id: int
    name: str
    supplier_commission_pct: Decimal | None


@dataclass(frozen=True)
class RateInfo:
    commission_group_id: int
    group_name: str
    retailer_pct: Decimal
    agent_pct: Decimal


@dataclass(frozen=True)
class SaleRecord:
    id: int
    ref_number: str
    created_at: datetime


def generate_ref_number(now: datetime | None = None) -> str:
    """REF-<UTC timestamp to the millisecond>-<8 random hex chars>."""
    now = now or utcnow()
    return f"REF-{now.strftime('%Y%m%d%H%M%S')}{now.microsecond // 1000:03d}-{secrets.token_hex(4).upper()}"


def claim_statement(voucher_type_id: int, denomination_cents: int):
    """Conditional UPDATE claiming the lowest-id available unit, returning its columns."""
    table = VoucherInventory.__table__
    candidate = (
        select(table.c.id)
        .where(
            table.c.voucher_type_id == voucher_type_id,
            table.c.denomination_cents == denomination_cents,
            table.c.status == UNIT_STATUS_AVAILABLE,
        )
        .order_by(table.c.id)
        .limit(1)
        .with_for_update()
        .scalar_subquery()
    )
    return (
        update(table)
        .where(table.c.id == candidate, table.c.status == UNIT_STATUS_AVAILABLE)
        .values(status=UNIT_STATUS_SOLD, sold_at=utcnow())
        .returning(
            table.c.id,
            table.c.voucher_type_id,
            table.c.denomination_cents,
            table.c.pin,
            table.c.serial_number,
        )
    )


def _to_claimed(row) -> ClaimedUnit:
    return ClaimedUnit(
        id=row.id,
        voucher_type_id=row.voucher_type_id,
        denomination_cents=row.denomination_cents,
        pin=row.pin,
        serial_number=row.serial_number,
    )


class SqlSettlementRepository:
    """Settlement capabilities over a SQLAlchemy session (Flask-SQLAlchemy's by default)."""

    def __init__(self, session=None):
        self.session = session or db.session
        self._retailers: dict[int, Retailer] = {}

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self):
        """
        One settlement = one transaction. Commit on success, roll back everything
        (claim included) on any exception.
        """
        if self.session.get_bind().dialect.name == "sqlite":
            # SQLite has no row locks: take the write lock up front so concurrent
            # settlements queue instead of failing on lock upgrade.
            self.session.execute(text("BEGIN IMMEDIATE"))
        try:
            yield self
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        finally:
            self._retailers.clear()

    def rollback(self) -> None:
        self.session.rollback()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_terminal(self, terminal_id: int) -> TerminalInfo | None:
        terminal = self.session.get(Terminal, terminal_id)
        if terminal is None:
            return None
        return TerminalInfo(id=terminal.id, name=terminal.name, retailer_id=terminal.retailer_id)

    def find_voucher_type(self, voucher_type_id: int) -> VoucherTypeInfo | None:
        voucher_type = self.session.get(VoucherType, voucher_type_id)
        if voucher_type is None:
            return None
        return VoucherTypeInfo(
            id=voucher_type.id,
            name=voucher_type.name,
            supplier_commission_pct=voucher_type.supplier_commission_pct,
        )

    def find_commission_rate(self, commission_group_id: int | None, voucher_type_id: int) -> RateInfo | None:
        if commission_group_id is None:
            return None
        row = (
            self.session.query(CommissionGroupRate, CommissionGroup.name)
            .join(CommissionGroup, CommissionGroup.id == CommissionGroupRate.commission_group_id)
            .filter(
                CommissionGroupRate.commission_group_id == commission_group_id,
                CommissionGroupRate.voucher_type_id == voucher_type_id,
            )
            .first()
        )
        if row is None:
            return None
        rate, group_name = row
        return RateInfo(
            commission_group_id=commission_group_id,
            group_name=group_name,
            retailer_pct=rate.retailer_pct,
            agent_pct=rate.agent_pct,
        )

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def claim_unit(self, voucher_type_id: int, denomination_cents: int) -> ClaimedUnit:
        """Atomically flip one available unit of (type, denomination) to sold."""
        row = self.session.execute(claim_statement(voucher_type_id, denomination_cents)).first()
        if row is not None:
            return _to_claimed(row)

        # Read after the row lock was released, so a unit sold by the
        # transaction we waited on no longer counts as available
        if self.count_available(voucher_type_id, denomination_cents):
            raise ClaimConflict(
                "Lost a concurrent claim for this denomination",
                details={"voucher_type_id": voucher_type_id, "denomination_cents": denomination_cents},
            )
        raise OutOfStock(
            "No vouchers available for this type and denomination",
            details={"voucher_type_id": voucher_type_id, "denomination_cents": denomination_cents},
        )

    def claim_unit_by_id(self, unit_id: int, voucher_type_id: int) -> ClaimedUnit:
        """Claim one specific unit; it must still be available and of the requested type."""
        table = VoucherInventory.__table__
        stmt = (
            update(table)
            .where(
                table.c.id == unit_id,
                table.c.voucher_type_id == voucher_type_id,
                table.c.status == UNIT_STATUS_AVAILABLE,
            )
            .values(status=UNIT_STATUS_SOLD, sold_at=utcnow())
            .returning(
                table.c.id,
                table.c.voucher_type_id,
                table.c.denomination_cents,
                table.c.pin,
                table.c.serial_number,
            )
        )
        row = self.session.execute(stmt).first()
        if row is None:
            raise OutOfStock(
                "Voucher is not available",
                details={"inventory_unit_id": unit_id, "voucher_type_id": voucher_type_id},
            )
        return _to_claimed(row)

    def insert_sold_unit(
        self,
        *,
        voucher_type_id: int,
        denomination_cents: int,
        pin: str,
        serial_number: str | None = None,
    ) -> ClaimedUnit:
        """Synthesize a unit that is sold from birth (bill payments, OTT vends)."""
        unit = VoucherInventory(
            voucher_type_id=voucher_type_id,
            denomination_cents=denomination_cents,
            pin=pin,
            serial_number=serial_number,
            status=UNIT_STATUS_SOLD,
            sold_at=utcnow(),
        )
        self.session.add(unit)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise PersistenceFailure(
                "Vendor code already recorded as a voucher pin",
                details={"pin": pin},
            ) from exc
        return ClaimedUnit(
            id=unit.id,
            voucher_type_id=unit.voucher_type_id,
            denomination_cents=unit.denomination_cents,
            pin=unit.pin,
            serial_number=unit.serial_number,
        )

    def count_available(self, voucher_type_id: int, denomination_cents: int) -> int:
        return (
            self.session.query(VoucherInventory)
            .filter_by(
                voucher_type_id=voucher_type_id,
                denomination_cents=denomination_cents,
                status=UNIT_STATUS_AVAILABLE,
            )
            .count()
        )

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def read_retailer_snapshot(self, retailer_id: int, *, lock: bool = True) -> RetailerSnapshot:
        query = self.session.query(Retailer).filter_by(id=retailer_id)
        if lock:
            query = lock_for_update(query)
        retailer = query.first()
        if retailer is None:
            raise NotFoundError("Retailer not found", details={"retailer_id": retailer_id})
        if lock:
            self._retailers[retailer_id] = retailer
        return RetailerSnapshot(
            id=retailer.id,
            name=retailer.name,
            agent_id=retailer.agent_id,
            commission_group_id=retailer.commission_group_id,
            balance_cents=retailer.balance_cents,
            credit_limit_cents=retailer.credit_limit_cents,
            credit_used_cents=retailer.credit_used_cents,
            commission_balance_cents=retailer.commission_balance_cents,
        )

    def apply_ledger_update(
        self,
        *,
        retailer_id: int,
        new_balance_cents: int,
        new_credit_used_cents: int,
        retailer_commission_cents: int = 0,
        agent_id: int | None = None,
        agent_commission_cents: int = 0,
        terminal_id: int | None = None,
    ) -> None:
        """
        Write the retailer's new balance state (plus agent commission and terminal
        activity). The retailer row must have been locked by read_retailer_snapshot
        in this transaction; version_id guards against a lost update regardless.
        """
        retailer = self._retailers.get(retailer_id)
        if retailer is None:
            retailer = lock_for_update(self.session.query(Retailer).filter_by(id=retailer_id)).first()
            if retailer is None:
                raise NotFoundError("Retailer not found", details={"retailer_id": retailer_id})

        retailer.balance_cents = new_balance_cents
        retailer.credit_used_cents = new_credit_used_cents
        retailer.commission_balance_cents = retailer.commission_balance_cents + retailer_commission_cents

        if agent_id is not None and agent_commission_cents:
            agent = lock_for_update(self.session.query(Agent).filter_by(id=agent_id)).first()
            if agent is None:
                raise NotFoundError("Agent not found", details={"agent_id": agent_id})
            agent.commission_balance_cents = agent.commission_balance_cents + agent_commission_cents

        if terminal_id is not None:
            self.session.execute(
                update(Terminal.__table__)
                .where(Terminal.__table__.c.id == terminal_id)
                .values(last_active_at=utcnow())
            )

        self.session.flush()

    def insert_sale(
        self,
        *,
        voucher_inventory_id: int,
        terminal_id: int,
        retailer_id: int,
        sale_amount_cents: int,
        supplier_commission_cents: int,
        retailer_commission_cents: int,
        agent_commission_cents: int,
        profit_cents: int,
    ) -> SaleRecord:
        ref_number = self._unused_ref_number()
        created_at = utcnow()
        sale = Sale(
            voucher_inventory_id=voucher_inventory_id,
            terminal_id=terminal_id,
            retailer_id=retailer_id,
            sale_amount_cents=sale_amount_cents,
            supplier_commission_cents=supplier_commission_cents,
            retailer_commission_cents=retailer_commission_cents,
            agent_commission_cents=agent_commission_cents,
            profit_cents=profit_cents,
            ref_number=ref_number,
            created_at=created_at,
        )
        self.session.add(sale)
        self.session.flush()
        return SaleRecord(id=sale.id, ref_number=ref_number, created_at=created_at)

    def insert_transaction(
        self,
        *,
        retailer_id: int,
        type: str,
        amount_cents: int,
        balance_after_cents: int,
        credit_used_after_cents: int,
        notes: str | None = None,
        sale_id: int | None = None,
        agent_id: int | None = None,
    ) -> int:
        tx = LedgerTransaction(
            retailer_id=retailer_id,
            agent_id=agent_id,
            sale_id=sale_id,
            type=type,
            amount_cents=amount_cents,
            balance_after_cents=balance_after_cents,
            credit_used_after_cents=credit_used_after_cents,
            notes=notes[:255] if notes else None,
            created_at=utcnow(),
        )
        self.session.add(tx)
        self.session.flush()
        return tx.id

    def _unused_ref_number(self) -> str:
        # The unique constraint on sales.ref_number is the final guard; this only
        # avoids burning a whole settlement on an astronomically unlikely collision.
        attempts = int(config_value("REF_NUMBER_RETRY_ATTEMPTS", 3))
        for _ in range(max(attempts, 1)):
            ref_number = generate_ref_number()
            taken = self.session.query(Sale.id).filter_by(ref_number=ref_number).first()
            if taken is None:
                return ref_number
        raise PersistenceFailure("Could not allocate a unique sale reference number")
