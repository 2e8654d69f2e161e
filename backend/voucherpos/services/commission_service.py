# Overview: Commission split math and commission-rate configuration.

"""
Commission calculation

Rate convention (authoritative):
- Internally every rate is a Decimal fraction on a 0-1 scale.
- VoucherType.supplier_commission_pct is stored on a 0-100 scale and is
  converted exactly once, in CommissionRates.from_config.
- CommissionGroupRate.retailer_pct / agent_pct are stored as 0-1 fractions
  and are shares of the supplier commission, not of the sale amount.

Money is integer cents. Each commission is rounded half-up to the cent and
profit is derived from the rounded figures, so
    profit = supplier - retailer - agent
holds exactly for every sale.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from ..extensions import db
from ..models import CommissionGroup, CommissionGroupRate, Retailer, Terminal, VoucherType
from .errors import RateNotConfigured, SettlementValidationError, NotFoundError

ONE_HUNDRED = Decimal("100")
ZERO = Decimal("0")
ONE = Decimal("1")


def to_decimal(value, *, field: str = "rate") -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise SettlementValidationError(f"{field} must be a number")
    try:
        # str() first so floats like 0.07 do not carry binary noise
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise SettlementValidationError(f"{field} must be a number")


def round_cents(value: Decimal) -> int:
    return int(value.quantize(ONE, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CommissionRates:
    supplier_rate: Decimal
    retailer_rate: Decimal | None
    agent_rate: Decimal | None

    @classmethod
    def from_config(cls, *, supplier_commission_pct, retailer_pct, agent_pct) -> "CommissionRates":
        """Build rates from configuration values (supplier on 0-100, shares on 0-1)."""
        if supplier_commission_pct is None:
            raise RateNotConfigured("Supplier commission is not configured for this voucher type")
        return cls(
            supplier_rate=to_decimal(supplier_commission_pct, field="supplier_commission_pct") / ONE_HUNDRED,
            retailer_rate=None if retailer_pct is None else to_decimal(retailer_pct, field="retailer_pct"),
            agent_rate=None if agent_pct is None else to_decimal(agent_pct, field="agent_pct"),
        )

    def require_shares(self) -> None:
        if self.retailer_rate is None or self.agent_rate is None:
            raise RateNotConfigured(
                "Commission rate not found for this voucher type",
                details={
                    "retailer_pct_missing": self.retailer_rate is None,
                    "agent_pct_missing": self.agent_rate is None,
                },
            )


@dataclass(frozen=True)
class CommissionBreakdown:
    sale_amount_cents: int
    supplier_commission_cents: int
    retailer_commission_cents: int
    agent_commission_cents: int
    profit_cents: int

    def to_dict(self) -> dict:
        return {
            "sale_amount_cents": self.sale_amount_cents,
            "supplier_commission_cents": self.supplier_commission_cents,
            "retailer_commission_cents": self.retailer_commission_cents,
            "agent_commission_cents": self.agent_commission_cents,
            "profit_cents": self.profit_cents,
        }


def calculate_commission(sale_amount_cents: int, rates: CommissionRates) -> CommissionBreakdown:
    """
    Split the supplier commission on one sale between retailer, agent and platform.

    Pure and deterministic. Missing retailer/agent shares raise
    RateNotConfigured; they are never treated as zero. Share sanity (sum <= 1)
    is enforced when rates are configured, not here.
    """
    if isinstance(sale_amount_cents, bool) or not isinstance(sale_amount_cents, int):
        raise SettlementValidationError("sale_amount_cents must be an integer")
    if sale_amount_cents <= 0:
        raise SettlementValidationError("sale_amount_cents must be positive")
    rates.require_shares()

    supplier = round_cents(Decimal(sale_amount_cents) * rates.supplier_rate)
    retailer = round_cents(Decimal(supplier) * rates.retailer_rate)
    agent = round_cents(Decimal(supplier) * rates.agent_rate)

    return CommissionBreakdown(
        sale_amount_cents=sale_amount_cents,
        supplier_commission_cents=supplier,
        retailer_commission_cents=retailer,
        agent_commission_cents=agent,
        profit_cents=supplier - retailer - agent,
    )


# =============================================================================
# CONFIGURATION
# =============================================================================

def validate_group_shares(retailer_pct, agent_pct) -> tuple[Decimal, Decimal]:
    """
    Reject insane commission shares at configuration time.

    Each share must be within 0-1 and together they may not exceed the whole
    supplier commission.
    """
    retailer = to_decimal(retailer_pct, field="retailer_pct")
    agent = to_decimal(agent_pct, field="agent_pct")

    for name, value in (("retailer_pct", retailer), ("agent_pct", agent)):
        if value < ZERO or value > ONE:
            raise SettlementValidationError(f"{name} must be between 0 and 1", details={name: str(value)})

    if retailer + agent > ONE:
        raise SettlementValidationError(
            "retailer_pct + agent_pct may not exceed 1",
            details={"retailer_pct": str(retailer), "agent_pct": str(agent)},
        )
    return retailer, agent


def set_group_rate(commission_group_id: int, voucher_type_id: int, retailer_pct, agent_pct) -> CommissionGroupRate:
    """Create or replace the rate for one (commission group, voucher type) pair."""
    retailer, agent = validate_group_shares(retailer_pct, agent_pct)

    if db.session.get(CommissionGroup, commission_group_id) is None:
        raise NotFoundError("Commission group not found", details={"commission_group_id": commission_group_id})
    if db.session.get(VoucherType, voucher_type_id) is None:
        raise NotFoundError("Voucher type not found", details={"voucher_type_id": voucher_type_id})

    rate = (
        db.session.query(CommissionGroupRate)
        .filter_by(commission_group_id=commission_group_id, voucher_type_id=voucher_type_id)
        .first()
    )
    if rate is None:
        rate = CommissionGroupRate(commission_group_id=commission_group_id, voucher_type_id=voucher_type_id)
        db.session.add(rate)

    rate.retailer_pct = retailer
    rate.agent_pct = agent
    db.session.commit()
    return rate


def set_supplier_commission_pct(voucher_type_id: int, supplier_commission_pct) -> VoucherType:
    pct = to_decimal(supplier_commission_pct, field="supplier_commission_pct")
    if pct < ZERO or pct > ONE_HUNDRED:
        raise SettlementValidationError("supplier_commission_pct must be between 0 and 100")

    voucher_type = db.session.get(VoucherType, voucher_type_id)
    if voucher_type is None:
        raise NotFoundError("Voucher type not found", details={"voucher_type_id": voucher_type_id})

    voucher_type.supplier_commission_pct = pct
    db.session.commit()
    return voucher_type


def estimate_commission(terminal_id: int, voucher_type_id: int, value_cents: int) -> dict:
    """
    Commission preview for a terminal's retailer, using the same calculator
    the settlement engine uses. Read-only.
    """
    terminal = db.session.get(Terminal, terminal_id)
    if terminal is None:
        raise NotFoundError("Terminal not found", details={"terminal_id": terminal_id})
    voucher_type = db.session.get(VoucherType, voucher_type_id)
    if voucher_type is None:
        raise NotFoundError("Voucher type not found", details={"voucher_type_id": voucher_type_id})

    retailer = db.session.get(Retailer, terminal.retailer_id)
    row = (
        db.session.query(CommissionGroupRate, CommissionGroup.name)
        .join(CommissionGroup, CommissionGroup.id == CommissionGroupRate.commission_group_id)
        .filter(
            CommissionGroupRate.commission_group_id == retailer.commission_group_id,
            CommissionGroupRate.voucher_type_id == voucher_type_id,
        )
        .first()
    )
    if row is None:
        raise RateNotConfigured(
            "Commission rate not found for this voucher type",
            details={"retailer_id": retailer.id, "voucher_type_id": voucher_type_id},
        )
    rate, group_name = row

    breakdown = calculate_commission(
        value_cents,
        CommissionRates.from_config(
            supplier_commission_pct=voucher_type.supplier_commission_pct,
            retailer_pct=rate.retailer_pct,
            agent_pct=rate.agent_pct,
        ),
    )
    return {
        "terminal_id": terminal.id,
        "retailer_id": retailer.id,
        "voucher_type_id": voucher_type.id,
        "group_name": group_name,
        "retailer_rate": str(rate.retailer_pct),
        "agent_rate": str(rate.agent_pct),
        "commission": breakdown.to_dict(),
    }
