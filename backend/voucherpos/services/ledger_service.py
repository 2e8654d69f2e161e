# Overview: Balance-then-credit waterfall for retailer settlements.

from __future__ import annotations

from dataclasses import dataclass

from .errors import InsufficientFunds, SettlementValidationError
"""
Retailer Ledger Invariants (authoritative)

- A sale is paid from the prepaid balance first, then from available credit.
- When credit is touched the balance is fully consumed; the retailer
  commission on the sale is then the whole new balance.
- After every settlement: balance >= 0 and 0 <= credit_used <= credit_limit.
- The waterfall is pure; the caller applies its result inside the settlement
  transaction together with the LedgerTransaction row.
"""


@dataclass(frozen=True)
class WaterfallResult:
    new_balance_cents: int
    new_credit_used_cents: int
    amount_from_credit_cents: int


def apply_waterfall(
    *,
    balance_cents: int,
    credit_limit_cents: int,
    credit_used_cents: int,
    sale_amount_cents: int,
    commission_credit_cents: int,
) -> WaterfallResult:
    """
    Compute the retailer's balance/credit state after paying sale_amount.

    Raises InsufficientFunds when balance + available credit is below the sale
    amount; nothing is mutated in that case (nothing is mutated ever, the
    function is pure).
    """
    if sale_amount_cents <= 0:
        raise SettlementValidationError("sale_amount_cents must be positive")
    if commission_credit_cents < 0:
        raise SettlementValidationError("commission_credit_cents may not be negative")

    available_credit = credit_limit_cents - credit_used_cents
    total_available = balance_cents + available_credit

    if total_available < sale_amount_cents:
        raise InsufficientFunds(
            "Insufficient balance and credit for this sale",
            details={
                "balance_cents": balance_cents,
                "available_credit_cents": available_credit,
                "sale_amount_cents": sale_amount_cents,
                "shortfall_cents": sale_amount_cents - total_available,
            },
        )

    if balance_cents >= sale_amount_cents:
        return WaterfallResult(
            new_balance_cents=balance_cents - sale_amount_cents + commission_credit_cents,
            new_credit_used_cents=credit_used_cents,
            amount_from_credit_cents=0,
        )

    amount_from_credit = sale_amount_cents - balance_cents
    return WaterfallResult(
        new_balance_cents=commission_credit_cents,
        new_credit_used_cents=credit_used_cents + amount_from_credit,
        amount_from_credit_cents=amount_from_credit,
    )


def format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"


def sale_notes(*, sale_amount_cents: int, terminal_name: str, product_name: str, waterfall: WaterfallResult) -> str:
    """Audit note for the sale's LedgerTransaction row."""
    note = f"Voucher sale of {format_cents(sale_amount_cents)} ({product_name}) via terminal {terminal_name}"
    if waterfall.amount_from_credit_cents:
        note += f"; {format_cents(waterfall.amount_from_credit_cents)} from credit"
    return note
