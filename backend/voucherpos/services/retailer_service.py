# Overview: Retailer account operations (deposits, adjustments, credit limit, account summary).

from __future__ import annotations

import logging

from ..extensions import db
from ..models import LedgerTransaction, Retailer, Terminal
from ..models.sales import TRANSACTION_TYPE_ADJUSTMENT, TRANSACTION_TYPE_DEPOSIT
from .concurrency import lock_for_update, run_with_retry
from .errors import NotFoundError, SettlementError, SettlementValidationError
from .ledger_service import format_cents
from .settlement_repository import SqlSettlementRepository

logger = logging.getLogger(__name__)

VALID_ADJUSTMENT_KINDS = (TRANSACTION_TYPE_DEPOSIT, TRANSACTION_TYPE_ADJUSTMENT)


def _validate_amount(amount_cents) -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise SettlementValidationError("amount_cents must be an integer")
    if amount_cents == 0:
        raise SettlementValidationError("amount_cents must be non-zero")
    return amount_cents


def adjust_balance(
    retailer_id: int,
    amount_cents: int,
    *,
    kind: str = TRANSACTION_TYPE_DEPOSIT,
    notes: str | None = None,
    repo=None,
) -> dict:
    """
    Move money into (or, for adjustments, out of) a retailer's account.

    A deposit is positive and repays outstanding credit before it adds to the
    balance. An adjustment is signed and only touches the balance, which may
    not go negative. Both write one ledger transaction under the same retailer
    lock the settlement engine uses.
    """
    amount_cents = _validate_amount(amount_cents)
    if kind not in VALID_ADJUSTMENT_KINDS:
        raise SettlementValidationError(f"Invalid adjustment kind: {kind}")
    if kind == TRANSACTION_TYPE_DEPOSIT and amount_cents < 0:
        raise SettlementValidationError("Deposits must be positive")

    repo = repo or SqlSettlementRepository()

    def _op():
        with repo.transaction():
            retailer = repo.read_retailer_snapshot(retailer_id)

            if kind == TRANSACTION_TYPE_DEPOSIT:
                repaid = min(amount_cents, retailer.credit_used_cents)
                new_credit_used = retailer.credit_used_cents - repaid
                new_balance = retailer.balance_cents + (amount_cents - repaid)
            else:
                new_credit_used = retailer.credit_used_cents
                new_balance = retailer.balance_cents + amount_cents
                if new_balance < 0:
                    raise SettlementValidationError(
                        "Adjustment would make the balance negative",
                        details={"balance_cents": retailer.balance_cents, "amount_cents": amount_cents},
                    )

            repo.apply_ledger_update(
                retailer_id=retailer.id,
                new_balance_cents=new_balance,
                new_credit_used_cents=new_credit_used,
            )
            tx_id = repo.insert_transaction(
                retailer_id=retailer.id,
                type=kind,
                amount_cents=amount_cents,
                balance_after_cents=new_balance,
                credit_used_after_cents=new_credit_used,
                notes=notes or f"{kind.capitalize()} of {format_cents(amount_cents)}",
                agent_id=retailer.agent_id,
            )
            return {
                "transaction_id": tx_id,
                "retailer_id": retailer.id,
                "type": kind,
                "amount_cents": amount_cents,
                "balance_cents": new_balance,
                "credit_used_cents": new_credit_used,
            }

    result = run_with_retry(_op, rollback=repo.rollback)
    logger.info("Retailer %s %s of %s cents", retailer_id, kind, amount_cents)
    return result


def set_credit_limit(retailer_id: int, credit_limit_cents: int) -> Retailer:
    if isinstance(credit_limit_cents, bool) or not isinstance(credit_limit_cents, int) or credit_limit_cents < 0:
        raise SettlementValidationError("credit_limit_cents must be a non-negative integer")

    def _op():
        retailer = lock_for_update(db.session.query(Retailer).filter_by(id=retailer_id)).first()
        if retailer is None:
            raise NotFoundError("Retailer not found", details={"retailer_id": retailer_id})
        if credit_limit_cents < retailer.credit_used_cents:
            raise SettlementValidationError(
                "Credit limit cannot be below credit already used",
                details={"credit_used_cents": retailer.credit_used_cents},
            )
        retailer.credit_limit_cents = credit_limit_cents
        db.session.commit()
        return retailer

    try:
        return run_with_retry(_op)
    except SettlementError:
        db.session.rollback()
        raise


def account_summary(retailer_id: int, *, limit: int = 20) -> dict:
    retailer = db.session.get(Retailer, retailer_id)
    if retailer is None:
        raise NotFoundError("Retailer not found", details={"retailer_id": retailer_id})

    transactions = (
        db.session.query(LedgerTransaction)
        .filter_by(retailer_id=retailer_id)
        .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc())
        .limit(limit)
        .all()
    )
    terminals = db.session.query(Terminal).filter_by(retailer_id=retailer_id).order_by(Terminal.id).all()

    payload = retailer.to_dict()
    payload["terminals"] = [t.to_dict() for t in terminals]
    payload["recent_transactions"] = [tx.to_dict() for tx in transactions]
    return payload


def list_retailers() -> list[Retailer]:
    return db.session.query(Retailer).order_by(Retailer.name.asc()).all()
