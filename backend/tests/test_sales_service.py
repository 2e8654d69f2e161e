from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from voucherpos.models import (
    Agent,
    CommissionGroupRate,
    LedgerTransaction,
    Retailer,
    Sale,
    Terminal,
    VoucherInventory,
    VoucherType,
)
from voucherpos.services import sales_service
from voucherpos.services.errors import (
    InsufficientFunds,
    NotFoundError,
    PersistenceFailure,
    RateNotConfigured,
)
from voucherpos.services.settlement_repository import SqlSettlementRepository, generate_ref_number
from voucherpos.time_utils import utcnow


def sell(world, **overrides):
    kwargs = {
        "terminal_id": world.terminal_id,
        "voucher_type_id": world.voucher_type_id,
        "denomination_cents": world.denomination_cents,
    }
    kwargs.update(overrides)
    return sales_service.complete_voucher_sale(**kwargs)


def unit_statuses(session, voucher_type_id):
    return sorted(
        u.status for u in session.query(VoucherInventory).filter_by(voucher_type_id=voucher_type_id).all()
    )


def test_voucher_sale_is_persisted_atomically(db_session, world):
    result = sell(world)
    assert result.ok, result.error

    sale = db_session.get(Sale, result.sale_id)
    assert sale.sale_amount_cents == 1_000
    assert sale.supplier_commission_cents == 50
    assert sale.retailer_commission_cents == 25
    assert sale.agent_commission_cents == 5
    assert sale.profit_cents == 20
    assert sale.ref_number == result.receipt.ref_number

    unit = db_session.get(VoucherInventory, sale.voucher_inventory_id)
    assert unit.status == "sold"
    assert unit.sold_at is not None
    assert unit.pin == result.voucher_code

    retailer = db_session.get(Retailer, world.retailer_id)
    assert retailer.balance_cents == 9_025
    assert retailer.commission_balance_cents == 25
    assert db_session.get(Agent, world.agent_id).commission_balance_cents == 5
    assert db_session.get(Terminal, world.terminal_id).last_active_at is not None

    tx = db_session.query(LedgerTransaction).filter_by(sale_id=sale.id).one()
    assert tx.type == "sale"
    assert tx.amount_cents == 1_000
    assert tx.balance_after_cents == 9_025


def test_each_sale_claims_a_distinct_unit(db_session, world):
    pins = {sell(world).voucher_code for _ in range(3)}
    assert len(pins) == 3

    fourth = sell(world)
    assert fourth.error.code == "OUT_OF_STOCK"
    assert db_session.query(Sale).count() == 3


def test_missing_rate_performs_no_mutation(db_session, world):
    db_session.query(CommissionGroupRate).delete()
    db_session.commit()

    result = sell(world)

    assert isinstance(result.error, RateNotConfigured)
    assert unit_statuses(db_session, world.voucher_type_id) == ["available"] * 3
    assert db_session.query(Sale).count() == 0
    assert db_session.query(LedgerTransaction).count() == 0
    assert db_session.get(Retailer, world.retailer_id).balance_cents == 10_000


def test_failed_persistence_returns_unit_to_available(db_session, world, monkeypatch):
    def broken_insert(self, **kwargs):
        raise IntegrityError("INSERT INTO ledger_transactions", {}, Exception("disk full"))

    monkeypatch.setattr(SqlSettlementRepository, "insert_transaction", broken_insert)

    result = sell(world)

    assert isinstance(result.error, PersistenceFailure)
    db_session.expire_all()
    assert unit_statuses(db_session, world.voucher_type_id) == ["available"] * 3
    assert db_session.query(Sale).count() == 0
    retailer = db_session.get(Retailer, world.retailer_id)
    assert retailer.balance_cents == 10_000
    assert retailer.commission_balance_cents == 0


def test_insufficient_funds_leaves_state_unchanged(db_session, world):
    retailer = db_session.get(Retailer, world.retailer_id)
    retailer.balance_cents = 100
    retailer.credit_limit_cents = 200
    db_session.commit()
    before = retailer.to_dict()

    result = sell(world)

    assert isinstance(result.error, InsufficientFunds)
    db_session.expire_all()
    assert db_session.get(Retailer, world.retailer_id).to_dict() == before
    assert unit_statuses(db_session, world.voucher_type_id) == ["available"] * 3


def test_credit_is_drawn_after_balance(db_session, world):
    retailer = db_session.get(Retailer, world.retailer_id)
    retailer.balance_cents = 400
    db_session.commit()

    result = sell(world)

    assert result.ok
    retailer = db_session.get(Retailer, world.retailer_id)
    assert retailer.credit_used_cents == 600
    assert retailer.balance_cents == 25
    assert retailer.available_credit_cents == 4_400


def test_synthesized_sale_inserts_sold_unit(db_session, world):
    electricity = VoucherType(name="Prepaid Electricity", supplier_commission_pct=None)
    db_session.add(electricity)
    db_session.flush()
    db_session.add(CommissionGroupRate(
        commission_group_id=world.group_id,
        voucher_type_id=electricity.id,
        retailer_pct=Decimal("0.4"),
        agent_pct=Decimal("0.1"),
    ))
    db_session.commit()

    result = sales_service.complete_synthesized_sale(
        terminal_id=world.terminal_id,
        voucher_type_id=electricity.id,
        sale_amount_cents=5_000,
        pin="5555-1111-2222-3333-4444",
        serial_number="METER-01",
    )

    assert result.ok, result.error
    sale = db_session.get(Sale, result.sale_id)
    # 2.50% fallback supplier commission
    assert sale.supplier_commission_cents == 125
    assert sale.retailer_commission_cents == 50
    unit = db_session.get(VoucherInventory, sale.voucher_inventory_id)
    assert unit.status == "sold"
    assert unit.denomination_cents == 5_000


def test_synthesized_sale_duplicate_vendor_code(db_session, world):
    result = sales_service.complete_synthesized_sale(
        terminal_id=world.terminal_id,
        voucher_type_id=world.voucher_type_id,
        sale_amount_cents=1_000,
        pin="PIN000000",
    )
    assert isinstance(result.error, PersistenceFailure)
    assert db_session.query(VoucherInventory).count() == 3


def test_receipt_reprint_matches_original(db_session, world):
    result = sell(world)
    reprint = sales_service.get_receipt(result.sale_id)
    assert reprint == result.receipt


def test_receipt_for_unknown_sale(db_session, world):
    with pytest.raises(NotFoundError):
        sales_service.get_receipt(123456)


def test_sales_history_newest_first_with_date_range(db_session, world):
    first = sell(world)
    second = sell(world)

    history = sales_service.sales_history(terminal_id=world.terminal_id)
    assert [row["id"] for row in history] == [second.sale_id, first.sale_id]
    assert history[0]["voucher_type"] == "MTN Airtime"
    assert history[0]["pin"] == second.voucher_code

    future = utcnow() + timedelta(days=1)
    assert sales_service.sales_history(retailer_id=world.retailer_id, start=future) == []
    assert len(sales_service.sales_history(retailer_id=world.retailer_id, end=future)) == 2


def test_ref_number_format():
    ref = generate_ref_number()
    prefix, stamp, suffix = ref.split("-")
    assert prefix == "REF"
    assert len(stamp) == 17 and stamp.isdigit()
    assert len(suffix) == 8
