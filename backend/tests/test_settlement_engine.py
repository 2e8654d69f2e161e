"""
Settlement engine tests against the in-memory repository: no database, no app.
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from fakes import InMemorySettlementRepository
from voucherpos.services import sales_service
from voucherpos.services.concurrency import run_with_retry
from voucherpos.services.errors import (
    ClaimConflict,
    InsufficientFunds,
    NotFoundError,
    OutOfStock,
    PersistenceFailure,
    RateNotConfigured,
    SettlementValidationError,
)


@pytest.fixture
def repo():
    repo = InMemorySettlementRepository()
    repo.agent_id = repo.add_agent()
    repo.voucher_type_id = repo.add_voucher_type("MTN Airtime", supplier_commission_pct="5.000")
    repo.set_rate(1, repo.voucher_type_id, "0.5", "0.1")
    repo.retailer_id = repo.add_retailer(
        "Corner Cafe", balance_cents=10_000, credit_limit_cents=5_000, agent_id=repo.agent_id
    )
    repo.terminal_id = repo.add_terminal(repo.retailer_id)
    for idx in range(3):
        repo.add_unit(repo.voucher_type_id, 1_000, f"PIN{idx}", f"SN{idx}")
    return repo


def sell(repo, **overrides):
    kwargs = {
        "terminal_id": repo.terminal_id,
        "voucher_type_id": repo.voucher_type_id,
        "denomination_cents": 1_000,
        "repo": repo,
    }
    kwargs.update(overrides)
    return sales_service.complete_voucher_sale(**kwargs)


def test_sale_settles_commission_ledger_and_receipt(repo):
    result = sell(repo)

    assert result.ok
    assert result.error is None
    assert result.voucher_code == "PIN0"
    assert result.serial_number == "SN0"

    retailer = repo.retailers[repo.retailer_id]
    # 10000 - 1000 + 25 retailer commission
    assert retailer["balance_cents"] == 9_025
    assert retailer["credit_used_cents"] == 0
    assert retailer["commission_balance_cents"] == 25
    assert repo.agents[repo.agent_id]["commission_balance_cents"] == 5

    assert len(repo.sales) == 1
    sale = repo.sales[0]
    assert sale["supplier_commission_cents"] == 50
    assert sale["profit_cents"] == 20

    assert len(repo.transactions) == 1
    tx = repo.transactions[0]
    assert tx["type"] == "sale"
    assert tx["sale_id"] == result.sale_id
    assert tx["balance_after_cents"] == 9_025

    receipt = result.receipt
    assert receipt.ref_number.startswith("REF-")
    assert receipt.retailer_name == "Corner Cafe"
    assert receipt.terminal_name == "Till 1"
    assert receipt.retailer_commission_cents == 25
    assert receipt.agent_commission_cents == 5
    assert "*136*" in receipt.redemption_instructions
    assert repo.available_count(repo.voucher_type_id, 1_000) == 2


def test_sale_draws_shortfall_from_credit(repo):
    repo.retailers[repo.retailer_id]["balance_cents"] = 300

    result = sell(repo)

    assert result.ok
    retailer = repo.retailers[repo.retailer_id]
    assert retailer["credit_used_cents"] == 700
    assert retailer["balance_cents"] == 25
    assert "from credit" in repo.transactions[0]["notes"]


def test_missing_rate_fails_without_any_mutation(repo):
    repo.rates.clear()
    before = (dict(repo.retailers[repo.retailer_id]), {k: dict(v) for k, v in repo.units.items()})

    result = sell(repo)

    assert not result.ok
    assert isinstance(result.error, RateNotConfigured)
    assert result.receipt is None
    assert repo.claim_calls == 0
    assert (repo.retailers[repo.retailer_id], repo.units) == before
    assert repo.sales == [] and repo.transactions == []


def test_persistence_failure_releases_the_claimed_unit(repo):
    repo.failures["insert_transaction"] = IntegrityError("INSERT INTO ledger_transactions", {}, Exception("boom"))

    result = sell(repo)

    assert isinstance(result.error, PersistenceFailure)
    assert result.error.details["stage"] == "persisting"
    assert repo.available_count(repo.voucher_type_id, 1_000) == 3
    assert repo.sales == []
    assert repo.retailers[repo.retailer_id]["balance_cents"] == 10_000


def test_lock_errors_are_retried_then_reported(repo):
    repo.failures["insert_sale"] = OperationalError("INSERT INTO sales", {}, Exception("database is locked"))

    result = sell(repo)

    assert isinstance(result.error, PersistenceFailure)
    assert repo.claim_calls == 3
    assert repo.available_count(repo.voucher_type_id, 1_000) == 3


def test_insufficient_funds_releases_unit_and_leaves_retailer_untouched(repo):
    repo.retailers[repo.retailer_id].update(balance_cents=200, credit_limit_cents=500)
    before = dict(repo.retailers[repo.retailer_id])

    result = sell(repo)

    assert isinstance(result.error, InsufficientFunds)
    assert result.error.details["stage"] == "waterfalling"
    assert repo.retailers[repo.retailer_id] == before
    assert repo.available_count(repo.voucher_type_id, 1_000) == 3


def test_claim_conflicts_are_retried_transparently(repo):
    repo.pending_conflicts = 2

    result = sell(repo)

    assert result.ok
    assert repo.claim_calls == 3


def test_claim_conflict_surfaces_after_configured_attempts(repo):
    repo.pending_conflicts = 10

    result = sell(repo)

    assert isinstance(result.error, ClaimConflict)
    assert repo.claim_calls == 3


def test_out_of_stock(repo):
    result = sell(repo, denomination_cents=5_000)

    assert isinstance(result.error, OutOfStock)
    assert result.to_dict()["code"] == "OUT_OF_STOCK"


def test_last_unit_sold_by_a_waiting_transaction_is_out_of_stock(repo):
    unit_id = repo.add_unit(repo.voucher_type_id, 2_000, "PIN-LAST")
    repo.lock_unit(unit_id, commits_as="sold")

    result = sell(repo, denomination_cents=2_000)

    assert isinstance(result.error, OutOfStock)
    assert repo.claim_calls == 1
    assert repo.available_count(repo.voucher_type_id, 2_000) == 0
    assert repo.retailers[repo.retailer_id]["balance_cents"] == 10_000


def test_unit_released_by_a_rolled_back_transaction_can_be_sold(repo):
    unit_id = repo.add_unit(repo.voucher_type_id, 2_000, "PIN-LAST")
    repo.lock_unit(unit_id, commits_as="available")

    result = sell(repo, denomination_cents=2_000)

    assert result.ok
    assert result.voucher_code == "PIN-LAST"
    assert repo.claim_calls == 1


def test_sell_specific_unit(repo):
    unit_id = max(repo.units)
    result = sell(repo, denomination_cents=None, inventory_unit_id=unit_id)

    assert result.ok
    assert repo.units[unit_id]["status"] == "sold"

    again = sell(repo, denomination_cents=None, inventory_unit_id=unit_id)
    assert isinstance(again.error, OutOfStock)


def test_unknown_terminal(repo):
    result = sell(repo, terminal_id=999)
    assert isinstance(result.error, NotFoundError)


def test_invalid_channel_is_rejected(repo):
    result = sell(repo, channel="fax")
    assert isinstance(result.error, SettlementValidationError)


def test_complete_sale_with_supplied_rates(repo):
    result = sales_service.complete_sale(
        retailer_id=repo.retailer_id,
        terminal_id=repo.terminal_id,
        voucher_type_id=repo.voucher_type_id,
        denomination_cents=1_000,
        sale_amount_cents=2_000,
        retailer_pct="0.2",
        agent_pct="0",
        channel=sales_service.CHANNEL_CASHIER,
        repo=repo,
    )

    assert result.ok
    sale = repo.sales[0]
    assert sale["sale_amount_cents"] == 2_000
    assert sale["supplier_commission_cents"] == 100
    assert sale["retailer_commission_cents"] == 20
    assert sale["agent_commission_cents"] == 0


def test_complete_sale_without_shares_is_rate_not_configured(repo):
    result = sales_service.complete_sale(
        retailer_id=repo.retailer_id,
        terminal_id=repo.terminal_id,
        voucher_type_id=repo.voucher_type_id,
        denomination_cents=1_000,
        retailer_pct=None,
        agent_pct="0.1",
        repo=repo,
    )
    assert isinstance(result.error, RateNotConfigured)
    assert repo.claim_calls == 0


def test_complete_sale_terminal_must_belong_to_retailer(repo):
    other = repo.add_retailer("Other Shop", balance_cents=10_000)
    result = sales_service.complete_sale(
        retailer_id=other,
        terminal_id=repo.terminal_id,
        voucher_type_id=repo.voucher_type_id,
        denomination_cents=1_000,
        retailer_pct="0.5",
        agent_pct="0.1",
        repo=repo,
    )
    assert isinstance(result.error, SettlementValidationError)
    assert repo.available_count(repo.voucher_type_id, 1_000) == 3


def test_synthesized_sale_uses_fallback_supplier_rate(repo):
    electricity = repo.add_voucher_type("Prepaid Electricity", supplier_commission_pct=None)
    repo.set_rate(1, electricity, "0.5", "0.1")

    result = sales_service.complete_synthesized_sale(
        terminal_id=repo.terminal_id,
        voucher_type_id=electricity,
        sale_amount_cents=10_000,
        pin="1234-5678-9012-3456-7890",
        repo=repo,
    )

    assert result.ok
    assert result.voucher_code == "1234-5678-9012-3456-7890"
    sale = repo.sales[0]
    # fallback 2.50%
    assert sale["supplier_commission_cents"] == 250
    assert sale["retailer_commission_cents"] == 125
    assert sale["agent_commission_cents"] == 25
    unit = repo.units[sale["voucher_inventory_id"]]
    assert unit["status"] == "sold"
    assert "token" in result.receipt.redemption_instructions


def test_synthesized_sale_failure_leaves_no_unit(repo):
    repo.retailers[repo.retailer_id].update(balance_cents=0, credit_limit_cents=0)
    units_before = set(repo.units)

    result = sales_service.complete_synthesized_sale(
        terminal_id=repo.terminal_id,
        voucher_type_id=repo.voucher_type_id,
        sale_amount_cents=5_000,
        pin="OTT-0001",
        channel=sales_service.CHANNEL_OTT,
        repo=repo,
    )

    assert isinstance(result.error, InsufficientFunds)
    assert set(repo.units) == units_before


def test_result_envelope_carries_success_xor_error(repo):
    ok = sell(repo)
    payload = ok.to_dict()
    assert set(payload) == {"sale_id", "voucher_code", "serial_number", "receipt"}

    repo.rates.clear()
    failed = sell(repo)
    payload = failed.to_dict()
    assert payload["code"] == "RATE_NOT_CONFIGURED"
    assert "receipt" not in payload


def test_retry_uses_the_injected_rollback_without_a_session(caplog):
    rollbacks = []
    outcomes = [OperationalError("UPDATE", {}, Exception("database is locked")), "settled"]

    def op():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    with caplog.at_level("WARNING", logger="voucherpos.services.concurrency"):
        assert run_with_retry(op, backoff_base=0, rollback=lambda: rollbacks.append(1)) == "settled"

    assert rollbacks == [1]
    assert "attempt 1 of 3" in caplog.text
