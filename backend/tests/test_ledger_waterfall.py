import pytest

from voucherpos.services.errors import InsufficientFunds
from voucherpos.services.ledger_service import apply_waterfall, format_cents, sale_notes


def waterfall(balance, limit, used, sale, commission):
    return apply_waterfall(
        balance_cents=balance,
        credit_limit_cents=limit,
        credit_used_cents=used,
        sale_amount_cents=sale,
        commission_credit_cents=commission,
    )


def test_sale_covered_by_balance():
    result = waterfall(10_000, 5_000, 0, 4_000, 100)
    assert result.new_balance_cents == 6_100
    assert result.new_credit_used_cents == 0
    assert result.amount_from_credit_cents == 0


def test_shortfall_drawn_from_credit():
    # R100 balance, R50 limit, R120 sale, R5 commission
    result = waterfall(10_000, 5_000, 0, 12_000, 500)
    assert result.amount_from_credit_cents == 2_000
    assert result.new_balance_cents == 500
    assert result.new_credit_used_cents == 2_000


def test_balance_exactly_equal_to_sale_uses_no_credit():
    result = waterfall(5_000, 1_000, 300, 5_000, 250)
    assert result.new_credit_used_cents == 300
    assert result.new_balance_cents == 250
    assert result.amount_from_credit_cents == 0


def test_exactly_exhausting_credit_is_allowed():
    result = waterfall(1_000, 2_000, 500, 2_500, 0)
    assert result.new_credit_used_cents == 2_000
    assert result.new_balance_cents == 0


def test_insufficient_funds_reports_shortfall():
    with pytest.raises(InsufficientFunds) as exc:
        waterfall(1_000, 2_000, 1_500, 2_000, 50)
    assert exc.value.details["shortfall_cents"] == 500


def test_waterfall_is_pure():
    args = (10_000, 5_000, 0, 12_000, 500)
    assert waterfall(*args) == waterfall(*args)


@pytest.mark.parametrize("balance,limit,used,sale", [(0, 0, 0, 1), (100, 50, 50, 101), (0, 1_000, 0, 999)])
def test_credit_never_exceeds_limit(balance, limit, used, sale):
    try:
        result = waterfall(balance, limit, used, sale, 0)
    except InsufficientFunds:
        assert balance + (limit - used) < sale
    else:
        assert 0 <= result.new_credit_used_cents <= limit
        assert result.new_balance_cents >= 0


def test_format_cents():
    assert format_cents(12_345) == "123.45"
    assert format_cents(-5) == "-0.05"


def test_sale_notes_mention_credit_draw():
    result = waterfall(10_000, 5_000, 0, 12_000, 500)
    notes = sale_notes(sale_amount_cents=12_000, terminal_name="Till 1", product_name="MTN Airtime", waterfall=result)
    assert "120.00" in notes
    assert "20.00 from credit" in notes
