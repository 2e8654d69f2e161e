# Overview: Receipt projection for completed sales.

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime

from ..config import config_value
from ..time_utils import to_utc_z


# First match wins; matched case-insensitively against the product name.
REDEMPTION_RULES = (
    (("vodacom",), "Dial *135*(voucher number)#"),
    (("mtn",), "Dial *136*(voucher number)#"),
    (("telkom",), "Dial *180*(voucher number)#"),
    (("cellc", "cell c"), "Dial *102*(voucher number)#"),
    (("netflix", "showmax"), "Visit provider website and enter code in 'Redeem Voucher' section"),
    (("electricity", "prepaid power"), "Enter the token number on your prepaid meter keypad"),
    (("dstv",), "Payment applied to the DStv account; allow up to 15 minutes for reconnection"),
    (("ott",), "Redeem the OTT voucher at any participating online merchant"),
)


def redemption_instructions(product_name: str | None) -> str:
    name = (product_name or "").lower()
    for keywords, instructions in REDEMPTION_RULES:
        if any(keyword in name for keyword in keywords):
            return instructions
    return config_value("DEFAULT_REDEMPTION_INSTRUCTIONS", "Dial *136*(voucher number)#")


@dataclass(frozen=True)
class Receipt:
    sale_id: int
    voucher_code: str
    serial_number: str
    ref_number: str
    retailer_name: str
    terminal_name: str
    terminal_id: int
    product_name: str
    sale_amount_cents: int
    retailer_commission_cents: int
    agent_commission_cents: int
    timestamp: str
    redemption_instructions: str

    def to_dict(self) -> dict:
        return asdict(self)


def build_receipt(
    *,
    sale_id: int,
    ref_number: str,
    created_at: datetime,
    pin: str,
    serial_number: str | None,
    retailer_name: str,
    terminal_name: str,
    terminal_id: int,
    product_name: str,
    sale_amount_cents: int,
    retailer_commission_cents: int,
    agent_commission_cents: int,
) -> Receipt:
    return Receipt(
        sale_id=sale_id,
        voucher_code=pin,
        serial_number=serial_number or "",
        ref_number=ref_number,
        retailer_name=retailer_name,
        terminal_name=terminal_name,
        terminal_id=terminal_id,
        product_name=product_name,
        sale_amount_cents=sale_amount_cents,
        retailer_commission_cents=retailer_commission_cents,
        agent_commission_cents=agent_commission_cents,
        timestamp=to_utc_z(created_at),
        redemption_instructions=redemption_instructions(product_name),
    )
