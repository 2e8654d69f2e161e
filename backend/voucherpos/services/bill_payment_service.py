# Overview: Bill payments and vended vouchers (electricity, DStv, OTT) settled through the sale engine.

"""
Bill payment flow

    validate account (vendor) -> pending audit row -> vend (vendor)
        -> complete_synthesized_sale -> audit row completed | failed

Vendor calls happen strictly before the settlement transaction, so a vendor
failure leaves no inventory or ledger effect. The commission rate is checked
before the vend: a sale that could never settle is not vended.

The vend result's amount is authoritative for the sale amount.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import httpx
from flask import current_app

from ..config import config_value
from ..extensions import db
from ..models import BillPayment
from ..models.bill_payments import BILL_PAYMENT_COMPLETED, BILL_PAYMENT_FAILED, BILL_PAYMENT_PENDING
from .errors import (
    NotFoundError,
    RateNotConfigured,
    SettlementError,
    SettlementValidationError,
    VendorError,
)
from .sales_service import CHANNEL_BILL_PAYMENT, SaleResult, complete_synthesized_sale
from .settlement_repository import SqlSettlementRepository

logger = logging.getLogger(__name__)

VENDOR_REGISTRY_KEY = "bill_payment_vendors"
VEND_STATUS_SUCCESS = "success"

_DIGITS = re.compile(r"[0-9]+")


def vendor_cents(value, *, provider: str, field_name: str) -> int:
    """
    Whole cents from a vendor payload: an int, an integral float or a string
    of ASCII digits. Anything else is a VendorError, never a truncation.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _DIGITS.fullmatch(value.strip()):
        return int(value.strip())
    raise VendorError(
        f"{provider} returned an invalid {field_name}",
        details={"provider": provider, "field": field_name, "value": str(value)},
    )


@dataclass(frozen=True)
class VendorValidation:
    reference: str
    amount_due_cents: int | None = None
    holder_name: str | None = None

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "amount_due_cents": self.amount_due_cents,
            "holder_name": self.holder_name,
        }


@dataclass(frozen=True)
class VendorVend:
    token: str
    amount_cents: int
    status: str = VEND_STATUS_SUCCESS
    serial_number: str | None = None
    payload: dict = field(default_factory=dict)


class BillPaymentVendor:
    """
    Vendor contract. Implementations raise VendorError for every failure
    (transport, timeout, declined account, failed vend).
    """
    provider = "vendor"

    def validate(self, account: str, product: str | None, timeout: float) -> VendorValidation:
        raise NotImplementedError

    def vend(self, reference: str, amount_cents: int, timeout: float) -> VendorVend:
        raise NotImplementedError


class HttpBillPaymentVendor(BillPaymentVendor):
    """
    Generic JSON vendor gateway.

        POST {base_url}/validate  {"account", "product"}
            -> {"reference", "amount_due_cents", "holder_name"}
        POST {base_url}/vend      {"reference", "amount_cents"}
            -> {"token", "amount_cents", "status", "serial_number"}
    """

    def __init__(self, provider: str, base_url: str, api_key: str | None = None, client: httpx.Client | None = None):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client = client or httpx.Client()

    def _post(self, endpoint: str, payload: dict, timeout: float) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = self.client.post(
                f"{self.base_url}/{endpoint}",
                json=payload,
                headers=headers,
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            raise VendorError(
                f"{self.provider} timed out",
                details={"provider": self.provider, "endpoint": endpoint},
            ) from exc
        except httpx.HTTPError as exc:
            raise VendorError(
                f"{self.provider} unreachable",
                details={"provider": self.provider, "endpoint": endpoint, "reason": str(exc)},
            ) from exc

        if response.status_code >= 400:
            logger.error("%s API error: %s - %s", self.provider, response.status_code, response.text)
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            raise VendorError(
                message or f"{self.provider} request failed",
                details={"provider": self.provider, "endpoint": endpoint, "status_code": response.status_code},
            )

        try:
            return response.json()
        except ValueError as exc:
            raise VendorError(
                f"{self.provider} returned an invalid response",
                details={"provider": self.provider, "endpoint": endpoint},
            ) from exc

    def validate(self, account: str, product: str | None, timeout: float) -> VendorValidation:
        data = self._post("validate", {"account": account, "product": product}, timeout)
        if not data.get("reference"):
            raise VendorError(
                data.get("message") or "Account could not be validated",
                details={"provider": self.provider, "account": account},
            )
        amount_due = data.get("amount_due_cents")
        if amount_due is not None:
            amount_due = vendor_cents(amount_due, provider=self.provider, field_name="amount_due_cents")
        return VendorValidation(
            reference=str(data["reference"]),
            amount_due_cents=amount_due,
            holder_name=data.get("holder_name"),
        )

    def vend(self, reference: str, amount_cents: int, timeout: float) -> VendorVend:
        data = self._post("vend", {"reference": reference, "amount_cents": amount_cents}, timeout)
        if not data.get("token"):
            raise VendorError(
                data.get("message") or "Vendor returned no token",
                details={"provider": self.provider, "reference": reference},
            )
        return VendorVend(
            token=str(data["token"]),
            amount_cents=vendor_cents(
                data.get("amount_cents", amount_cents), provider=self.provider, field_name="amount_cents"
            ),
            status=data.get("status", VEND_STATUS_SUCCESS),
            serial_number=data.get("serial_number"),
            payload=data,
        )


# =============================================================================
# REGISTRY
# =============================================================================

def register_vendor(app, vendor: BillPaymentVendor) -> None:
    app.extensions.setdefault(VENDOR_REGISTRY_KEY, {})[vendor.provider] = vendor


def get_vendor(provider: str) -> BillPaymentVendor:
    vendors = current_app.extensions.get(VENDOR_REGISTRY_KEY, {})
    vendor = vendors.get(provider)
    if vendor is None:
        raise NotFoundError("Bill payment provider not configured", details={"provider": provider})
    return vendor


def _vendor_timeout() -> float:
    return float(config_value("VENDOR_TIMEOUT_SECONDS", 30))


def _call_vendor(provider: str, operation: str, func, *args):
    try:
        return func(*args, _vendor_timeout())
    except VendorError:
        raise
    except Exception as exc:
        logger.exception("%s %s failed", provider, operation)
        raise VendorError(
            f"{provider} {operation} failed",
            details={"provider": provider, "reason": exc.__class__.__name__},
        ) from exc


# =============================================================================
# OPERATIONS
# =============================================================================

def validate_account(*, provider: str, account_reference: str, product: str | None = None) -> VendorValidation:
    if not account_reference:
        raise SettlementValidationError("account_reference required")
    vendor = get_vendor(provider)
    return _call_vendor(provider, "validate", vendor.validate, account_reference, product)


@dataclass(frozen=True)
class BillPaymentResult:
    bill_payment: dict
    sale: SaleResult | None = None
    error: SettlementError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        if self.error is not None:
            payload = self.error.to_dict()
            payload["bill_payment"] = self.bill_payment
            return payload
        payload = self.sale.to_dict()
        payload["bill_payment"] = self.bill_payment
        return payload


def _precheck_rate(repo, terminal_id: int, voucher_type_id: int):
    """Resolve terminal and retailer and confirm a commission rate exists, without locking."""
    terminal = repo.find_terminal(terminal_id)
    if terminal is None:
        raise NotFoundError("Terminal not found", details={"terminal_id": terminal_id})
    if repo.find_voucher_type(voucher_type_id) is None:
        raise NotFoundError("Voucher type not found", details={"voucher_type_id": voucher_type_id})
    retailer = repo.read_retailer_snapshot(terminal.retailer_id, lock=False)
    if repo.find_commission_rate(retailer.commission_group_id, voucher_type_id) is None:
        raise RateNotConfigured(
            "Commission rate not found for this voucher type",
            details={
                "retailer_id": retailer.id,
                "commission_group_id": retailer.commission_group_id,
                "voucher_type_id": voucher_type_id,
            },
        )
    return terminal, retailer


def _close(payment: BillPayment, *, status: str, error: SettlementError | None = None) -> None:
    payment.status = status
    if error is not None:
        payment.error_code = error.code
        payment.error_message = error.message[:255]
    db.session.commit()


def pay_bill(
    *,
    terminal_id: int,
    voucher_type_id: int,
    provider: str,
    account_reference: str,
    product: str | None = None,
    amount_cents: int | None = None,
    repo=None,
) -> BillPaymentResult:
    """
    Validate, vend and settle one bill payment.

    amount_cents is the purchase amount for open-amount products (electricity);
    when omitted the vendor's amount due is paid. Failures before the audit row
    exists raise; later failures are recorded on the row and returned.
    """
    if not account_reference:
        raise SettlementValidationError("account_reference required")
    if amount_cents is not None and (isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0):
        raise SettlementValidationError("amount_cents must be a positive integer")

    repo = repo or SqlSettlementRepository()
    vendor = get_vendor(provider)
    terminal, retailer = _precheck_rate(repo, terminal_id, voucher_type_id)
    repo.rollback()

    payment = BillPayment(
        provider=provider,
        product=product,
        voucher_type_id=voucher_type_id,
        account_reference=account_reference,
        amount_cents=amount_cents or 0,
        terminal_id=terminal.id,
        retailer_id=retailer.id,
        status=BILL_PAYMENT_PENDING,
    )
    db.session.add(payment)
    db.session.commit()

    try:
        validation = _call_vendor(provider, "validate", vendor.validate, account_reference, product)
        payment.vendor_reference = validation.reference
        payment.customer_name = validation.holder_name

        amount = amount_cents if amount_cents is not None else validation.amount_due_cents
        if amount is None:
            raise VendorError(
                "Vendor returned no amount due",
                details={"provider": provider, "reference": validation.reference},
            )
        # Any vendor implementation: only positive whole cents reach the vend
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise VendorError(
                "Vendor returned an invalid amount due",
                details={"provider": provider, "reference": validation.reference, "value": str(amount)},
            )
        payment.amount_cents = amount
        db.session.commit()

        vend = _call_vendor(provider, "vend", vendor.vend, validation.reference, amount)
        if vend.status != VEND_STATUS_SUCCESS:
            raise VendorError(
                "Vend was not successful",
                details={"provider": provider, "reference": validation.reference, "status": vend.status},
            )
        if isinstance(vend.amount_cents, bool) or not isinstance(vend.amount_cents, int) or vend.amount_cents <= 0:
            raise VendorError(
                "Vendor returned an invalid vend amount",
                details={"provider": provider, "reference": validation.reference, "value": str(vend.amount_cents)},
            )
    except VendorError as exc:
        logger.warning("Bill payment %s vendor failure (%s): %s", payment.id, provider, exc.message)
        _close(payment, status=BILL_PAYMENT_FAILED, error=exc)
        return BillPaymentResult(bill_payment=payment.to_dict(), error=exc)

    payment.token = vend.token
    payment.amount_cents = vend.amount_cents
    payment.vendor_payload = vend.payload or None
    db.session.commit()

    sale = complete_synthesized_sale(
        terminal_id=terminal.id,
        voucher_type_id=voucher_type_id,
        sale_amount_cents=vend.amount_cents,
        pin=vend.token,
        serial_number=vend.serial_number,
        channel=CHANNEL_BILL_PAYMENT,
        repo=repo,
    )
    if not sale.ok:
        # The customer holds a valid token that the ledger does not reflect.
        logger.error(
            "Bill payment %s vended token but settlement failed (%s); needs reconciliation",
            payment.id, sale.error.code,
        )
        _close(payment, status=BILL_PAYMENT_FAILED, error=sale.error)
        return BillPaymentResult(bill_payment=payment.to_dict(), sale=sale, error=sale.error)

    payment.sale_id = sale.sale_id
    _close(payment, status=BILL_PAYMENT_COMPLETED)
    logger.info("Bill payment %s completed (sale %s)", payment.id, sale.sale_id)
    return BillPaymentResult(bill_payment=payment.to_dict(), sale=sale)


def list_bill_payments(*, terminal_id: int | None = None, status: str | None = None, limit: int = 100) -> list[dict]:
    q = db.session.query(BillPayment)
    if terminal_id is not None:
        q = q.filter(BillPayment.terminal_id == terminal_id)
    if status is not None:
        q = q.filter(BillPayment.status == status)
    return [p.to_dict() for p in q.order_by(BillPayment.id.desc()).limit(limit).all()]
