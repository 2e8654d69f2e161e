from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


BILL_PAYMENT_PENDING = "pending"
BILL_PAYMENT_COMPLETED = "completed"
BILL_PAYMENT_FAILED = "failed"


class BillPayment(db.Model):
    """
    Audit record of one bill payment / OTT vend attempt.

    Written before the vendor is called (pending) and closed as completed or
    failed. It is not part of the retailer ledger: the ledger only moves once the
    vend succeeded and the settlement engine recorded the sale.
    """
    __tablename__ = "bill_payments"
    __table_args__ = (
        db.Index("ix_bill_payments_terminal_created", "terminal_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False)
    product = db.Column(db.String(64), nullable=True)
    voucher_type_id = db.Column(db.Integer, db.ForeignKey("voucher_types.id"), nullable=False)

    # Meter / smartcard / account number entered at the terminal
    account_reference = db.Column(db.String(64), nullable=False)
    # Reference returned by the vendor's validate step
    vendor_reference = db.Column(db.String(128), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    terminal_id = db.Column(db.Integer, db.ForeignKey("terminals.id"), nullable=False)
    retailer_id = db.Column(db.Integer, db.ForeignKey("retailers.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=BILL_PAYMENT_PENDING, index=True)
    token = db.Column(db.String(128), nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)
    error_code = db.Column(db.String(32), nullable=True)
    error_message = db.Column(db.String(255), nullable=True)
    vendor_payload = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "provider": self.provider,
            "product": self.product,
            "voucher_type_id": self.voucher_type_id,
            "account_reference": self.account_reference,
            "vendor_reference": self.vendor_reference,
            "customer_name": self.customer_name,
            "amount_cents": self.amount_cents,
            "terminal_id": self.terminal_id,
            "retailer_id": self.retailer_id,
            "status": self.status,
            "token": self.token,
            "sale_id": self.sale_id,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
