from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TRANSACTION_TYPE_SALE = "sale"
TRANSACTION_TYPE_DEPOSIT = "deposit"
TRANSACTION_TYPE_ADJUSTMENT = "adjustment"


class Sale(db.Model):
    """
    Completed voucher sale. Created once by the settlement engine, never updated.

    profit_cents = supplier_commission_cents - retailer_commission_cents - agent_commission_cents
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("voucher_inventory_id", name="uq_sales_voucher_inventory"),
        db.UniqueConstraint("ref_number", name="uq_sales_ref_number"),
        db.CheckConstraint(
            "profit_cents = supplier_commission_cents - retailer_commission_cents - agent_commission_cents",
            name="ck_sales_profit_identity",
        ),
        db.Index("ix_sales_terminal_created", "terminal_id", "created_at"),
        db.Index("ix_sales_retailer_created", "retailer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    voucher_inventory_id = db.Column(db.Integer, db.ForeignKey("voucher_inventory.id"), nullable=False)
    terminal_id = db.Column(db.Integer, db.ForeignKey("terminals.id"), nullable=False)
    retailer_id = db.Column(db.Integer, db.ForeignKey("retailers.id"), nullable=False)

    sale_amount_cents = db.Column(db.Integer, nullable=False)
    supplier_commission_cents = db.Column(db.Integer, nullable=False)
    retailer_commission_cents = db.Column(db.Integer, nullable=False)
    agent_commission_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)

    # Human-referenceable identifier (e.g. "REF-20260118T101500-3F9A0C21")
    ref_number = db.Column(db.String(64), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    voucher = db.relationship("VoucherInventory")
    terminal = db.relationship("Terminal")
    retailer = db.relationship("Retailer")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "voucher_inventory_id": self.voucher_inventory_id,
            "terminal_id": self.terminal_id,
            "retailer_id": self.retailer_id,
            "sale_amount_cents": self.sale_amount_cents,
            "supplier_commission_cents": self.supplier_commission_cents,
            "retailer_commission_cents": self.retailer_commission_cents,
            "agent_commission_cents": self.agent_commission_cents,
            "profit_cents": self.profit_cents,
            "ref_number": self.ref_number,
            "created_at": to_utc_z(self.created_at),
        }


class LedgerTransaction(db.Model):
    """
    Retailer ledger entry (append-only).

    One row per completed settlement and per balance adjustment. Rows are
    never updated or deleted.
    """
    __tablename__ = "ledger_transactions"
    __table_args__ = (
        db.Index("ix_ledger_transactions_retailer_created", "retailer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    retailer_id = db.Column(db.Integer, db.ForeignKey("retailers.id"), nullable=False)
    agent_id = db.Column(db.Integer, db.ForeignKey("agents.id"), nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)
    credit_used_after_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    retailer = db.relationship("Retailer")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "retailer_id": self.retailer_id,
            "agent_id": self.agent_id,
            "sale_id": self.sale_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "balance_after_cents": self.balance_after_cents,
            "credit_used_after_cents": self.credit_used_after_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
