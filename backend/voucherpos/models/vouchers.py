from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


UNIT_STATUS_AVAILABLE = "available"
UNIT_STATUS_SOLD = "sold"
UNIT_STATUS_DISABLED = "disabled"

UNIT_STATUSES = (UNIT_STATUS_AVAILABLE, UNIT_STATUS_SOLD, UNIT_STATUS_DISABLED)


class VoucherType(db.Model):
    """
    Sellable product family (e.g. "Vodacom Airtime", "Prepaid Electricity").

    supplier_commission_pct is on a 0-100 scale (3.00 = 3%) as entered on the
    configuration screens; the settlement engine converts it once on read.
    """
    __tablename__ = "voucher_types"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    supplier_commission_pct = db.Column(db.Numeric(6, 3), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "supplier_commission_pct": (
                str(self.supplier_commission_pct) if self.supplier_commission_pct is not None else None
            ),
            "created_at": to_utc_z(self.created_at),
        }


class VoucherInventory(db.Model):
    """
    One sellable voucher credential.

    Lifecycle:
    - created "available" by ingestion, or synthesized "sold" by a bill payment
    - "available" -> "sold" exactly once, through a conditional update
    - "disabled" is set out-of-band and is never sold

    The pin is the natural key: unique and immutable once set.
    """
    __tablename__ = "voucher_inventory"
    __table_args__ = (
        db.UniqueConstraint("pin", name="uq_voucher_inventory_pin"),
        db.CheckConstraint(
            "status IN (" + ", ".join(f"'{s}'" for s in UNIT_STATUSES) + ")",
            name="ck_voucher_inventory_status",
        ),
        # Allocation lookups: (type, denomination, status)
        db.Index("ix_voucher_inventory_alloc", "voucher_type_id", "denomination_cents", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    voucher_type_id = db.Column(db.Integer, db.ForeignKey("voucher_types.id"), nullable=False)
    denomination_cents = db.Column(db.Integer, nullable=False)

    pin = db.Column(db.String(128), nullable=False)
    serial_number = db.Column(db.String(128), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=UNIT_STATUS_AVAILABLE, index=True)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    voucher_type = db.relationship("VoucherType", backref=db.backref("inventory", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "voucher_type_id": self.voucher_type_id,
            "denomination_cents": self.denomination_cents,
            "pin": self.pin,
            "serial_number": self.serial_number,
            "status": self.status,
            "sold_at": to_utc_z(self.sold_at),
            "created_at": to_utc_z(self.created_at),
        }
