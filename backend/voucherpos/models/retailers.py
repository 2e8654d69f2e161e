from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Agent(db.Model):
    """Sales agent who earns a share of the supplier commission on their retailers' sales."""
    __tablename__ = "agents"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    commission_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "commission_balance_cents": self.commission_balance_cents,
            "created_at": to_utc_z(self.created_at),
        }


class CommissionGroup(db.Model):
    """
    Named rate table (retailer tier).

    Every retailer belongs to exactly one group; the group's rates decide how the
    supplier commission on a sale is split between retailer and agent.
    """
    __tablename__ = "commission_groups"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class CommissionGroupRate(db.Model):
    """
    (commission group, voucher type) -> retailer/agent share.

    Both shares are fractions of the supplier commission on a 0-1 scale.
    A missing row is a configuration error, never an implicit zero.
    """
    __tablename__ = "commission_group_rates"
    __table_args__ = (
        db.UniqueConstraint("commission_group_id", "voucher_type_id", name="uq_commission_rate_group_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    commission_group_id = db.Column(db.Integer, db.ForeignKey("commission_groups.id"), nullable=False, index=True)
    voucher_type_id = db.Column(db.Integer, db.ForeignKey("voucher_types.id"), nullable=False, index=True)

    retailer_pct = db.Column(db.Numeric(6, 4), nullable=False)
    agent_pct = db.Column(db.Numeric(6, 4), nullable=False)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    commission_group = db.relationship("CommissionGroup", backref=db.backref("rates", lazy=True))
    voucher_type = db.relationship("VoucherType")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "commission_group_id": self.commission_group_id,
            "voucher_type_id": self.voucher_type_id,
            "retailer_pct": str(self.retailer_pct),
            "agent_pct": str(self.agent_pct),
            "updated_at": to_utc_z(self.updated_at),
        }


class Retailer(db.Model):
    """
    Retailer account: prepaid balance plus a credit facility.

    Invariants after every settlement:
    - 0 <= credit_used_cents <= credit_limit_cents
    - balance_cents >= 0

    Balance columns are only written by the settlement engine and the
    balance adjustment service, always under a row lock.
    """
    __tablename__ = "retailers"
    __table_args__ = (
        db.CheckConstraint("balance_cents >= 0", name="ck_retailers_balance_non_negative"),
        db.CheckConstraint(
            "credit_used_cents >= 0 AND credit_used_cents <= credit_limit_cents",
            name="ck_retailers_credit_within_limit",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    commission_group_id = db.Column(db.Integer, db.ForeignKey("commission_groups.id"), nullable=True, index=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("agents.id"), nullable=True, index=True)

    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_used_cents = db.Column(db.Integer, nullable=False, default=0)
    commission_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    commission_group = db.relationship("CommissionGroup")
    agent = db.relationship("Agent", backref=db.backref("retailers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_credit_cents(self) -> int:
        return self.credit_limit_cents - self.credit_used_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "commission_group_id": self.commission_group_id,
            "agent_id": self.agent_id,
            "balance_cents": self.balance_cents,
            "credit_limit_cents": self.credit_limit_cents,
            "credit_used_cents": self.credit_used_cents,
            "available_credit_cents": self.available_credit_cents,
            "commission_balance_cents": self.commission_balance_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class Terminal(db.Model):
    """Point-of-sale device (or cashier login) selling on behalf of one retailer."""
    __tablename__ = "terminals"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    retailer_id = db.Column(db.Integer, db.ForeignKey("retailers.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="active")
    last_active_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    retailer = db.relationship("Retailer", backref=db.backref("terminals", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "retailer_id": self.retailer_id,
            "name": self.name,
            "status": self.status,
            "last_active_at": to_utc_z(self.last_active_at),
            "created_at": to_utc_z(self.created_at),
        }
