"""
In-memory SettlementRepository for exercising the settlement engine without a
database.

transaction() serializes callers with a lock and restores a snapshot of every
table on any exception, the same all-or-nothing contract the SQL repository
gets from a rollback.
"""

import copy
import itertools
import threading
from contextlib import contextmanager
from decimal import Decimal

from voucherpos.services.errors import ClaimConflict, NotFoundError, OutOfStock
from voucherpos.services.settlement_repository import (
    ClaimedUnit,
    RateInfo,
    RetailerSnapshot,
    SaleRecord,
    TerminalInfo,
    VoucherTypeInfo,
    generate_ref_number,
)
from voucherpos.time_utils import utcnow


class InMemorySettlementRepository:
    def __init__(self):
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self.voucher_types = {}
        self.retailers = {}
        self.agents = {}
        self.terminals = {}
        self.rates = {}
        self.units = {}
        self.sales = []
        self.transactions = []

        # method name -> exception raised when that capability is called
        self.failures = {}
        # Number of upcoming claim_unit calls that lose a race
        self.pending_conflicts = 0
        self.claim_calls = 0
        # unit id -> status a concurrent transaction holding its row lock will commit
        self.locked_units = {}
        self._released_locks = {}

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def add_voucher_type(self, name, supplier_commission_pct="5.000"):
        vt_id = next(self._ids)
        pct = None if supplier_commission_pct is None else Decimal(supplier_commission_pct)
        self.voucher_types[vt_id] = {"id": vt_id, "name": name, "supplier_commission_pct": pct}
        return vt_id

    def add_agent(self, name="Agent"):
        agent_id = next(self._ids)
        self.agents[agent_id] = {"id": agent_id, "name": name, "commission_balance_cents": 0}
        return agent_id

    def add_retailer(self, name="Retailer", *, balance_cents=0, credit_limit_cents=0, credit_used_cents=0,
                     commission_group_id=1, agent_id=None):
        retailer_id = next(self._ids)
        self.retailers[retailer_id] = {
            "id": retailer_id,
            "name": name,
            "agent_id": agent_id,
            "commission_group_id": commission_group_id,
            "balance_cents": balance_cents,
            "credit_limit_cents": credit_limit_cents,
            "credit_used_cents": credit_used_cents,
            "commission_balance_cents": 0,
        }
        return retailer_id

    def add_terminal(self, retailer_id, name="Till 1"):
        terminal_id = next(self._ids)
        self.terminals[terminal_id] = {"id": terminal_id, "name": name, "retailer_id": retailer_id}
        return terminal_id

    def set_rate(self, commission_group_id, voucher_type_id, retailer_pct, agent_pct, group_name="Standard"):
        self.rates[(commission_group_id, voucher_type_id)] = RateInfo(
            commission_group_id=commission_group_id,
            group_name=group_name,
            retailer_pct=Decimal(retailer_pct),
            agent_pct=Decimal(agent_pct),
        )

    def add_unit(self, voucher_type_id, denomination_cents, pin, serial_number=None, status="available"):
        unit_id = next(self._ids)
        self.units[unit_id] = {
            "id": unit_id,
            "voucher_type_id": voucher_type_id,
            "denomination_cents": denomination_cents,
            "pin": pin,
            "serial_number": serial_number,
            "status": status,
        }
        return unit_id

    def lock_unit(self, unit_id, *, commits_as="sold"):
        """Hold a unit's row lock in another transaction that finishes with commits_as."""
        self.locked_units[unit_id] = commits_as

    def available_count(self, voucher_type_id, denomination_cents):
        return sum(
            1 for u in self.units.values()
            if u["voucher_type_id"] == voucher_type_id
            and u["denomination_cents"] == denomination_cents
            and u["status"] == "available"
        )

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _state(self):
        return {
            "retailers": self.retailers,
            "agents": self.agents,
            "units": self.units,
            "sales": self.sales,
            "transactions": self.transactions,
        }

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = copy.deepcopy(self._state())
            try:
                yield self
            except Exception:
                for name, value in snapshot.items():
                    setattr(self, name, value)
                # Another transaction's commit survives our rollback
                for unit_id, status in self._released_locks.items():
                    self.units[unit_id]["status"] = status
                raise
            finally:
                self._released_locks = {}

    def rollback(self):
        pass

    def _maybe_fail(self, name):
        exc = self.failures.get(name)
        if exc is not None:
            raise exc

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def find_terminal(self, terminal_id):
        t = self.terminals.get(terminal_id)
        return None if t is None else TerminalInfo(id=t["id"], name=t["name"], retailer_id=t["retailer_id"])

    def find_voucher_type(self, voucher_type_id):
        vt = self.voucher_types.get(voucher_type_id)
        if vt is None:
            return None
        return VoucherTypeInfo(id=vt["id"], name=vt["name"], supplier_commission_pct=vt["supplier_commission_pct"])

    def find_commission_rate(self, commission_group_id, voucher_type_id):
        return self.rates.get((commission_group_id, voucher_type_id))

    def claim_unit(self, voucher_type_id, denomination_cents):
        self.claim_calls += 1
        if self.pending_conflicts:
            self.pending_conflicts -= 1
            raise ClaimConflict("Lost a concurrent claim for this denomination")
        # A claim blocks on locked rows and then sees what the holder committed
        for unit_id, status in list(self.locked_units.items()):
            self.units[unit_id]["status"] = status
            del self.locked_units[unit_id]
            self._released_locks[unit_id] = status
        for unit in sorted(self.units.values(), key=lambda u: u["id"]):
            if (
                unit["voucher_type_id"] == voucher_type_id
                and unit["denomination_cents"] == denomination_cents
                and unit["status"] == "available"
            ):
                unit["status"] = "sold"
                return self._claimed(unit)
        raise OutOfStock("No vouchers available for this type and denomination")

    def claim_unit_by_id(self, unit_id, voucher_type_id):
        unit = self.units.get(unit_id)
        if unit is None or unit["status"] != "available" or unit["voucher_type_id"] != voucher_type_id:
            raise OutOfStock("Voucher is not available")
        unit["status"] = "sold"
        return self._claimed(unit)

    def insert_sold_unit(self, *, voucher_type_id, denomination_cents, pin, serial_number=None):
        self._maybe_fail("insert_sold_unit")
        unit_id = self.add_unit(voucher_type_id, denomination_cents, pin, serial_number, status="sold")
        return self._claimed(self.units[unit_id])

    def read_retailer_snapshot(self, retailer_id, *, lock=True):
        r = self.retailers.get(retailer_id)
        if r is None:
            raise NotFoundError("Retailer not found")
        return RetailerSnapshot(**r)

    def apply_ledger_update(self, *, retailer_id, new_balance_cents, new_credit_used_cents,
                            retailer_commission_cents=0, agent_id=None, agent_commission_cents=0, terminal_id=None):
        self._maybe_fail("apply_ledger_update")
        r = self.retailers[retailer_id]
        r["balance_cents"] = new_balance_cents
        r["credit_used_cents"] = new_credit_used_cents
        r["commission_balance_cents"] += retailer_commission_cents
        if agent_id is not None:
            self.agents[agent_id]["commission_balance_cents"] += agent_commission_cents

    def insert_sale(self, **fields):
        self._maybe_fail("insert_sale")
        record = SaleRecord(id=next(self._ids), ref_number=generate_ref_number(), created_at=utcnow())
        self.sales.append(dict(fields, id=record.id, ref_number=record.ref_number))
        return record

    def insert_transaction(self, **fields):
        self._maybe_fail("insert_transaction")
        tx_id = next(self._ids)
        self.transactions.append(dict(fields, id=tx_id))
        return tx_id

    @staticmethod
    def _claimed(unit):
        return ClaimedUnit(
            id=unit["id"],
            voucher_type_id=unit["voucher_type_id"],
            denomination_cents=unit["denomination_cents"],
            pin=unit["pin"],
            serial_number=unit["serial_number"],
        )
