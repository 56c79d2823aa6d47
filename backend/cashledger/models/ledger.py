from __future__ import annotations

from ..extensions import db
from cashledger.time_utils import to_iso_date, to_utc_z


# Flow direction
TYPE_IN = "in"
TYPE_OUT = "out"
VALID_TYPES = (TYPE_IN, TYPE_OUT)

# Lifecycle (shared by transactions and branch transfers)
STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
VALID_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)

# decimal(18,2)-class storage; display precision comes from the currency
MONEY = db.Numeric(18, 2, asdecimal=True)


def _money(value) -> str | None:
    return None if value is None else str(value)


class BranchOpeningBalance(db.Model):
    """
    The ledger zero-point for one (branch, currency) pair.

    Mirrored by exactly one Transaction with is_opening=True. Both are
    edited together, and only while no regular transaction exists for
    the pair (see opening_balance_service).
    """
    __tablename__ = "branch_opening_balances"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "currency_id", name="uq_opening_balances_branch_currency"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    currency_id = db.Column(db.Integer, db.ForeignKey("currencies.id"), nullable=False, index=True)
    opening_balance = db.Column(MONEY, nullable=False, default=0)
    opening_date = db.Column(db.Date, nullable=False)

    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", backref=db.backref("opening_balances", lazy=True))
    currency = db.relationship("Currency")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "currency_id": self.currency_id,
            "opening_balance": _money(self.opening_balance),
            "opening_date": to_iso_date(self.opening_date),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class BranchTransfer(db.Model):
    """
    Inter-branch cash transfer.

    Always owns exactly two Transaction rows sharing branch_transfer_id:
    an OUT leg at from_branch and an IN leg at to_branch, with the same
    amount, date and currency. Parent and legs move through the
    lifecycle together.
    """
    __tablename__ = "branch_transfers"
    __table_args__ = (
        db.Index("ix_branch_transfers_from_to_date", "from_branch_id", "to_branch_id", "transfer_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    to_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    currency_id = db.Column(db.Integer, db.ForeignKey("currencies.id"), nullable=False, index=True)
    transfer_date = db.Column(db.Date, nullable=False)
    amount = db.Column(MONEY, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING, index=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.Integer, nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    from_branch = db.relationship("Branch", foreign_keys=[from_branch_id])
    to_branch = db.relationship("Branch", foreign_keys=[to_branch_id])
    currency = db.relationship("Currency")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_branch_id": self.from_branch_id,
            "to_branch_id": self.to_branch_id,
            "currency_id": self.currency_id,
            "transfer_date": to_iso_date(self.transfer_date),
            "amount": _money(self.amount),
            "description": self.description,
            "status": self.status,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "approved_by": self.approved_by,
            "rejected_at": to_utc_z(self.rejected_at) if self.rejected_at else None,
            "rejected_by": self.rejected_by,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Transaction(db.Model):
    """
    One monetary movement for a (branch, currency) pair.

    Persisted flat; services read it through entry_kind() as a
    Deposit / Withdrawal / OpeningSeed / TransferLeg variant.

    INVARIANTS:
    - reference is globally unique, assigned in the inserting unit of work
    - amount > 0 except for opening seeds (>= 0)
    - status only moves pending -> approved | rejected
    - approved/rejected rows never change amount, branch or currency
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("reference", name="uq_transactions_reference"),
        db.Index("ix_transactions_branch_currency_date", "branch_id", "currency_id", "transaction_date"),
        db.Index("ix_transactions_branch_currency_opening", "branch_id", "currency_id", "is_opening"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Short form, e.g. "25011001"; see reference_service
    reference = db.Column(db.String(64), nullable=False)

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    currency_id = db.Column(db.Integer, db.ForeignKey("currencies.id"), nullable=False, index=True)
    transaction_date = db.Column(db.Date, nullable=False, index=True)

    # in (deposit) | out (withdrawal)
    type = db.Column(db.String(3), nullable=False, index=True)
    amount = db.Column(MONEY, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    # Depositor (in) / requester (out), free text
    actor_name = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING, index=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.Integer, nullable=True)

    is_opening = db.Column(db.Boolean, nullable=False, default=False)
    branch_transfer_id = db.Column(
        db.Integer,
        db.ForeignKey("branch_transfers.id"),
        nullable=True,
        index=True,
    )

    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    deleted_by = db.Column(db.Integer, nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch")
    currency = db.relationship("Currency")
    branch_transfer = db.relationship(
        "BranchTransfer",
        backref=db.backref("transactions", lazy=True, order_by="Transaction.id"),
    )

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} reference={self.reference!r} status={self.status}>"

    @property
    def full_reference(self) -> str:
        """Display/scan form: currency code + branch code + reference."""
        return f"{self.currency.code}{self.branch.code}{self.reference}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference": self.reference,
            "full_reference": self.full_reference,
            "branch_id": self.branch_id,
            "currency_id": self.currency_id,
            "transaction_date": to_iso_date(self.transaction_date),
            "type": self.type,
            "amount": _money(self.amount),
            "description": self.description,
            "actor_name": self.actor_name,
            "status": self.status,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "approved_by": self.approved_by,
            "rejected_at": to_utc_z(self.rejected_at) if self.rejected_at else None,
            "rejected_by": self.rejected_by,
            "is_opening": self.is_opening,
            "branch_transfer_id": self.branch_transfer_id,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
