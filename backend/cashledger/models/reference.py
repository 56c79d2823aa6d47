from __future__ import annotations

from ..extensions import db
from cashledger.time_utils import to_iso_date, to_utc_z


class Currency(db.Model):
    """
    Currency reference data.

    Code and precision are frozen once any transaction uses the currency
    (enforced in reference_data_service, not here).
    """
    __tablename__ = "currencies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(3), nullable=False, unique=True, index=True)
    name = db.Column(db.String(64), nullable=False)
    symbol = db.Column(db.String(8), nullable=True)

    # Decimal places used to quantize amounts in this currency
    precision = db.Column(db.Integer, nullable=False, default=2)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Currency id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "symbol": self.symbol,
            "precision": self.precision,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Branch(db.Model):
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(10), nullable=False, unique=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Branch id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class AccountingPeriod(db.Model):
    """
    A named date range flagged open/closed.

    Transactions dated inside a CLOSED period cannot be created, edited
    or approved. Dates outside every period are unrestricted.
    """
    __tablename__ = "accounting_periods"
    __table_args__ = (
        db.Index("ix_accounting_periods_range", "start_date", "end_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    # open | closed
    status = db.Column(db.String(8), nullable=False, default="open", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
