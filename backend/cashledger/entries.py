# Overview: Tagged view over the flat transactions row (type + is_opening + branch_transfer_id).

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .models.ledger import TYPE_IN, TYPE_OUT


@dataclass(frozen=True)
class Deposit:
    pass


@dataclass(frozen=True)
class Withdrawal:
    pass


@dataclass(frozen=True)
class OpeningSeed:
    pass


@dataclass(frozen=True)
class TransferLeg:
    parent_id: int
    # "out" at the source branch, "in" at the destination branch
    side: str


EntryKind = Union[Deposit, Withdrawal, OpeningSeed, TransferLeg]


def entry_kind(tx) -> EntryKind:
    """
    Classify a Transaction row.

    Opening seeds win over everything else; a transfer leg is recognised by
    its back-reference; remaining rows are plain deposits or withdrawals.
    """
    if tx.is_opening:
        return OpeningSeed()
    if tx.branch_transfer_id is not None:
        return TransferLeg(parent_id=tx.branch_transfer_id, side=tx.type)
    if tx.type == TYPE_IN:
        return Deposit()
    if tx.type == TYPE_OUT:
        return Withdrawal()
    raise ValueError(f"Transaction {tx.id} has unknown type {tx.type!r}")
