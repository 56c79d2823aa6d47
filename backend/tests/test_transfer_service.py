"""
Branch transfer tests.

Verifies:
- A transfer is created with exactly one OUT and one IN leg
- Updates carry branch/currency/date/amount to both legs
- Deleting the transfer, or one of its legs, removes all three rows
- Approval and rejection settle the pair and the parent together
- A pair settled by another unit meanwhile is AlreadyProcessed, not a conflict
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import update

from cashledger.exceptions import (
    AlreadyProcessed,
    ImmutableTransaction,
    PartialApprovalConflict,
    ValidationFailed,
)
from cashledger.extensions import db
from cashledger.models import BranchTransfer, Transaction
from cashledger.services import approval_service, ledger_service, transfer_service


def _legs(transfer_id):
    return (
        db.session.query(Transaction)
        .filter(Transaction.branch_transfer_id == transfer_id)
        .order_by(Transaction.type.desc())
        .all()
    )


def _transfer(b01, b02, idr, amount="200000", on_date=date(2025, 1, 7), **kwargs):
    return transfer_service.create_transfer(b01.id, b02.id, idr.id, on_date, amount, **kwargs)


def _approve_pair_elsewhere(transfer_id, approver_id=999):
    """Commit an approval of the whole pair outside the session."""
    with db.engine.begin() as conn:
        conn.execute(
            update(Transaction)
            .where(Transaction.branch_transfer_id == transfer_id)
            .values(status="approved", approved_by=approver_id)
        )
        conn.execute(
            update(BranchTransfer)
            .where(BranchTransfer.id == transfer_id)
            .values(status="approved", approved_by=approver_id)
        )


class TestCreateTransfer:

    def test_creates_parent_and_two_legs(self, db_session, b01, b02, idr, clerk):
        outcome = _transfer(b01, b02, idr, actor=clerk)
        transfer = outcome.entity

        assert transfer.status == "pending"
        assert transfer.amount == Decimal("200000.00")
        assert outcome.event_names() == ["transfer.created", "transaction.created", "transaction.created"]

        out_leg, in_leg = _legs(transfer.id)
        assert (out_leg.type, out_leg.branch_id) == ("out", b01.id)
        assert (in_leg.type, in_leg.branch_id) == ("in", b02.id)
        for leg in (out_leg, in_leg):
            assert leg.amount == transfer.amount
            assert leg.currency_id == idr.id
            assert leg.transaction_date == date(2025, 1, 7)
            assert leg.status == "pending"
        assert out_leg.reference == "25010001"
        assert in_leg.reference == "25011001"

    def test_default_leg_descriptions(self, db_session, b01, b02, idr):
        transfer = _transfer(b01, b02, idr).entity

        out_leg, in_leg = _legs(transfer.id)
        assert out_leg.description == "Transfer to B02"
        assert in_leg.description == "Transfer from B01"

    def test_custom_leg_descriptions_and_actors(self, db_session, b01, b02, idr):
        transfer = _transfer(
            b01, b02, idr,
            out_description="Kirim kas", in_description="Terima kas",
            out_actor_name="Andi", in_actor_name="Budi",
        ).entity

        out_leg, in_leg = _legs(transfer.id)
        assert (out_leg.description, out_leg.actor_name) == ("Kirim kas", "Andi")
        assert (in_leg.description, in_leg.actor_name) == ("Terima kas", "Budi")

    def test_same_branch_rejected(self, db_session, b01, idr):
        with pytest.raises(ValidationFailed):
            transfer_service.create_transfer(b01.id, b01.id, idr.id, date(2025, 1, 7), "10")

    def test_bad_amount_leaves_nothing_behind(self, db_session, b01, b02, idr):
        with pytest.raises(ValidationFailed):
            _transfer(b01, b02, idr, amount="0")

        assert db.session.query(BranchTransfer).count() == 0
        assert db.session.query(Transaction).count() == 0


class TestUpdateTransfer:

    def test_propagates_to_both_legs(self, db_session, b01, b02, idr, usd):
        transfer = _transfer(b01, b02, idr).entity

        outcome = transfer_service.update_transfer(
            transfer.id,
            {"amount": "300000", "currency_id": usd.id, "transfer_date": "2025-01-20"},
        )

        assert outcome.entity.amount == Decimal("300000.00")
        out_leg, in_leg = _legs(transfer.id)
        for leg in (out_leg, in_leg):
            assert leg.amount == Decimal("300000.00")
            assert leg.currency_id == usd.id
            assert leg.transaction_date == date(2025, 1, 20)
        # Same month and flow, currency-only change: sequence kept
        assert out_leg.reference == "25010001"
        assert in_leg.full_reference == "USDB0225011001"

    def test_swapping_branches_moves_legs(self, db_session, b01, b02, idr):
        transfer = _transfer(b01, b02, idr).entity

        transfer_service.update_transfer(transfer.id, {"from_branch_id": b02.id, "to_branch_id": b01.id})

        out_leg, in_leg = _legs(transfer.id)
        assert out_leg.branch_id == b02.id
        assert in_leg.branch_id == b01.id

    def test_leg_rejects_transfer_bound_edit(self, db_session, b01, b02, idr):
        transfer = _transfer(b01, b02, idr).entity
        out_leg, _ = _legs(transfer.id)

        with pytest.raises(ValidationFailed):
            ledger_service.update_transaction(out_leg.id, {"amount": "1"})

        updated = ledger_service.update_transaction(out_leg.id, {"description": "Setor ke B02"}).entity
        assert updated.description == "Setor ke B02"

    def test_approved_transfer_cannot_be_updated(self, db_session, b01, b02, idr, approver):
        transfer = _transfer(b01, b02, idr).entity
        transfer_service.approve_transfer(transfer.id, actor=approver)

        with pytest.raises(ImmutableTransaction):
            transfer_service.update_transfer(transfer.id, {"amount": "1"})


class TestDeleteTransfer:

    def test_delete_transfer_removes_everything(self, db_session, b01, b02, idr):
        transfer = _transfer(b01, b02, idr).entity
        transfer_id = transfer.id

        outcome = transfer_service.delete_transfer(transfer_id)

        assert outcome.event_names()[-1] == "transfer.deleted"
        assert db.session.get(BranchTransfer, transfer_id) is None
        assert _legs(transfer_id) == []

    def test_deleting_one_leg_cascades(self, db_session, b01, b02, idr):
        transfer = _transfer(b01, b02, idr).entity
        transfer_id = transfer.id
        _, in_leg = _legs(transfer_id)

        ledger_service.delete_transaction(in_leg.id)

        assert db.session.get(BranchTransfer, transfer_id) is None
        assert db.session.query(Transaction).count() == 0

    def test_approved_transfer_cannot_be_deleted(self, db_session, b01, b02, idr, approver):
        transfer = _transfer(b01, b02, idr).entity
        transfer_service.approve_transfer(transfer.id, actor=approver)

        with pytest.raises(ImmutableTransaction):
            transfer_service.delete_transfer(transfer.id)


class TestSettleTransfer:

    def test_approve_settles_pair_and_parent(self, db_session, b01, b02, idr, approver):
        transfer = _transfer(b01, b02, idr).entity

        outcome = transfer_service.approve_transfer(transfer.id, actor=approver)

        assert outcome.entity.status == "approved"
        assert outcome.event_names() == ["transaction.approved", "transaction.approved", "transfer.approved"]
        out_leg, in_leg = _legs(transfer.id)
        assert out_leg.status == in_leg.status == "approved"
        assert out_leg.approved_at == in_leg.approved_at == outcome.entity.approved_at
        assert out_leg.approved_by == in_leg.approved_by == approver.id

    def test_reject_settles_pair_and_parent(self, db_session, b01, b02, idr, approver):
        transfer = _transfer(b01, b02, idr).entity

        outcome = transfer_service.reject_transfer(transfer.id, actor=approver)

        assert outcome.entity.status == "rejected"
        out_leg, in_leg = _legs(transfer.id)
        assert out_leg.status == in_leg.status == "rejected"
        assert out_leg.rejected_by == in_leg.rejected_by == approver.id
        assert out_leg.approved_at is None

    def test_second_decision_is_refused(self, db_session, b01, b02, idr, approver):
        transfer = _transfer(b01, b02, idr).entity
        transfer_service.approve_transfer(transfer.id, actor=approver)

        with pytest.raises(AlreadyProcessed):
            transfer_service.reject_transfer(transfer.id, actor=approver)

    def test_broken_pair_is_never_half_approved(self, db_session, b01, b02, idr, approver):
        transfer = _transfer(b01, b02, idr).entity
        out_leg, in_leg = _legs(transfer.id)
        # Simulate an earlier bug that settled only one leg
        in_leg.status = "approved"
        db.session.commit()

        with pytest.raises(PartialApprovalConflict) as excinfo:
            approval_service.approve_transaction(out_leg.id, actor=approver)

        assert excinfo.value.branch_transfer_id == transfer.id
        db.session.expire_all()
        assert db.session.get(Transaction, out_leg.id).status == "pending"
        assert db.session.get(BranchTransfer, transfer.id).status == "pending"

    def test_pair_approved_before_lock_is_already_processed(self, db_session, b01, b02, idr, approver):
        transfer = _transfer(b01, b02, idr).entity
        transfer_id = transfer.id

        def approved_meanwhile(actor):
            _approve_pair_elsewhere(transfer_id)
            return True

        with pytest.raises(AlreadyProcessed) as excinfo:
            transfer_service.approve_transfer(transfer_id, actor=approver, can_approve=approved_meanwhile)

        assert excinfo.value.status == "approved"

    def test_pair_approved_after_load_is_already_processed(self, db_session, b01, b02, idr, approver):
        transfer = _transfer(b01, b02, idr).entity
        transfer_id = transfer.id

        def approved_meanwhile(on_date):
            _approve_pair_elsewhere(transfer_id)
            return "open"

        with pytest.raises(AlreadyProcessed) as excinfo:
            transfer_service.approve_transfer(transfer_id, actor=approver, period_lookup=approved_meanwhile)

        assert excinfo.value.entity == "transfer"
        db.session.expire_all()
        assert {leg.approved_by for leg in _legs(transfer_id)} == {999}

    def test_summary(self, db_session, b01, b02, idr):
        transfer = _transfer(b01, b02, idr, description="Kas mingguan").entity

        summary = transfer_service.get_transfer_summary(transfer.id)

        assert summary["from_branch_code"] == "B01"
        assert summary["to_branch_code"] == "B02"
        assert summary["currency_code"] == "IDR"
        assert summary["description"] == "Kas mingguan"
        assert len(summary["transactions"]) == 2
        assert [t.id for t in transfer_service.list_transfers(status="pending")] == [transfer.id]
        assert transfer_service.list_transfers(status="approved") == []
