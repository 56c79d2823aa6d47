"""
Transaction ledger tests.

Verifies:
- Creation validates input and starts PENDING with a reference
- Edits regenerate or keep the reference depending on what changed
- Approved rows cannot be edited or deleted
- Closed accounting periods block create and update
- Slip projection
"""

from datetime import date
from decimal import Decimal

import pytest

from cashledger.exceptions import (
    ImmutableTransaction,
    NotFound,
    PeriodClosed,
    ValidationFailed,
)
from cashledger.extensions import db
from cashledger.models import Transaction
from cashledger.services import (
    approval_service,
    ledger_service,
    period_service,
    reference_data_service,
)


def _closed(_on_date):
    return "closed"


def _deposit(branch, currency, amount="50000", on_date=date(2025, 1, 5), **kwargs):
    return ledger_service.create_transaction(branch.id, currency.id, on_date, "in", amount, **kwargs).entity


# =============================================================================
# CREATE
# =============================================================================


class TestCreateTransaction:

    def test_creates_pending_row_with_event(self, db_session, b01, idr, clerk):
        outcome = ledger_service.create_transaction(
            b01.id, idr.id, "2025-01-05", "in", "50000.00",
            description="Setoran", actor_name="Budi", actor=clerk,
        )

        tx = outcome.entity
        assert tx.status == "pending"
        assert tx.amount == Decimal("50000.00")
        assert tx.transaction_date == date(2025, 1, 5)
        assert tx.created_by == clerk.id
        assert tx.actor_name == "Budi"
        assert tx.is_opening is False
        assert outcome.event_names() == ["transaction.created"]
        assert outcome.events[0].payload["reference"] == tx.reference
        assert outcome.events[0].actor_id == clerk.id

    @pytest.mark.parametrize("amount", ["0", "-5", "abc", None, "1.005"])
    def test_rejects_bad_amounts(self, db_session, b01, idr, amount):
        with pytest.raises(ValidationFailed) as excinfo:
            ledger_service.create_transaction(b01.id, idr.id, date(2025, 1, 5), "in", amount)
        assert excinfo.value.field == "amount"
        assert db.session.query(Transaction).count() == 0

    def test_rejects_unknown_type(self, db_session, b01, idr):
        with pytest.raises(ValidationFailed):
            ledger_service.create_transaction(b01.id, idr.id, date(2025, 1, 5), "refund", "10")

    def test_rejects_inactive_branch(self, db_session, b01, idr):
        reference_data_service.update_branch(b01.id, is_active=False)

        with pytest.raises(ValidationFailed):
            _deposit(b01, idr)

    def test_unknown_currency(self, db_session, b01):
        with pytest.raises(NotFound):
            ledger_service.create_transaction(b01.id, 999999, date(2025, 1, 5), "in", "10")

    def test_closed_period_blocks_create(self, db_session, b01, idr):
        with pytest.raises(PeriodClosed):
            ledger_service.create_transaction(
                b01.id, idr.id, date(2025, 1, 5), "in", "10", period_lookup=_closed,
            )
        assert db.session.query(Transaction).count() == 0

    def test_closed_period_record_blocks_create(self, db_session, b01, idr):
        period_service.create_period("2025-01", "2025-01-01", "2025-01-31", status="closed")

        with pytest.raises(PeriodClosed):
            _deposit(b01, idr, on_date=date(2025, 1, 15))

        # Outside the closed range is fine
        assert _deposit(b01, idr, on_date=date(2025, 2, 1)).status == "pending"


# =============================================================================
# UPDATE
# =============================================================================


class TestUpdateTransaction:

    def test_plain_field_edit_keeps_reference(self, db_session, b01, idr, clerk):
        tx = _deposit(b01, idr)

        outcome = ledger_service.update_transaction(
            tx.id, {"amount": "75000", "description": "corrected"}, actor=clerk,
        )

        assert outcome.entity.reference == "25011001"
        assert outcome.entity.amount == Decimal("75000.00")
        assert outcome.entity.updated_by == clerk.id
        assert set(outcome.events[0].payload["changed"]) == {"amount", "description"}

    def test_branch_change_regenerates_reference(self, db_session, b01, b02, idr):
        first = _deposit(b01, idr)
        _deposit(b01, idr)

        updated = ledger_service.update_transaction(first.id, {"branch_id": b02.id}).entity

        assert updated.reference == "25011003"
        assert updated.full_reference == "IDRB0225011003"

    def test_currency_only_change_keeps_sequence(self, db_session, b01, idr, usd):
        tx = _deposit(b01, idr)

        updated = ledger_service.update_transaction(tx.id, {"currency_id": usd.id}).entity

        assert updated.reference == "25011001"
        assert updated.full_reference == "USDB0125011001"

    def test_month_change_moves_to_new_group(self, db_session, b01, idr):
        tx = _deposit(b01, idr)

        outcome = ledger_service.update_transaction(tx.id, {"transaction_date": "2025-02-03"})

        assert outcome.entity.reference == "25021001"
        assert outcome.events[0].payload["previous_reference"] == "25011001"

    def test_same_month_date_change_keeps_reference(self, db_session, b01, idr):
        tx = _deposit(b01, idr)

        updated = ledger_service.update_transaction(tx.id, {"transaction_date": "2025-01-28"}).entity

        assert updated.reference == "25011001"

    def test_type_change_moves_to_other_flow(self, db_session, b01, idr):
        tx = _deposit(b01, idr)

        updated = ledger_service.update_transaction(tx.id, {"type": "out"}).entity

        assert updated.reference == "25010001"

    def test_approved_row_is_immutable(self, db_session, b01, idr, approver):
        tx = _deposit(b01, idr)
        approval_service.approve_transaction(tx.id, actor=approver)

        for changes in ({"amount": "1"}, {"description": "x"}, {"branch_id": b01.id}):
            with pytest.raises(ImmutableTransaction):
                ledger_service.update_transaction(tx.id, changes)

    @pytest.mark.parametrize("changes", [{"status": "rejected"}, {"reference": "25019999"}, {"colour": "red"}])
    def test_approved_row_is_immutable_whatever_the_fields(self, db_session, b01, idr, approver, changes):
        tx = _deposit(b01, idr)
        approval_service.approve_transaction(tx.id, actor=approver)

        with pytest.raises(ImmutableTransaction):
            ledger_service.update_transaction(tx.id, changes)

    def test_rejected_row_is_immutable(self, db_session, b01, idr, approver):
        tx = _deposit(b01, idr)
        approval_service.reject_transaction(tx.id, actor=approver)

        with pytest.raises(ImmutableTransaction):
            ledger_service.update_transaction(tx.id, {"amount": "1"})

    def test_closed_period_blocks_update(self, db_session, b01, idr):
        tx = _deposit(b01, idr)

        with pytest.raises(PeriodClosed):
            ledger_service.update_transaction(tx.id, {"description": "x"}, period_lookup=_closed)

    def test_moving_into_closed_period_blocked(self, db_session, b01, idr):
        tx = _deposit(b01, idr, on_date=date(2025, 2, 10))
        period_service.create_period("2025-01", "2025-01-01", "2025-01-31", status="closed")

        with pytest.raises(PeriodClosed):
            ledger_service.update_transaction(tx.id, {"transaction_date": "2025-01-20"})

        db.session.expire_all()
        assert db.session.get(Transaction, tx.id).transaction_date == date(2025, 2, 10)

    def test_unknown_field_rejected(self, db_session, b01, idr):
        tx = _deposit(b01, idr)

        with pytest.raises(ValidationFailed):
            ledger_service.update_transaction(tx.id, {"status": "approved"})

    def test_missing_transaction(self, db_session):
        with pytest.raises(NotFound):
            ledger_service.update_transaction(424242, {"description": "x"})


# =============================================================================
# DELETE
# =============================================================================


class TestDeleteTransaction:

    def test_deletes_pending_row(self, db_session, b01, idr, clerk):
        tx = _deposit(b01, idr)
        tx_id = tx.id

        outcome = ledger_service.delete_transaction(tx_id, actor=clerk)

        assert outcome.event_names() == ["transaction.deleted"]
        assert db.session.get(Transaction, tx_id) is None

    def test_approved_row_cannot_be_deleted(self, db_session, b01, idr, approver):
        tx = _deposit(b01, idr)
        approval_service.approve_transaction(tx.id, actor=approver)

        with pytest.raises(ImmutableTransaction):
            ledger_service.delete_transaction(tx.id)

        assert db.session.get(Transaction, tx.id) is not None


# =============================================================================
# READS
# =============================================================================


class TestReads:

    def test_print_slips(self, db_session, b01, idr):
        later = _deposit(b01, idr, amount="150000", on_date=date(2025, 1, 9), actor_name="Siti")
        earlier = ledger_service.create_transaction(
            b01.id, idr.id, date(2025, 1, 2), "out", "2500", actor_name="Andi",
        ).entity

        slips = ledger_service.print_slips([later.id, earlier.id])

        assert [s.transaction_id for s in slips] == [earlier.id, later.id]
        slip = slips[1]
        assert slip.full_reference == "IDRB0125011001"
        assert slip.branch_name == "Head Office"
        assert slip.amount_in_words == "seratus lima puluh ribu rupiah"
        assert slip.actor_name == "Siti"

    def test_print_slips_requires_ids(self, db_session):
        with pytest.raises(ValidationFailed):
            ledger_service.print_slips([])

    def test_list_filters(self, db_session, b01, b02, idr):
        _deposit(b01, idr)
        ledger_service.create_transaction(b02.id, idr.id, date(2025, 1, 6), "out", "10", actor_name="Rina")

        assert len(ledger_service.list_transactions()) == 2
        assert len(ledger_service.list_transactions(type="out")) == 1
        assert len(ledger_service.list_transactions(branch_id=b01.id)) == 1
        assert [t.actor_name for t in ledger_service.list_transactions(search="Rin")] == ["Rina"]
        assert ledger_service.list_transactions(status="approved") == []

    def test_get_transaction(self, db_session, b01, idr):
        tx = _deposit(b01, idr)
        assert ledger_service.get_transaction(tx.id).reference == tx.reference
        with pytest.raises(NotFound):
            ledger_service.get_transaction(987654)
