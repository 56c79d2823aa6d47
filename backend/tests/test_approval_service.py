"""
Approval workflow tests.

Verifies:
- pending -> approved | rejected, both terminal
- Capability check (Unauthorized) with default and injected checkers
- Closed period blocks approval but not rejection
- Scan-to-approve on the full reference
- Opening seeds stay out of the workflow and the pending queue
- A decision committed by another unit wins; the late one is AlreadyProcessed
"""

from datetime import date

import pytest
from sqlalchemy import update

from cashledger.exceptions import (
    AlreadyProcessed,
    NotFound,
    PeriodClosed,
    Unauthorized,
    ValidationFailed,
)
from cashledger.extensions import db
from cashledger.models import Transaction
from cashledger.services import (
    approval_service,
    ledger_service,
    opening_balance_service,
    period_service,
)
from cashledger.time_utils import utcnow


def _pending(branch, currency, on_date=date(2025, 1, 5), tx_type="in", amount="50000"):
    return ledger_service.create_transaction(branch.id, currency.id, on_date, tx_type, amount).entity


class TestApprove:

    def test_approve_stamps_row(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr)

        outcome = approval_service.approve_transaction(tx.id, actor=approver)

        assert outcome.entity.status == "approved"
        assert outcome.entity.approved_by == approver.id
        assert outcome.entity.approved_at is not None
        assert outcome.event_names() == ["transaction.approved"]
        assert outcome.events[0].occurred_at == outcome.entity.approved_at

    def test_approve_twice_is_already_processed(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr)
        approval_service.approve_transaction(tx.id, actor=approver)

        with pytest.raises(AlreadyProcessed):
            approval_service.approve_transaction(tx.id, actor=approver)

    def test_rejected_cannot_be_approved(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr)
        approval_service.reject_transaction(tx.id, actor=approver)

        with pytest.raises(AlreadyProcessed):
            approval_service.approve_transaction(tx.id, actor=approver)

    def test_clerk_is_unauthorized(self, db_session, b01, idr, clerk):
        tx = _pending(b01, idr)

        with pytest.raises(Unauthorized):
            approval_service.approve_transaction(tx.id, actor=clerk)

        db.session.expire_all()
        assert db.session.get(Transaction, tx.id).status == "pending"

    def test_injected_capability_checker(self, db_session, b01, idr, clerk, approver):
        tx = _pending(b01, idr)

        with pytest.raises(Unauthorized):
            approval_service.approve_transaction(tx.id, actor=approver, can_approve=lambda actor: False)

        outcome = approval_service.approve_transaction(tx.id, actor=clerk, can_approve=lambda actor: True)
        assert outcome.entity.status == "approved"

    def test_missing_transaction(self, db_session, approver):
        with pytest.raises(NotFound):
            approval_service.approve_transaction(123456, actor=approver)


class TestPeriodGate:

    def test_closed_period_blocks_approval(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr, on_date=date(2025, 1, 5))
        period_service.create_period("2025-01", "2025-01-01", "2025-01-31", status="closed")

        with pytest.raises(PeriodClosed):
            approval_service.approve_transaction(tx.id, actor=approver)

    def test_open_period_allows_approval(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr, on_date=date(2025, 1, 5))
        period_service.create_period("2025-01", "2025-01-01", "2025-01-31", status="open")

        assert approval_service.approve_transaction(tx.id, actor=approver).entity.status == "approved"

    def test_no_period_allows_approval(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr, on_date=date(2025, 1, 5))

        assert approval_service.approve_transaction(tx.id, actor=approver).entity.status == "approved"

    def test_injected_lookup(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr)
        seen = []

        def lookup(on_date):
            seen.append(on_date)
            return "closed"

        with pytest.raises(PeriodClosed):
            approval_service.approve_transaction(tx.id, actor=approver, period_lookup=lookup)
        assert seen == [date(2025, 1, 5)]

    def test_rejection_ignores_closed_period(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr, on_date=date(2025, 1, 5))
        period_service.create_period("2025-01", "2025-01-01", "2025-01-31", status="closed")

        assert approval_service.reject_transaction(tx.id, actor=approver).entity.status == "rejected"


class TestReject:

    def test_reject_stamps_and_clears_approval(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr)

        outcome = approval_service.reject_transaction(tx.id, actor=approver)

        assert outcome.entity.status == "rejected"
        assert outcome.entity.rejected_by == approver.id
        assert outcome.entity.rejected_at is not None
        assert outcome.entity.approved_at is None
        assert outcome.entity.approved_by is None
        assert outcome.event_names() == ["transaction.rejected"]

    def test_reject_twice_is_already_processed(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr)
        approval_service.reject_transaction(tx.id, actor=approver)

        with pytest.raises(AlreadyProcessed):
            approval_service.reject_transaction(tx.id, actor=approver)


class TestScanAndApprove:

    def test_scan_matches_full_reference(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr)

        outcome = approval_service.scan_and_approve("IDRB0125011001", actor=approver)

        assert outcome.entity.id == tx.id
        assert outcome.entity.status == "approved"

    def test_scanner_noise_is_stripped(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr)

        outcome = approval_service.scan_and_approve(" IDRB01\t25011001\r\n", actor=approver)

        assert outcome.entity.id == tx.id

    def test_short_reference_does_not_match(self, db_session, b01, idr, approver):
        _pending(b01, idr)

        with pytest.raises(NotFound):
            approval_service.scan_and_approve("25011001", actor=approver)

    def test_scan_already_processed(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr)
        approval_service.approve_transaction(tx.id, actor=approver)

        with pytest.raises(AlreadyProcessed):
            approval_service.scan_and_approve("IDRB0125011001", actor=approver)

    def test_empty_scan(self, db_session, approver):
        with pytest.raises(ValidationFailed):
            approval_service.scan_and_approve(" \r\n", actor=approver)


class TestOpeningSeedsStayOut:

    def test_seed_not_in_pending_queue(self, db_session, b01, idr, b02):
        opening_balance_service.create_opening_balance(b01.id, idr.id, "1000000", "2025-01-01")
        tx = _pending(b01, idr)
        other = _pending(b02, idr)

        queue = approval_service.pending_queue()
        assert [t.id for t in queue] == [tx.id, other.id]
        assert [t.id for t in approval_service.pending_queue(branch_id=b02.id)] == [other.id]

    def test_seed_cannot_be_approved(self, db_session, b01, idr, approver):
        opening_balance_service.create_opening_balance(b01.id, idr.id, "1000000", "2025-01-01")
        seed = db.session.query(Transaction).filter_by(is_opening=True).one()

        with pytest.raises(ValidationFailed):
            approval_service.approve_transaction(seed.id, actor=approver)


def _approve_elsewhere(tx_id, approver_id=999):
    """Commit an approval outside the session, as a competing unit would."""
    with db.engine.begin() as conn:
        conn.execute(
            update(Transaction)
            .where(Transaction.id == tx_id)
            .values(status="approved", approved_at=utcnow(), approved_by=approver_id)
        )


class TestCompetingDecisions:

    def test_scan_after_approval_elsewhere(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr)
        code = tx.full_reference

        def approved_meanwhile(actor):
            _approve_elsewhere(tx.id)
            return True

        with pytest.raises(AlreadyProcessed):
            approval_service.scan_and_approve(code, actor=approver, can_approve=approved_meanwhile)

        db.session.expire_all()
        assert db.session.get(Transaction, tx.id).approved_by == 999

    def test_approval_losing_the_claim(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr)

        def approved_meanwhile(on_date):
            _approve_elsewhere(tx.id)
            return "open"

        with pytest.raises(AlreadyProcessed):
            approval_service.approve_transaction(tx.id, actor=approver, period_lookup=approved_meanwhile)

        db.session.expire_all()
        stored = db.session.get(Transaction, tx.id)
        assert stored.status == "approved"
        assert stored.approved_by == 999

    def test_stale_copy_is_refreshed_before_rejecting(self, db_session, b01, idr, approver):
        tx = _pending(b01, idr)
        # Held in the session as pending
        assert tx.status == "pending"

        def approved_meanwhile(actor):
            _approve_elsewhere(tx.id)
            return True

        with pytest.raises(AlreadyProcessed) as excinfo:
            approval_service.reject_transaction(tx.id, actor=approver, can_approve=approved_meanwhile)

        assert excinfo.value.status == "approved"
        db.session.expire_all()
        assert db.session.get(Transaction, tx.id).rejected_at is None
