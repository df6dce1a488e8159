"""Tests for penalty assessment, settlement and reconciliation."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from circulation_engine.database.errors import (
    AlreadyProcessedError,
    DuplicateError,
    InvalidAmountError,
    NotFoundError,
)
from circulation_engine.database.penalty_repository import PenaltyRepository
from circulation_engine.database.schema import BorrowRecord as BorrowDB
from circulation_engine.models.borrow import BorrowStatus, PenaltyStatus, PenaltyType
from circulation_engine.models.penalty import PenaltyAction
from tests.conftest import NOW, TODAY, add_book, add_loan, add_member, reload


@pytest.fixture
def repo(test_db_session) -> PenaltyRepository:
    return PenaltyRepository(test_db_session)


@pytest.fixture
def overdue_loan(test_db_session):
    """Three days late on a 500.00 book: 150.00 owed today."""
    add_book(test_db_session, total_copies=3)
    add_member(test_db_session)
    return add_loan(
        test_db_session, "borrow_1", "book_algorithms", "member_ben", TODAY - timedelta(days=3)
    )


@pytest.fixture
def pending_penalty(repo, overdue_loan):
    return repo.compute_penalty("borrow_1")


class TestComputePenalty:
    def test_prices_overdue_loan(self, repo, overdue_loan):
        record = repo.compute_penalty("borrow_1")

        assert record.penalty_amount == Decimal("150.00")
        assert record.outstanding_balance == Decimal("150.00")
        assert record.penalty_type == PenaltyType.LATE
        assert record.penalty_status == PenaltyStatus.PENDING
        assert record.status == BorrowStatus.BORROWED

    def test_is_idempotent(self, test_db_session, repo, overdue_loan):
        first = repo.compute_penalty("borrow_1")
        second = repo.compute_penalty("borrow_1")

        assert second.penalty_amount == first.penalty_amount
        assert second.version_id == first.version_id

    def test_accrues_day_by_day(self, repo, clock, overdue_loan):
        repo.compute_penalty("borrow_1")
        clock.advance(days=1)

        assert repo.compute_penalty("borrow_1").penalty_amount == Decimal("200.00")

    def test_loan_not_yet_due(self, test_db_session, repo):
        add_book(test_db_session)
        add_member(test_db_session)
        add_loan(test_db_session, "borrow_1", "book_algorithms", "member_ben", TODAY)

        record = repo.compute_penalty("borrow_1")

        assert record.penalty_status == PenaltyStatus.NONE
        assert record.penalty_amount == Decimal("0.00")

    def test_returned_loan_is_frozen_at_return_date(self, test_db_session, repo, clock):
        add_book(test_db_session)
        add_member(test_db_session)
        add_loan(
            test_db_session,
            "borrow_1",
            "book_algorithms",
            "member_ben",
            TODAY - timedelta(days=5),
            status=BorrowStatus.LATE_RETURNED,
            returned_at=NOW - timedelta(days=3),
        )
        clock.advance(days=10)

        record = repo.compute_penalty("borrow_1")

        assert record.penalty_amount == Decimal("100.00")

    def test_settled_penalty_is_not_recomputed(self, repo, clock, pending_penalty):
        repo.pay_penalty("borrow_1", "150.00")
        clock.advance(days=5)

        record = repo.compute_penalty("borrow_1")

        assert record.penalty_status == PenaltyStatus.PAID
        assert record.penalty_amount == Decimal("150.00")

    def test_partial_payment_survives_recompute(self, repo, clock, pending_penalty):
        repo.pay_penalty("borrow_1", "50.00")
        clock.advance(days=1)

        record = repo.compute_penalty("borrow_1")

        assert record.penalty_amount == Decimal("200.00")
        assert record.amount_paid == Decimal("50.00")
        assert record.outstanding_balance == Decimal("150.00")

    def test_unknown_record(self, repo, db_manager):
        with pytest.raises(NotFoundError):
            repo.compute_penalty("borrow_missing")


class TestPreviewFine:
    def test_quotes_without_writing(self, test_db_session, repo, overdue_loan):
        quote = repo.preview_fine("borrow_1")

        assert quote.total == Decimal("150.00")
        assert quote.overdue_days == 3
        assert quote.daily_rate == Decimal("50.00")

        record = reload(test_db_session, BorrowDB, "borrow_1")
        assert record.penalty_status == PenaltyStatus.NONE
        assert record.version_id == 1

    def test_matches_compute(self, repo, overdue_loan):
        quote = repo.preview_fine("borrow_1")
        assert repo.compute_penalty("borrow_1").penalty_amount == quote.total

    def test_unknown_mrp(self, test_db_session, repo):
        add_book(test_db_session, book_id="book_zine", mrp=None)
        add_member(test_db_session)
        add_loan(test_db_session, "borrow_1", "book_zine", "member_ben", TODAY - timedelta(days=9))

        quote = repo.preview_fine("borrow_1")

        assert quote.mrp_known is False
        assert quote.total == Decimal("0.00")


class TestPayPenalty:
    def test_partial_then_full(self, repo, notifier, pending_penalty):
        partial = repo.pay_penalty("borrow_1", "50.00")
        assert partial.outstanding_balance == Decimal("100.00")
        assert partial.amount_paid == Decimal("50.00")
        assert partial.penalty_status == PenaltyStatus.PENDING
        assert notifier.of_kind("penalty_settled") == []

        full = repo.pay_penalty("borrow_1", Decimal("100"))
        assert full.outstanding_balance == Decimal("0.00")
        assert full.penalty_status == PenaltyStatus.PAID
        assert full.settlement_method == "payment"
        assert notifier.of_kind("penalty_settled") == ["borrow_1"]

    def test_overpayment_rejected(self, test_db_session, repo, pending_penalty):
        with pytest.raises(InvalidAmountError):
            repo.pay_penalty("borrow_1", "150.01")

        record = reload(test_db_session, BorrowDB, "borrow_1")
        assert record.outstanding_balance == Decimal("150.00")
        assert record.penalty_status == PenaltyStatus.PENDING

    @pytest.mark.parametrize("amount", ["0", "-10", "abc", "10.005", "NaN"])
    def test_bad_amounts(self, repo, pending_penalty, amount):
        with pytest.raises(InvalidAmountError):
            repo.pay_penalty("borrow_1", amount)

    def test_no_pending_penalty(self, test_db_session, repo):
        add_book(test_db_session)
        add_member(test_db_session)
        add_loan(test_db_session, "borrow_1", "book_algorithms", "member_ben", TODAY)

        with pytest.raises(InvalidAmountError):
            repo.pay_penalty("borrow_1", "10.00")

    def test_partial_payments_disabled(self, test_db_session, test_config, pending_penalty):
        config = test_config.model_copy(update={"allow_partial_payments": False})
        strict = PenaltyRepository(test_db_session, config=config)

        with pytest.raises(InvalidAmountError, match="Partial"):
            strict.pay_penalty("borrow_1", "50.00")
        assert strict.pay_penalty("borrow_1", "150.00").penalty_status == PenaltyStatus.PAID

    def test_paying_a_paid_penalty(self, repo, pending_penalty):
        repo.pay_penalty("borrow_1", "150.00")

        with pytest.raises(AlreadyProcessedError):
            repo.pay_penalty("borrow_1", "1.00")

    def test_idempotency_key_prevents_double_payment(self, repo, pending_penalty):
        first = repo.pay_penalty("borrow_1", "50.00", idempotency_key="till-42")
        again = repo.pay_penalty("borrow_1", "50.00", idempotency_key="till-42")

        assert again.outstanding_balance == first.outstanding_balance == Decimal("100.00")
        assert len(repo.list_penalty_history("borrow_1")) == 1

    def test_idempotency_key_bound_to_one_record(self, test_db_session, repo, pending_penalty):
        add_loan(test_db_session, "borrow_2", "book_algorithms", "member_ben", TODAY - timedelta(days=1))
        repo.compute_penalty("borrow_2")
        repo.pay_penalty("borrow_1", "50.00", idempotency_key="till-42")

        with pytest.raises(DuplicateError):
            repo.pay_penalty("borrow_2", "50.00", idempotency_key="till-42")


class TestWaiveAndMarkPaid:
    def test_waive(self, repo, notifier, pending_penalty):
        summary = repo.waive_penalty("borrow_1", performed_by="librarian")

        assert summary.penalty_status == PenaltyStatus.WAIVED
        assert summary.outstanding_balance == Decimal("0.00")
        assert summary.penalty_amount == Decimal("150.00")
        assert summary.settlement_method == "waiver"
        assert notifier.of_kind("penalty_settled") == ["borrow_1"]

    def test_waive_is_final(self, repo, clock, pending_penalty):
        repo.waive_penalty("borrow_1")

        with pytest.raises(AlreadyProcessedError):
            repo.waive_penalty("borrow_1")
        with pytest.raises(AlreadyProcessedError):
            repo.pay_penalty("borrow_1", "10.00")
        with pytest.raises(AlreadyProcessedError):
            repo.mark_penalty_as_paid("borrow_1")

        clock.advance(days=3)
        assert repo.compute_penalty("borrow_1").penalty_status == PenaltyStatus.WAIVED

    def test_waive_before_any_penalty(self, test_db_session, repo, clock):
        add_book(test_db_session)
        add_member(test_db_session)
        add_loan(test_db_session, "borrow_1", "book_algorithms", "member_ben", TODAY)

        repo.waive_penalty("borrow_1")
        clock.advance(days=4)

        record = repo.compute_penalty("borrow_1")
        assert record.penalty_status == PenaltyStatus.WAIVED
        assert record.outstanding_balance == Decimal("0.00")

    def test_mark_paid(self, repo, pending_penalty):
        summary = repo.mark_penalty_as_paid("borrow_1", performed_by="librarian")

        assert summary.penalty_status == PenaltyStatus.PAID
        assert summary.settlement_method == "manual"
        assert summary.outstanding_balance == Decimal("0.00")

    def test_waive_after_mark_paid_fails(self, repo, pending_penalty):
        repo.mark_penalty_as_paid("borrow_1")

        with pytest.raises(AlreadyProcessedError):
            repo.waive_penalty("borrow_1")

    def test_mark_paid_without_penalty(self, test_db_session, repo):
        add_book(test_db_session)
        add_member(test_db_session)
        add_loan(test_db_session, "borrow_1", "book_algorithms", "member_ben", TODAY)

        with pytest.raises(InvalidAmountError):
            repo.mark_penalty_as_paid("borrow_1")

    def test_audit_trail(self, repo, clock, pending_penalty):
        repo.pay_penalty("borrow_1", "50.00", performed_by="desk")
        clock.advance(minutes=5)
        repo.mark_penalty_as_paid("borrow_1", performed_by="librarian")

        history = repo.list_penalty_history("borrow_1")

        assert [tx.action for tx in history] == [
            PenaltyAction.PAYMENT,
            PenaltyAction.MANUAL_SETTLEMENT,
        ]
        assert [tx.balance_after for tx in history] == [Decimal("100.00"), Decimal("0.00")]


class TestReconcile:
    @pytest.fixture
    def loans(self, test_db_session):
        add_book(test_db_session, total_copies=5)
        add_member(test_db_session)
        add_loan(test_db_session, "borrow_a", "book_algorithms", "member_ben", TODAY - timedelta(days=1))
        add_loan(test_db_session, "borrow_b", "book_algorithms", "member_ben", TODAY - timedelta(days=4))
        add_loan(test_db_session, "borrow_c", "book_algorithms", "member_ben", TODAY + timedelta(days=2))
        add_loan(
            test_db_session,
            "borrow_d",
            "book_algorithms",
            "member_ben",
            TODAY - timedelta(days=8),
            status=BorrowStatus.RETURNED,
            returned_at=datetime(2026, 2, 1),
            take_copy=False,
        )

    def test_updates_every_overdue_loan(self, test_db_session, repo, loans):
        report = repo.reconcile_penalties()

        assert report.scanned == 2
        assert report.updated == 2
        assert report.skipped == []
        assert reload(test_db_session, BorrowDB, "borrow_a").penalty_amount == Decimal("50.00")
        assert reload(test_db_session, BorrowDB, "borrow_b").penalty_amount == Decimal("200.00")
        assert reload(test_db_session, BorrowDB, "borrow_c").penalty_status == PenaltyStatus.NONE
        assert reload(test_db_session, BorrowDB, "borrow_d").penalty_status == PenaltyStatus.NONE

    def test_second_run_changes_nothing(self, repo, loans):
        repo.reconcile_penalties()
        report = repo.reconcile_penalties()

        assert report.scanned == 2
        assert report.updated == 0
        assert report.unchanged == 2

    def test_settled_loans_are_left_alone(self, repo, clock, loans):
        repo.reconcile_penalties()
        repo.waive_penalty("borrow_a")
        clock.advance(days=1)

        report = repo.reconcile_penalties()

        assert report.scanned == 1
        assert repo.get_penalty("borrow_a").penalty_status == PenaltyStatus.WAIVED

    def test_list_pending_penalties(self, repo, loans):
        repo.reconcile_penalties()

        pending = repo.list_pending_penalties()

        assert [p.borrow_record_id for p in pending.items] == ["borrow_b", "borrow_a"]
        assert repo.list_pending_penalties(student_id="member_other").total == 0
