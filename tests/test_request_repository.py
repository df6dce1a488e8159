"""Tests for the issue-request workflow."""

from datetime import datetime, timedelta

import pytest

from circulation_engine.database.errors import (
    AlreadyProcessedError,
    DuplicateError,
    MemberNotEligibleError,
    NotFoundError,
    OutOfStockError,
    ReasonRequiredError,
    RequestLimitExceededError,
)
from circulation_engine.database.request_repository import IssueRequestRepository
from circulation_engine.database.schema import Book as BookDB
from circulation_engine.database.schema import BorrowRecord as BorrowDB
from circulation_engine.database.schema import Member as MemberDB
from circulation_engine.models.borrow import BorrowStatus
from circulation_engine.models.member import MemberStatus
from circulation_engine.models.request import RequestStatus
from tests.conftest import TODAY, add_book, add_loan, add_member, reload


@pytest.fixture
def repo(test_db_session) -> IssueRequestRepository:
    return IssueRequestRepository(test_db_session)


@pytest.fixture
def library(test_db_session):
    add_book(test_db_session, "book_algorithms", total_copies=1)
    add_book(test_db_session, "book_sapiens", total_copies=2, title="Sapiens", author="Harari")
    add_member(test_db_session, "member_ben")
    add_member(test_db_session, "member_chen")
    add_member(test_db_session, "member_asha", premium=True)


class TestCreateRequest:
    def test_creates_pending_request(self, repo, library):
        request = repo.create_request("member_ben", "book_algorithms")

        assert request.status == RequestStatus.PENDING
        assert request.id.startswith("req_")
        assert request.processed_at is None

    def test_unknown_member_or_book(self, repo, library):
        with pytest.raises(NotFoundError):
            repo.create_request("member_missing", "book_algorithms")
        with pytest.raises(NotFoundError):
            repo.create_request("member_ben", "book_missing")

    def test_member_must_be_approved(self, test_db_session, repo, library):
        add_member(test_db_session, "member_dara", status=MemberStatus.PENDING)

        with pytest.raises(MemberNotEligibleError):
            repo.create_request("member_dara", "book_algorithms")

    def test_one_pending_request_per_book(self, repo, library):
        repo.create_request("member_ben", "book_algorithms")

        with pytest.raises(DuplicateError):
            repo.create_request("member_ben", "book_algorithms")

    def test_cannot_request_a_book_already_on_loan(self, test_db_session, repo, library):
        add_loan(test_db_session, "borrow_1", "book_sapiens", "member_ben", TODAY + timedelta(days=7))

        with pytest.raises(DuplicateError, match="on loan"):
            repo.create_request("member_ben", "book_sapiens")

    def test_monthly_limit_for_normal_members(self, test_db_session, repo, clock, library):
        for n in range(4):
            add_book(test_db_session, f"book_extra_{n}", title=f"Extra {n}")
        for n in range(3):
            repo.create_request("member_ben", f"book_extra_{n}")

        with pytest.raises(RequestLimitExceededError):
            repo.create_request("member_ben", "book_extra_3")

        # The allowance resets with the calendar month
        clock.set(datetime(2026, 4, 1, 9, 0))
        assert repo.create_request("member_ben", "book_extra_3").status == RequestStatus.PENDING

    def test_premium_members_are_not_limited(self, test_db_session, repo, library):
        for n in range(5):
            add_book(test_db_session, f"book_extra_{n}", title=f"Extra {n}")
            repo.create_request("member_asha", f"book_extra_{n}")

        assert repo.list_requests(student_id="member_asha").total == 5


class TestApprove:
    def test_approval_issues_the_book(self, test_db_session, repo, notifier, library):
        request = repo.create_request("member_ben", "book_algorithms")

        approved = repo.approve(request.id, processed_by="librarian")

        assert approved.status == RequestStatus.APPROVED
        assert approved.processed_by == "librarian"
        assert approved.borrow_record_id is not None
        loan = reload(test_db_session, BorrowDB, approved.borrow_record_id)
        assert loan.status == BorrowStatus.BORROWED
        assert loan.due_date == TODAY + timedelta(days=14)
        assert reload(test_db_session, BookDB, "book_algorithms").available_copies == 0
        assert notifier.of_kind("request_approved") == [request.id]

    def test_explicit_due_date(self, test_db_session, repo, library):
        request = repo.create_request("member_ben", "book_sapiens")

        approved = repo.approve(request.id, due_date=TODAY + timedelta(days=2))

        loan = reload(test_db_session, BorrowDB, approved.borrow_record_id)
        assert loan.due_date == TODAY + timedelta(days=2)

    def test_second_approval_is_rejected(self, test_db_session, repo, library):
        request = repo.create_request("member_ben", "book_sapiens")
        repo.approve(request.id)

        with pytest.raises(AlreadyProcessedError):
            repo.approve(request.id)

        assert test_db_session.query(BorrowDB).count() == 1
        assert reload(test_db_session, BookDB, "book_sapiens").available_copies == 1

    def test_out_of_stock_leaves_request_pending(self, test_db_session, repo, library):
        first = repo.create_request("member_ben", "book_algorithms")
        second = repo.create_request("member_chen", "book_algorithms")
        repo.approve(first.id)

        with pytest.raises(OutOfStockError):
            repo.approve(second.id)

        assert repo.get_request(second.id).status == RequestStatus.PENDING
        assert reload(test_db_session, BookDB, "book_algorithms").available_copies == 0

    def test_member_suspended_after_requesting(self, test_db_session, repo, library):
        request = repo.create_request("member_ben", "book_sapiens")
        test_db_session.get(MemberDB, "member_ben").status = MemberStatus.SUSPENDED
        test_db_session.commit()

        with pytest.raises(MemberNotEligibleError):
            repo.approve(request.id)

        assert repo.get_request(request.id).status == RequestStatus.PENDING

    def test_unknown_request(self, repo, library):
        with pytest.raises(NotFoundError):
            repo.approve("req_missing")


class TestReject:
    def test_reject_with_reason(self, repo, notifier, library):
        request = repo.create_request("member_ben", "book_algorithms")

        rejected = repo.reject(request.id, "  Reference copy only ", processed_by="librarian")

        assert rejected.status == RequestStatus.REJECTED
        assert rejected.rejection_reason == "Reference copy only"
        assert notifier.of_kind("request_rejected") == [request.id]

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_reason_required(self, repo, library, reason):
        request = repo.create_request("member_ben", "book_algorithms")

        with pytest.raises(ReasonRequiredError):
            repo.reject(request.id, reason)

        assert repo.get_request(request.id).status == RequestStatus.PENDING

    def test_reason_checked_before_lookup(self, repo, library):
        with pytest.raises(ReasonRequiredError):
            repo.reject("req_missing", "")

    def test_cannot_reject_approved_request(self, repo, library):
        request = repo.create_request("member_ben", "book_sapiens")
        repo.approve(request.id)

        with pytest.raises(AlreadyProcessedError):
            repo.reject(request.id, "Too late")


class TestBulkApprove:
    def test_items_see_earlier_items_stock(self, test_db_session, repo, library):
        ben = repo.create_request("member_ben", "book_algorithms")
        chen = repo.create_request("member_chen", "book_algorithms")
        asha = repo.create_request("member_asha", "book_sapiens")

        result = repo.bulk_approve([ben.id, chen.id, asha.id], processed_by="librarian")

        assert result.approved_count == 2
        assert result.succeeded == [ben.id, asha.id]
        assert [(f.id, f.reason) for f in result.failed_requests] == [(chen.id, "OutOfStock")]
        assert repo.get_request(chen.id).status == RequestStatus.PENDING

    def test_order_decides_who_gets_the_last_copy(self, repo, library):
        ben = repo.create_request("member_ben", "book_algorithms")
        chen = repo.create_request("member_chen", "book_algorithms")

        result = repo.bulk_approve([chen.id, ben.id])

        assert result.succeeded == [chen.id]
        assert repo.get_request(ben.id).status == RequestStatus.PENDING

    def test_reports_unknown_and_processed_ids(self, repo, library):
        done = repo.create_request("member_ben", "book_sapiens")
        repo.reject(done.id, "Duplicate copy")

        result = repo.bulk_approve([done.id, "req_missing"])

        assert result.approved_count == 0
        assert {f.id: f.reason for f in result.failed_requests} == {
            done.id: "AlreadyProcessed",
            "req_missing": "NotFound",
        }

    def test_empty_list(self, repo, library):
        result = repo.bulk_approve([])
        assert result.approved_count == 0
        assert result.failed_requests == []


class TestListRequests:
    def test_filters_by_status_oldest_first(self, repo, clock, library):
        first = repo.create_request("member_ben", "book_algorithms")
        clock.advance(minutes=5)
        second = repo.create_request("member_chen", "book_sapiens")
        clock.advance(minutes=5)
        third = repo.create_request("member_asha", "book_sapiens")
        repo.reject(third.id, "No")

        pending = repo.list_requests(status=RequestStatus.PENDING)

        assert [r.id for r in pending.items] == [first.id, second.id]
        assert repo.list_requests(status=RequestStatus.REJECTED).total == 1
