"""Tests for the nightly reconciliation job."""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from circulation_engine.database.schema import Book as BookDB
from circulation_engine.database.schema import BorrowRecord as BorrowDB
from circulation_engine.database.waitlist_repository import WaitlistRepository
from circulation_engine.models.borrow import PenaltyStatus
from circulation_engine.models.waitlist import WaitlistStatus
from circulation_engine.scheduler import ReconciliationJob
from tests.conftest import TODAY, add_book, add_loan, add_member, reload


@pytest.fixture
def job(db_manager) -> ReconciliationJob:
    return ReconciliationJob(db_manager)


class TestSchedule:
    def test_runs_later_the_same_day(self, job):
        assert job.next_run_after(datetime(2026, 3, 10, 1, 30)) == datetime(2026, 3, 10, 2, 0)

    def test_rolls_over_to_tomorrow(self, job):
        assert job.next_run_after(datetime(2026, 3, 10, 10, 0)) == datetime(2026, 3, 11, 2, 0)

    def test_exactly_on_time_means_tomorrow(self, job):
        assert job.next_run_after(datetime(2026, 3, 10, 2, 0)) == datetime(2026, 3, 11, 2, 0)

    def test_configured_time(self, db_manager, test_config):
        config = test_config.model_copy(update={"reconciliation_hour": 23, "reconciliation_minute": 45})
        job = ReconciliationJob(db_manager, config=config)

        assert job.next_run_after(datetime(2026, 3, 10, 10, 0)) == datetime(2026, 3, 10, 23, 45)


class TestRunOnce:
    def test_refreshes_fines(self, test_db_session, job):
        add_book(test_db_session, total_copies=2)
        add_member(test_db_session)
        add_loan(test_db_session, "borrow_1", "book_algorithms", "member_ben", TODAY - timedelta(days=2))

        report = job.run_once()

        assert report.updated == 1
        assert job.last_report is report
        record = reload(test_db_session, BorrowDB, "borrow_1")
        assert record.penalty_amount == Decimal("100.00")
        assert record.penalty_status == PenaltyStatus.PENDING

    def test_second_run_is_a_no_op(self, test_db_session, job):
        add_book(test_db_session, total_copies=2)
        add_member(test_db_session)
        add_loan(test_db_session, "borrow_1", "book_algorithms", "member_ben", TODAY - timedelta(days=2))

        job.run_once()
        report = job.run_once()

        assert report.updated == 0
        assert report.unchanged == 1

    def test_hands_stranded_copies_to_the_waitlist(self, test_db_session, job, notifier):
        add_book(test_db_session, total_copies=1, available_copies=0)
        add_member(test_db_session, "member_chen")
        WaitlistRepository(test_db_session).join("book_algorithms", "member_chen")
        test_db_session.get(BookDB, "book_algorithms").available_copies = 1
        test_db_session.commit()

        job.run_once()

        test_db_session.expire_all()
        entry = WaitlistRepository(test_db_session).get_entry("book_algorithms", "member_chen")
        assert entry.status == WaitlistStatus.PROMOTED
        assert reload(test_db_session, BookDB, "book_algorithms").available_copies == 0
        assert notifier.of_kind("waitlist_promoted") == ["member_chen"]


class TestRunForever:
    async def test_stops_when_asked(self, job):
        stop = asyncio.Event()
        stop.set()

        await asyncio.wait_for(job.run_forever(stop), timeout=1)

        assert job.last_report is None

    async def test_sweeps_at_the_scheduled_time(self, job, clock, monkeypatch):
        clock.set(datetime(2026, 3, 10, 1, 59, 59, 900000))
        runs = []

        def fake_run_once():
            runs.append(clock.now())
            clock.advance(minutes=1)

        monkeypatch.setattr(job, "run_once", fake_run_once)
        stop = asyncio.Event()
        task = asyncio.create_task(job.run_forever(stop))

        await asyncio.sleep(0.5)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        assert len(runs) == 1
