"""Test configuration and fixtures for the Circulation Engine.

Every test gets:
1. Its own SQLite ledger file, installed as the global database manager
2. A test configuration installed as the global config
3. A FixedClock, so overdue days and waiting days are deterministic
4. A recording notifier, so notices can be asserted on
"""

import os
from collections.abc import Generator
from datetime import date, datetime, timedelta
from decimal import Decimal
from pathlib import Path

import logfire
import pytest
from sqlalchemy.orm import Session

from circulation_engine.clock import FixedClock, reset_clock, set_clock
from circulation_engine.config import EngineConfig, reset_config, set_config
from circulation_engine.database.schema import Book as BookDB
from circulation_engine.database.schema import BorrowRecord as BorrowDB
from circulation_engine.database.schema import Member as MemberDB
from circulation_engine.database.session import DatabaseManager, set_db_manager
from circulation_engine.models.borrow import BorrowStatus, PenaltyStatus, PenaltyType
from circulation_engine.models.member import MembershipType, MemberStatus
from circulation_engine.notifications import set_notifier

# Spans and metrics stay local during tests
logfire.configure(send_to_logfire=False, console=False)

# Tuesday 10 March 2026, mid-morning
NOW = datetime(2026, 3, 10, 10, 0, 0)
TODAY = NOW.date()


class RecordingNotifier:
    """Collects notices instead of delivering them."""

    def __init__(self):
        self.events: list[tuple[str, object]] = []

    def request_approved(self, request, record) -> None:
        self.events.append(("request_approved", request.id))

    def request_rejected(self, request) -> None:
        self.events.append(("request_rejected", request.id))

    def acquisition_reviewed(self, request) -> None:
        self.events.append(("acquisition_reviewed", request.id))

    def waitlist_promoted(self, entry, record) -> None:
        self.events.append(("waitlist_promoted", entry.student_id))

    def penalty_settled(self, summary) -> None:
        self.events.append(("penalty_settled", summary.borrow_record_id))

    def of_kind(self, kind: str) -> list[object]:
        return [payload for name, payload in self.events if name == kind]


# === Test Database Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    """Provide a temporary ledger path for each test."""
    return tmp_path / "test_circulation.db"


@pytest.fixture
def test_database_url(test_db_path: Path) -> str:
    return f"sqlite:///{test_db_path}"


@pytest.fixture
def test_config(test_db_path: Path) -> Generator[EngineConfig, None, None]:
    """Provide a test configuration with the default policy numbers."""
    reset_config()
    config = EngineConfig(
        engine_name="test-circulation",
        engine_version="0.0.1-test",
        database_path=test_db_path,
        debug=True,
        log_level="DEBUG",
        enable_reconciliation_job=False,
    )
    set_config(config)
    yield config
    reset_config()


@pytest.fixture
def clock() -> Generator[FixedClock, None, None]:
    fixed = FixedClock(NOW)
    set_clock(fixed)
    yield fixed
    reset_clock()


@pytest.fixture
def notifier() -> Generator[RecordingNotifier, None, None]:
    recording = RecordingNotifier()
    set_notifier(recording)
    yield recording
    set_notifier(None)


@pytest.fixture
def db_manager(
    test_database_url: str, test_config: EngineConfig, clock: FixedClock, notifier: RecordingNotifier
) -> Generator[DatabaseManager, None, None]:
    """A fresh ledger installed as the global database manager."""
    manager = DatabaseManager(test_database_url)
    manager.init_database()
    set_db_manager(manager)
    yield manager
    set_db_manager(None)


@pytest.fixture
def test_db_session(db_manager: DatabaseManager) -> Generator[Session, None, None]:
    """Provide a session on the test ledger."""
    session = db_manager.create_session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# === Test Data Helpers ===


def add_book(
    session: Session,
    book_id: str = "book_algorithms",
    total_copies: int = 1,
    available_copies: int | None = None,
    mrp: Decimal | None = Decimal("500.00"),
    title: str = "Introduction to Algorithms",
    author: str = "Cormen",
    publisher: str | None = "MIT Press",
) -> BookDB:
    book = BookDB(
        id=book_id,
        title=title,
        author=author,
        publisher=publisher,
        mrp=mrp,
        total_copies=total_copies,
        available_copies=total_copies if available_copies is None else available_copies,
    )
    session.add(book)
    session.commit()
    return book


def add_member(
    session: Session,
    member_id: str = "member_ben",
    premium: bool = False,
    status: MemberStatus = MemberStatus.APPROVED,
) -> MemberDB:
    member = MemberDB(
        id=member_id,
        name=member_id.replace("member_", "").title(),
        email=f"{member_id}@example.edu",
        status=status,
        membership_type=MembershipType.PREMIUM if premium else MembershipType.NORMAL,
    )
    session.add(member)
    session.commit()
    return member


def add_loan(
    session: Session,
    record_id: str,
    book_id: str,
    student_id: str,
    due_date: date,
    status: BorrowStatus = BorrowStatus.BORROWED,
    returned_at: datetime | None = None,
    take_copy: bool = True,
) -> BorrowDB:
    """Insert a loan directly, as if it had been issued earlier."""
    record = BorrowDB(
        id=record_id,
        book_id=book_id,
        student_id=student_id,
        borrowed_at=datetime.combine(due_date - timedelta(days=14), NOW.time()),
        due_date=due_date,
        returned_at=returned_at,
        status=status,
        penalty_amount=Decimal("0.00"),
        amount_paid=Decimal("0.00"),
        outstanding_balance=Decimal("0.00"),
        penalty_type=PenaltyType.NONE,
        penalty_status=PenaltyStatus.NONE,
    )
    session.add(record)
    if take_copy and status == BorrowStatus.BORROWED:
        book = session.get(BookDB, book_id)
        book.available_copies -= 1
    session.commit()
    return record


def reload(session: Session, model, key: str):
    """Read a row as currently committed, ignoring the identity map."""
    session.expire_all()
    return session.get(model, key)


# === Cleanup Fixtures ===


@pytest.fixture(autouse=True)
def cleanup_after_test():
    """Automatic cleanup after each test."""
    yield

    reset_config()
    reset_clock()
    set_notifier(None)

    for key in list(os.environ.keys()):
        if key.startswith("CIRCULATION_TEST_"):
            del os.environ[key]
