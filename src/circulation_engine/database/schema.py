"""
SQLAlchemy database schema for the Circulation Engine.

These tables are the ledger: the single source of truth for copy counts,
loans, penalties, requests and waitlists. Nothing is cached between calls.

Contended values and how they are protected:
1. Book copy counters are only changed through conditional UPDATE statements
   (see CirculationRepository), never by read-modify-write in Python
2. Borrow records carry a version counter so that a stale penalty write from
   a reconciliation sweep fails instead of overwriting a newer payment
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from ..models.borrow import BorrowStatus, PenaltyStatus, PenaltyType, SettlementMethod
from ..models.member import MembershipType, MemberStatus
from ..models.penalty import PenaltyAction
from ..models.request import RequestStatus
from ..models.waitlist import WaitlistStatus

Base = declarative_base()

Money = Numeric(10, 2)


class Book(Base):
    """
    Books table - the catalog fields circulation needs.

    available_copies moves down on issue and up on return; total_copies
    moves down when a copy is written off as lost and up when an
    acquisition adds one.
    """

    __tablename__ = "books"

    id = Column(String(50), primary_key=True)
    title = Column(String(500), nullable=False)
    author = Column(String(200), nullable=True)
    publisher = Column(String(200), nullable=True)
    edition = Column(String(50), nullable=True)
    genre = Column(String(100), nullable=True)
    mrp = Column(Money, nullable=True)
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, default=func.now(), onupdate=func.now())

    borrow_records = relationship("BorrowRecord", back_populates="book")
    waitlist_entries = relationship("WaitlistEntry", back_populates="book")

    __table_args__ = (
        Index("idx_book_title", "title"),
        Index("idx_book_identity", "title", "author", "publisher"),
        CheckConstraint("available_copies >= 0", name="check_available_copies_non_negative"),
        CheckConstraint(
            "available_copies <= total_copies", name="check_available_not_exceed_total"
        ),
        CheckConstraint("total_copies >= 0", name="check_total_copies_non_negative"),
        CheckConstraint("mrp IS NULL OR mrp >= 0", name="check_mrp_non_negative"),
    )


class Member(Base):
    """Members table - borrowers and requesters."""

    __tablename__ = "members"

    id = Column(String(50), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    status = Column(Enum(MemberStatus), nullable=False, default=MemberStatus.PENDING)
    membership_type = Column(
        Enum(MembershipType), nullable=False, default=MembershipType.NORMAL
    )

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, default=func.now(), onupdate=func.now())

    borrow_records = relationship("BorrowRecord", back_populates="member")

    @property
    def in_good_standing(self) -> bool:
        return self.status == MemberStatus.APPROVED

    @property
    def is_premium(self) -> bool:
        return self.membership_type == MembershipType.PREMIUM


class BorrowRecord(Base):
    """
    Borrow records table - one row per loan, never deleted.

    version_id is SQLAlchemy's optimistic lock column: every UPDATE is issued
    with `WHERE version_id = <value read>` and raises StaleDataError when
    another writer got there first.
    """

    __tablename__ = "borrow_records"

    id = Column(String(50), primary_key=True)
    book_id = Column(String(50), ForeignKey("books.id"), nullable=False)
    student_id = Column(String(50), ForeignKey("members.id"), nullable=False)

    borrowed_at = Column(DateTime, nullable=False)
    due_date = Column(Date, nullable=False)
    returned_at = Column(DateTime, nullable=True)
    status = Column(Enum(BorrowStatus), nullable=False, default=BorrowStatus.BORROWED)

    penalty_amount = Column(Money, nullable=False, default=0)
    amount_paid = Column(Money, nullable=False, default=0)
    outstanding_balance = Column(Money, nullable=False, default=0)
    penalty_type = Column(Enum(PenaltyType), nullable=False, default=PenaltyType.NONE)
    penalty_status = Column(Enum(PenaltyStatus), nullable=False, default=PenaltyStatus.NONE)
    settlement_method = Column(Enum(SettlementMethod), nullable=True)

    version_id = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, default=func.now(), onupdate=func.now())

    book = relationship("Book", back_populates="borrow_records")
    member = relationship("Member", back_populates="borrow_records")
    transactions = relationship(
        "PenaltyTransaction", back_populates="borrow_record", order_by="PenaltyTransaction.created_at"
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index("idx_borrow_student", "student_id"),
        Index("idx_borrow_book", "book_id"),
        Index("idx_borrow_status_due", "status", "due_date"),
        Index("idx_borrow_penalty_status", "penalty_status"),
        CheckConstraint("penalty_amount >= 0", name="check_penalty_non_negative"),
        CheckConstraint("amount_paid >= 0", name="check_amount_paid_non_negative"),
        CheckConstraint(
            "outstanding_balance >= 0 AND outstanding_balance <= penalty_amount",
            name="check_outstanding_within_penalty",
        ),
        CheckConstraint(
            "(returned_at IS NULL AND status = 'BORROWED') "
            "OR (returned_at IS NOT NULL AND status != 'BORROWED')",
            name="check_returned_at_matches_status",
        ),
    )


class PenaltyTransaction(Base):
    """
    Penalty audit trail - one row per payment, manual settlement or waiver.

    A non-null idempotency_key is unique, which is what makes a retried
    payment safe.
    """

    __tablename__ = "penalty_transactions"

    id = Column(String(50), primary_key=True)
    borrow_record_id = Column(String(50), ForeignKey("borrow_records.id"), nullable=False)
    action = Column(Enum(PenaltyAction), nullable=False)
    amount = Column(Money, nullable=False)
    balance_after = Column(Money, nullable=False)
    performed_by = Column(String(100), nullable=True)
    idempotency_key = Column(String(100), nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False)

    borrow_record = relationship("BorrowRecord", back_populates="transactions")

    __table_args__ = (Index("idx_penalty_tx_record", "borrow_record_id"),)


class IssueRequest(Base):
    """Issue requests table - members asking for a copy."""

    __tablename__ = "issue_requests"

    id = Column(String(50), primary_key=True)
    student_id = Column(String(50), ForeignKey("members.id"), nullable=False)
    book_id = Column(String(50), ForeignKey("books.id"), nullable=False)
    requested_at = Column(DateTime, nullable=False)
    status = Column(Enum(RequestStatus), nullable=False, default=RequestStatus.PENDING)
    processed_at = Column(DateTime, nullable=True)
    processed_by = Column(String(100), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    borrow_record_id = Column(String(50), ForeignKey("borrow_records.id"), nullable=True)

    book = relationship("Book")
    member = relationship("Member")

    __table_args__ = (
        Index("idx_request_status", "status", "requested_at"),
        Index("idx_request_student_book", "student_id", "book_id"),
        CheckConstraint(
            "status != 'REJECTED' OR rejection_reason IS NOT NULL",
            name="check_rejection_has_reason",
        ),
    )


class AcquisitionRequest(Base):
    """Acquisition requests table - members asking the library to buy a title."""

    __tablename__ = "acquisition_requests"

    id = Column(String(50), primary_key=True)
    student_id = Column(String(50), ForeignKey("members.id"), nullable=False)
    book_name = Column(String(500), nullable=False)
    author = Column(String(200), nullable=False)
    publisher = Column(String(200), nullable=True)
    edition = Column(String(50), nullable=True)
    genre = Column(String(100), nullable=True)
    justification = Column(Text, nullable=True)
    status = Column(Enum(RequestStatus), nullable=False, default=RequestStatus.PENDING)
    requested_at = Column(DateTime, nullable=False)
    reviewed_by = Column(String(100), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    book_id = Column(String(50), ForeignKey("books.id"), nullable=True)

    __table_args__ = (Index("idx_acquisition_status", "status", "requested_at"),)


class WaitlistEntry(Base):
    """
    Waitlist table - one row per (book, student) pair.

    A student who leaves and later rejoins reuses the row with a fresh
    joined_at. queue_position is only set while the entry is WAITING.
    """

    __tablename__ = "waitlist_entries"

    id = Column(String(50), primary_key=True)
    book_id = Column(String(50), ForeignKey("books.id"), nullable=False)
    student_id = Column(String(50), ForeignKey("members.id"), nullable=False)
    joined_at = Column(DateTime, nullable=False)
    status = Column(Enum(WaitlistStatus), nullable=False, default=WaitlistStatus.WAITING)
    queue_position = Column(Integer, nullable=True)
    priority_score = Column(Float, nullable=False, default=0.0)
    waiting_days = Column(Integer, nullable=False, default=0)
    estimated_wait_days = Column(Integer, nullable=True)
    membership_bonus = Column(Float, nullable=False, default=0.0)
    return_history_penalty = Column(Float, nullable=False, default=0.0)
    left_at = Column(DateTime, nullable=True)
    promoted_at = Column(DateTime, nullable=True)

    book = relationship("Book", back_populates="waitlist_entries")
    member = relationship("Member")

    __table_args__ = (
        UniqueConstraint("book_id", "student_id", name="uq_waitlist_book_student"),
        Index("idx_waitlist_book_status", "book_id", "status"),
        CheckConstraint(
            "queue_position IS NULL OR queue_position >= 1", name="check_queue_position_positive"
        ),
    )
