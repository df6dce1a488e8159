"""
Waitlist repository for the Circulation Engine.

Each book has its own queue of WAITING entries. Positions are recomputed
synchronously on every membership change (join, leave, promotion) so that a
student always sees their true place immediately:

1. Every waiting entry is re-scored as of now
2. Entries are ordered by descending score, ties going to the earlier joiner
3. Positions 1..N are assigned densely and the wait estimate follows
"""

import logging
from datetime import datetime
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..clock import Clock, get_clock
from ..config import EngineConfig, get_config
from ..models.borrow import BorrowStatus
from ..models.waitlist import (
    ReturnHistory,
    WaitlistQueue,
    WaitlistStatus,
    WaitlistWeights,
    compute_priority_score,
    estimated_wait_days,
    return_history_penalty,
)
from ..models.waitlist import WaitlistEntry as WaitlistEntryModel
from .repository import (
    AlreadyOnWaitlistError,
    BookAvailableError,
    MemberNotEligibleError,
    NotFoundError,
)
from .schema import Book as BookDB
from .schema import BorrowRecord as BorrowDB
from .schema import Member as MemberDB
from .schema import WaitlistEntry as WaitlistDB
from .session import safe_commit, safe_flush, safe_query

logger = logging.getLogger(__name__)


class WaitlistRepository:
    """
    Repository for per-book waitlists.

    Methods prefixed with an underscore do not commit; they are the building
    blocks the circulation repository uses to fold a promotion into the same
    transaction as a return.
    """

    def __init__(
        self,
        session: Session,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
    ):
        self.session = session
        self.config = config or get_config()
        self.clock = clock or get_clock()
        self.weights = WaitlistWeights.from_config(self.config)

    # =========================================================================
    # Membership changes
    # =========================================================================

    def join(self, book_id: str, student_id: str) -> WaitlistEntryModel:
        """
        Put a student in the queue for a title with no free copies.

        A student who left (or was promoted) earlier gets their old row back
        with a fresh joined_at, so no priority carries over.

        Raises:
            NotFoundError: If the book or member does not exist
            MemberNotEligibleError: If the member is not in good standing
            AlreadyOnWaitlistError: If the student is already waiting for the book
            BookAvailableError: If the book has free copies right now
        """
        book = self._lock_book(book_id)
        member = self.session.get(MemberDB, student_id)
        if member is None:
            raise NotFoundError(f"Member {student_id} not found")
        if not member.in_good_standing:
            raise MemberNotEligibleError(
                f"Member {student_id} is {member.status.value} and cannot join a waitlist"
            )

        entry = self._find_entry(book_id, student_id)
        if entry is not None and entry.status == WaitlistStatus.WAITING:
            raise AlreadyOnWaitlistError(
                f"Member {student_id} is already on the waitlist for book {book_id}"
            )
        if book.available_copies > 0:
            raise BookAvailableError(
                f"Book '{book.title}' has {book.available_copies} copies available; "
                "request an issue instead"
            )

        now = self.clock.now()
        if entry is None:
            entry = WaitlistDB(
                id=f"wait_{uuid4().hex[:12]}",
                book_id=book_id,
                student_id=student_id,
            )
            self.session.add(entry)
        entry.joined_at = now
        entry.status = WaitlistStatus.WAITING
        entry.left_at = None
        entry.promoted_at = None

        self._recompute_positions(book_id)
        safe_commit(self.session, "join waitlist")

        logger.info(
            "Member %s joined waitlist for %s at position %s",
            student_id,
            book_id,
            entry.queue_position,
        )
        return self._to_model(entry)

    def leave(self, book_id: str, student_id: str) -> None:
        """
        Remove a student from a queue and close the gap.

        Raises:
            NotFoundError: If the student is not waiting for the book
        """
        self._lock_book(book_id)
        entry = self._find_entry(book_id, student_id)
        if entry is None or entry.status != WaitlistStatus.WAITING:
            raise NotFoundError(f"Member {student_id} is not on the waitlist for book {book_id}")

        entry.status = WaitlistStatus.LEFT
        entry.left_at = self.clock.now()
        entry.queue_position = None
        entry.estimated_wait_days = None

        self._recompute_positions(book_id)
        safe_commit(self.session, "leave waitlist")
        logger.info("Member %s left waitlist for %s", student_id, book_id)

    def promote_next(self, book_id: str) -> WaitlistEntryModel | None:
        """
        Take the best-ranked student off the queue.

        Returns:
            The promoted entry, or None when the queue is empty (no-op)
        """
        self._lock_book(book_id)
        entry = self._promote_next(book_id)
        if entry is None:
            return None
        safe_commit(self.session, "promote waitlist entry")
        return self._to_model(entry)

    def recompute_positions(self, book_id: str) -> list[WaitlistEntryModel]:
        """Re-score one queue as of now and persist the new positions."""
        self._lock_book(book_id)
        entries = self._recompute_positions(book_id)
        safe_commit(self.session, "recompute waitlist positions")
        return [self._to_model(entry) for entry in entries]

    def refresh_all_queues(self) -> int:
        """Re-score every non-empty queue; returns how many queues were touched."""
        book_ids = self._books_with_waiters()
        for book_id in book_ids:
            self._recompute_positions(book_id)
        safe_commit(self.session, "refresh waitlists")
        return len(book_ids)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_entry(self, book_id: str, student_id: str) -> WaitlistEntryModel | None:
        entry = self._find_entry(book_id, student_id)
        return self._to_model(entry) if entry else None

    def get_queue(self, book_id: str) -> WaitlistQueue:
        """
        Raises:
            NotFoundError: If the book does not exist
        """
        book = self.session.get(BookDB, book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")

        entries = self._waiting_entries(book_id)
        entries.sort(key=lambda e: e.queue_position or 0)
        return WaitlistQueue(
            book_id=book.id,
            book_title=book.title,
            available_copies=book.available_copies,
            entries=[self._to_model(entry) for entry in entries],
        )

    def list_all_queues(self) -> list[WaitlistQueue]:
        return [self.get_queue(book_id) for book_id in self._books_with_waiters()]

    def list_student_waitlist(self, student_id: str) -> list[WaitlistEntryModel]:
        query = (
            select(WaitlistDB)
            .where(WaitlistDB.student_id == student_id, WaitlistDB.status == WaitlistStatus.WAITING)
            .order_by(WaitlistDB.joined_at)
        )
        entries = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            f"Failed to list waitlist entries for {student_id}",
        )
        return [self._to_model(entry) for entry in entries]

    def get_return_history(self, student_id: str) -> ReturnHistory:
        """Count the student's late, damaged and lost returns."""
        query = (
            select(BorrowDB.status, func.count())
            .where(
                BorrowDB.student_id == student_id,
                BorrowDB.status.in_(
                    [BorrowStatus.LATE_RETURNED, BorrowStatus.DAMAGED, BorrowStatus.LOST]
                ),
            )
            .group_by(BorrowDB.status)
        )
        rows = safe_query(
            self.session,
            lambda s: s.execute(query).all(),
            f"Failed to count return history for {student_id}",
        )
        counts = dict(rows)
        return ReturnHistory(
            late=counts.get(BorrowStatus.LATE_RETURNED, 0),
            damaged=counts.get(BorrowStatus.DAMAGED, 0),
            lost=counts.get(BorrowStatus.LOST, 0),
        )

    # =========================================================================
    # Transaction building blocks (no commit)
    # =========================================================================

    def _promote_next(self, book_id: str) -> WaitlistDB | None:
        ranked = self._recompute_positions(book_id)
        if not ranked:
            return None

        best = ranked[0]
        best.status = WaitlistStatus.PROMOTED
        best.promoted_at = self.clock.now()
        best.queue_position = None
        best.estimated_wait_days = None
        self._recompute_positions(book_id)

        logger.info(
            "Promoted member %s from waitlist for %s (score %.2f)",
            best.student_id,
            book_id,
            best.priority_score,
        )
        return best

    def _drop(self, entry: WaitlistDB, reason: str) -> None:
        """Take a promoted entry out of play when it cannot be served."""
        entry.status = WaitlistStatus.LEFT
        entry.left_at = self.clock.now()
        logger.warning(
            "Dropped member %s from waitlist for %s: %s", entry.student_id, entry.book_id, reason
        )

    def _recompute_positions(self, book_id: str) -> list[WaitlistDB]:
        safe_flush(self.session, "prepare waitlist recompute")
        entries = self._waiting_entries(book_id)
        now = self.clock.now()

        for entry in entries:
            self._score(entry, now)

        entries.sort(key=lambda e: (-e.priority_score, e.joined_at, e.id))
        for position, entry in enumerate(entries, start=1):
            entry.queue_position = position
            entry.estimated_wait_days = estimated_wait_days(position, self.weights)

        return entries

    def _score(self, entry: WaitlistDB, now: datetime) -> None:
        member = self.session.get(MemberDB, entry.student_id)
        is_premium = bool(member and member.is_premium)
        history = self.get_return_history(entry.student_id)

        waiting_days = max(0, (now.date() - entry.joined_at.date()).days)
        entry.waiting_days = waiting_days
        entry.membership_bonus = self.weights.premium_bonus if is_premium else 0.0
        entry.return_history_penalty = return_history_penalty(history, self.weights)
        entry.priority_score = compute_priority_score(
            waiting_days, is_premium, history, self.weights
        )

    def _waiting_entries(self, book_id: str) -> list[WaitlistDB]:
        query = (
            select(WaitlistDB)
            .where(WaitlistDB.book_id == book_id, WaitlistDB.status == WaitlistStatus.WAITING)
            .execution_options(populate_existing=True)
        )
        return list(
            safe_query(
                self.session,
                lambda s: s.execute(query).scalars().all(),
                f"Failed to load waitlist for {book_id}",
            )
        )

    def _find_entry(self, book_id: str, student_id: str) -> WaitlistDB | None:
        query = select(WaitlistDB).where(
            WaitlistDB.book_id == book_id, WaitlistDB.student_id == student_id
        )
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            "Failed to look up waitlist entry",
        )

    def _books_with_waiters(self) -> list[str]:
        query = (
            select(WaitlistDB.book_id)
            .where(WaitlistDB.status == WaitlistStatus.WAITING)
            .distinct()
            .order_by(WaitlistDB.book_id)
        )
        return list(
            safe_query(
                self.session,
                lambda s: s.execute(query).scalars().all(),
                "Failed to list books with waitlists",
            )
        )

    def _lock_book(self, book_id: str) -> BookDB:
        """Serialize queue changes per book (row lock where the database has them)."""
        query = (
            select(BookDB)
            .where(BookDB.id == book_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        book = safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            f"Failed to lock book {book_id}",
        )
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")
        return book

    @staticmethod
    def _to_model(entry: WaitlistDB) -> WaitlistEntryModel:
        return WaitlistEntryModel.model_validate(entry, from_attributes=True)
