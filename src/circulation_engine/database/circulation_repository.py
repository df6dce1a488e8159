"""
Circulation repository for the Circulation Engine.

This repository owns the borrow-record state machine:

    BORROWED -> RETURNED | LATE_RETURNED | DAMAGED | LOST

1. **Issue**: take one copy with a conditional decrement and open a loan
2. **Return**: close the loan, price any penalty, put the copy back and,
   if students are waiting, hand it straight to the best-ranked one
3. **Recovery**: re-run promotion for any title with free copies and a
   non-empty queue

A return, its copy increment, the waitlist promotion and the re-issue to the
promoted student are committed together, so a freed copy can never be taken
by a direct issue while somebody is still waiting for it.
"""

import logging
from datetime import date, timedelta
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session, joinedload

from ..clock import Clock, get_clock
from ..config import EngineConfig, get_config
from ..models.borrow import BorrowRecord as BorrowModel
from ..models.borrow import (
    BorrowStatus,
    PenaltyStatus,
    PenaltyType,
    ReturnOutcome,
    overdue_days_between,
    resolve_return_status,
)
from ..models.penalty import ZERO, PenaltyPolicy
from ..models.waitlist import WaitlistStatus
from ..notifications import Notifier, get_notifier
from .penalty_repository import apply_quote, quote_for_record
from .repository import (
    AlreadyReturnedError,
    MemberNotEligibleError,
    NotFoundError,
    OutOfStockError,
    PaginatedResponse,
    PaginationParams,
    RepositoryException,
    paginate,
)
from .schema import Book as BookDB
from .schema import BorrowRecord as BorrowDB
from .schema import Member as MemberDB
from .schema import WaitlistEntry as WaitlistDB
from .session import safe_commit, safe_query
from .waitlist_repository import WaitlistRepository

logger = logging.getLogger(__name__)


def generate_borrow_id() -> str:
    return f"borrow_{uuid4().hex[:12]}"


class CirculationRepository:
    """
    Repository for loans.

    Public methods commit; the underscored building blocks (`_issue`,
    `_release_copy`) do not, so the request workflow can fold an issuance
    into the same transaction as its own state change.
    """

    def __init__(
        self,
        session: Session,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
    ):
        self.session = session
        self.config = config or get_config()
        self.clock = clock or get_clock()
        self.notifier = notifier or get_notifier()
        self.policy = PenaltyPolicy.from_config(self.config)
        self.waitlist = WaitlistRepository(session, self.config, self.clock)

    # =========================================================================
    # Issue
    # =========================================================================

    def issue(self, book_id: str, student_id: str, due_date: date | None = None) -> BorrowModel:
        """
        Lend a copy directly to a member.

        Issuing does not look at the waitlist; only freed copies do.

        Args:
            book_id: Title to lend
            student_id: Borrowing member
            due_date: Defaults to the member's loan period from today

        Raises:
            NotFoundError: If the book or member does not exist
            MemberNotEligibleError: If the member is not in good standing
            OutOfStockError: If no copy is free at commit time
        """
        try:
            record = self._issue(book_id, student_id, due_date)
        except RepositoryException:
            self.session.rollback()
            raise
        safe_commit(self.session, "issue book")

        logger.info(
            "Issued book %s to %s as %s, due %s", book_id, student_id, record.id, record.due_date
        )
        return self._to_model(record)

    def _issue(self, book_id: str, student_id: str, due_date: date | None = None) -> BorrowDB:
        book = self.session.get(BookDB, book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")

        member = self.session.get(MemberDB, student_id)
        if member is None:
            raise NotFoundError(f"Member {student_id} not found")
        if not member.in_good_standing:
            raise MemberNotEligibleError(
                f"Member {student_id} is {member.status.value} and cannot borrow"
            )

        if not self._take_copy(book_id):
            raise OutOfStockError(f"No copies of '{book.title}' are available")

        now = self.clock.now()
        if due_date is None:
            loan_days = self.config.premium_loan_days if member.is_premium else self.config.loan_days
            due_date = now.date() + timedelta(days=loan_days)

        record = BorrowDB(
            id=generate_borrow_id(),
            book_id=book_id,
            student_id=student_id,
            borrowed_at=now,
            due_date=due_date,
            status=BorrowStatus.BORROWED,
            penalty_amount=ZERO,
            amount_paid=ZERO,
            outstanding_balance=ZERO,
            penalty_type=PenaltyType.NONE,
            penalty_status=PenaltyStatus.NONE,
        )
        self.session.add(record)
        return record

    # =========================================================================
    # Return
    # =========================================================================

    def process_return(
        self, borrow_record_id: str, damaged: bool = False, lost: bool = False
    ) -> ReturnOutcome:
        """
        Close a loan.

        A lost copy is written off the catalog and frees nothing. Any other
        return puts the copy back on the shelf and, when the title has a
        waitlist, issues it to the top eligible student in the same commit.

        Raises:
            NotFoundError: If the record does not exist
            AlreadyReturnedError: If the loan is already closed
        """
        record = self._get_record(borrow_record_id, for_update=True)
        if record.status.is_terminal:
            raise AlreadyReturnedError(
                f"Borrow record {borrow_record_id} is already {record.status.value}"
            )

        now = self.clock.now()
        overdue_days = overdue_days_between(record.due_date, now.date())
        record.status = resolve_return_status(damaged, lost, overdue_days)
        record.returned_at = now
        apply_quote(record, quote_for_record(record, self.policy, now.date()))

        promoted_student_id = None
        issued = None
        try:
            if record.status == BorrowStatus.LOST:
                self._write_off_copy(record.book_id)
            else:
                self._put_back_copy(record.book_id)
                entry, issued = self._release_copy(record.book_id)
                promoted_student_id = entry.student_id if entry else None
        except RepositoryException:
            self.session.rollback()
            raise
        safe_commit(self.session, "process return")

        logger.info(
            "Borrow record %s closed as %s with penalty %s",
            record.id,
            record.status.value,
            record.penalty_amount,
        )
        issued_model = self._to_model(issued) if issued is not None else None
        if promoted_student_id is not None:
            self.notifier.waitlist_promoted(
                self.waitlist.get_entry(record.book_id, promoted_student_id), issued_model
            )

        return ReturnOutcome(
            record=self._to_model(record),
            promoted_student_id=promoted_student_id,
            issued_record=issued_model,
        )

    def recover_promotions(self, book_id: str | None = None) -> list[BorrowModel]:
        """
        Hand free copies to waiting students.

        Normally a no-op: returns promote within their own transaction. This
        repairs queues left behind by an interrupted process or by copies
        added to the catalog, and is safe to run any number of times.
        """
        query = (
            select(BookDB.id)
            .join(WaitlistDB, WaitlistDB.book_id == BookDB.id)
            .where(WaitlistDB.status == WaitlistStatus.WAITING, BookDB.available_copies > 0)
            .distinct()
        )
        if book_id is not None:
            query = query.where(BookDB.id == book_id)
        book_ids = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to find books with stranded waitlists",
        )

        issued: list[tuple[str, BorrowDB]] = []
        try:
            for candidate in book_ids:
                while self._available_copies(candidate) > 0:
                    entry, record = self._release_copy(candidate)
                    if entry is None:
                        break
                    if record is not None:
                        issued.append((entry.student_id, record))
        except RepositoryException:
            self.session.rollback()
            raise
        safe_commit(self.session, "recover waitlist promotions")

        if issued:
            logger.info("Recovered %d waitlist promotions", len(issued))
        models = []
        for student_id, record in issued:
            model = self._to_model(record)
            self.notifier.waitlist_promoted(
                self.waitlist.get_entry(record.book_id, student_id), model
            )
            models.append(model)
        return models

    def _release_copy(self, book_id: str) -> tuple[WaitlistDB | None, BorrowDB | None]:
        """Issue one free copy to the best eligible waiting student, if any."""
        while True:
            entry = self.waitlist._promote_next(book_id)
            if entry is None:
                return None, None

            member = self.session.get(MemberDB, entry.student_id)
            if member is None or not member.in_good_standing:
                self.waitlist._drop(entry, "member is not in good standing")
                continue

            return entry, self._issue(book_id, entry.student_id)

    # =========================================================================
    # Copy counters
    # =========================================================================

    def _take_copy(self, book_id: str) -> bool:
        """Decrement available copies only if one is free. Returns False when none is."""
        result = self.session.execute(
            update(BookDB)
            .where(BookDB.id == book_id, BookDB.available_copies > 0)
            .values(available_copies=BookDB.available_copies - 1)
            .execution_options(synchronize_session=False)
        )
        self._refresh_book(book_id)
        return result.rowcount == 1

    def _put_back_copy(self, book_id: str) -> None:
        result = self.session.execute(
            update(BookDB)
            .where(BookDB.id == book_id, BookDB.available_copies < BookDB.total_copies)
            .values(available_copies=BookDB.available_copies + 1)
            .execution_options(synchronize_session=False)
        )
        self._refresh_book(book_id)
        if result.rowcount != 1:
            raise RepositoryException(
                f"Copy counters for book {book_id} are inconsistent; all copies already shelved"
            )

    def _write_off_copy(self, book_id: str) -> None:
        result = self.session.execute(
            update(BookDB)
            .where(BookDB.id == book_id, BookDB.total_copies > BookDB.available_copies)
            .values(total_copies=BookDB.total_copies - 1)
            .execution_options(synchronize_session=False)
        )
        self._refresh_book(book_id)
        if result.rowcount != 1:
            raise RepositoryException(
                f"Copy counters for book {book_id} are inconsistent; no copy is on loan"
            )
        logger.info("Wrote off a lost copy of book %s", book_id)

    def _available_copies(self, book_id: str) -> int:
        query = select(BookDB.available_copies).where(BookDB.id == book_id)
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one(),
            f"Failed to read copy count for {book_id}",
        )

    def _refresh_book(self, book_id: str) -> None:
        book = self.session.get(BookDB, book_id)
        if book is not None:
            self.session.refresh(book)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_borrow_record(self, borrow_record_id: str) -> BorrowModel:
        """
        Raises:
            NotFoundError: If the record does not exist
        """
        return self._to_model(self._get_record(borrow_record_id))

    def list_borrow_records(
        self,
        student_id: str | None = None,
        book_id: str | None = None,
        status: BorrowStatus | None = None,
        overdue_only: bool = False,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[BorrowModel]:
        query = select(BorrowDB)
        if student_id:
            query = query.where(BorrowDB.student_id == student_id)
        if book_id:
            query = query.where(BorrowDB.book_id == book_id)
        if status:
            query = query.where(BorrowDB.status == status)
        if overdue_only:
            query = query.where(
                BorrowDB.status == BorrowStatus.BORROWED,
                BorrowDB.due_date < self.clock.today(),
            )
        query = query.order_by(BorrowDB.borrowed_at.desc(), BorrowDB.id)

        return paginate(
            self.session, query, pagination, self._to_model, "Failed to list borrow records"
        )

    def list_overdue(self, pagination: PaginationParams | None = None) -> PaginatedResponse[BorrowModel]:
        return self.list_borrow_records(overdue_only=True, pagination=pagination)

    def has_active_loan(self, book_id: str, student_id: str) -> bool:
        query = select(BorrowDB.id).where(
            BorrowDB.book_id == book_id,
            BorrowDB.student_id == student_id,
            BorrowDB.status == BorrowStatus.BORROWED,
        )
        return (
            safe_query(
                self.session,
                lambda s: s.execute(query.limit(1)).scalar_one_or_none(),
                "Failed to check active loans",
            )
            is not None
        )

    def _get_record(self, borrow_record_id: str, for_update: bool = False) -> BorrowDB:
        query = (
            select(BorrowDB)
            .where(BorrowDB.id == borrow_record_id)
            .options(joinedload(BorrowDB.book))
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update(of=BorrowDB)
        record = safe_query(
            self.session,
            lambda s: s.execute(query).unique().scalar_one_or_none(),
            f"Failed to get borrow record {borrow_record_id}",
        )
        if record is None:
            raise NotFoundError(f"Borrow record {borrow_record_id} not found")
        return record

    @staticmethod
    def _to_model(record: BorrowDB) -> BorrowModel:
        return BorrowModel.model_validate(record, from_attributes=True)
