"""
Penalty repository for the Circulation Engine.

Owns the penalty fields of borrow records:

1. **Assessment**: compute_penalty / reconcile_penalties keep the fine on
   overdue loans current; returned loans are priced as of their return date
2. **Preview**: preview_fine quotes without writing
3. **Settlement**: pay_penalty, mark_penalty_as_paid and waive_penalty close
   a penalty and leave a row in the penalty_transactions audit trail

Paid and waived penalties are never recomputed. Reconciliation reads a
snapshot of (id, version) pairs and refuses to write a record whose version
moved since the snapshot, so a payment that lands mid-sweep always wins.
"""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from ..clock import Clock, get_clock
from ..config import EngineConfig, get_config
from ..models.borrow import BorrowRecord as BorrowModel
from ..models.borrow import (
    BorrowStatus,
    PenaltyStatus,
    PenaltyType,
    SettlementMethod,
    overdue_days_between,
)
from ..models.penalty import (
    ZERO,
    PenaltyAction,
    PenaltyPolicy,
    PenaltyQuote,
    PenaltySummary,
    ReconciliationReport,
    calculate_penalty,
    to_money,
)
from ..models.penalty import PenaltyTransaction as PenaltyTransactionModel
from ..notifications import Notifier, get_notifier
from .repository import (
    AlreadyProcessedError,
    ConcurrencyConflictError,
    DuplicateError,
    InvalidAmountError,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
    paginate,
)
from .schema import BorrowRecord as BorrowDB
from .schema import PenaltyTransaction as PenaltyTransactionDB
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)


def quote_for_record(record: BorrowDB, policy: PenaltyPolicy, today: date) -> PenaltyQuote:
    """Price a borrow record.

    Active loans accrue up to `today`; closed loans are frozen at their
    return date, and their terminal status says whether the copy came back
    damaged or not at all.
    """
    as_of = record.returned_at.date() if record.returned_at is not None else today
    return calculate_penalty(
        mrp=record.book.mrp if record.book is not None else None,
        overdue_days=overdue_days_between(record.due_date, as_of),
        damaged=record.status == BorrowStatus.DAMAGED,
        lost=record.status == BorrowStatus.LOST,
        policy=policy,
        as_of=as_of,
        borrow_record_id=record.id,
    )


def apply_quote(record: BorrowDB, quote: PenaltyQuote) -> bool:
    """Write a quote onto an unsettled record.

    Anything already paid is kept and only the remainder stays outstanding.
    A PAID or WAIVED penalty is final and is left as it is.

    Returns:
        True when any penalty field changed
    """
    if record.penalty_status.is_settled:
        return False

    amount_paid = record.amount_paid or ZERO
    outstanding = max(ZERO, quote.total - amount_paid)

    if quote.total == 0 and amount_paid == 0:
        status = PenaltyStatus.NONE
        settlement = None
    elif outstanding == 0:
        status = PenaltyStatus.PAID
        settlement = SettlementMethod.PAYMENT
    else:
        status = PenaltyStatus.PENDING
        settlement = None

    changed = (
        record.penalty_amount != quote.total
        or record.outstanding_balance != outstanding
        or record.penalty_type != quote.penalty_type
        or record.penalty_status != status
    )
    if changed:
        record.penalty_amount = quote.total
        record.outstanding_balance = outstanding
        record.penalty_type = quote.penalty_type
        record.penalty_status = status
        record.settlement_method = settlement
    return changed


class PenaltyRepository:
    """Repository for penalty assessment and settlement."""

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

    # =========================================================================
    # Assessment
    # =========================================================================

    def preview_fine(self, borrow_record_id: str) -> PenaltyQuote:
        """Quote what compute_penalty would charge today. Never writes."""
        record = self._get_record(borrow_record_id, for_update=False)
        return quote_for_record(record, self.policy, self.clock.today())

    def compute_penalty(
        self, borrow_record_id: str, expected_version: int | None = None
    ) -> BorrowModel:
        """
        Recompute and store the penalty for one record.

        Idempotent: with no change in state (or date) the stored values do
        not move. A settled penalty is returned untouched.

        Args:
            borrow_record_id: Record to price
            expected_version: Version read earlier by the caller; the write is
                refused if the record has moved on since then

        Raises:
            NotFoundError: If the record does not exist
            ConcurrencyConflictError: If expected_version is stale
        """
        record = self._get_record(borrow_record_id)
        if expected_version is not None and record.version_id != expected_version:
            raise ConcurrencyConflictError(
                f"Borrow record {borrow_record_id} changed since it was read "
                f"(version {expected_version} -> {record.version_id})"
            )

        if record.penalty_status.is_settled:
            logger.debug(
                "Penalty on %s is %s; not recomputing",
                borrow_record_id,
                record.penalty_status.value,
            )
            return BorrowModel.model_validate(record, from_attributes=True)

        quote = quote_for_record(record, self.policy, self.clock.today())
        if apply_quote(record, quote):
            safe_commit(self.session, "compute penalty")
            logger.info(
                "Penalty on %s set to %s (%s, %d overdue days)",
                borrow_record_id,
                record.penalty_amount,
                record.penalty_type.value,
                quote.overdue_days,
            )
        return BorrowModel.model_validate(record, from_attributes=True)

    def reconcile_penalties(self) -> ReconciliationReport:
        """
        Refresh the fine on every overdue active loan.

        Only BORROWED records past their due date whose penalty is absent or
        PENDING are considered. Each record is written with a version check;
        on conflict the record is re-read and retried up to
        `reconciliation_max_retries` times, then skipped and logged for the
        next sweep.
        """
        report = ReconciliationReport(started_at=self.clock.now())
        snapshot = self._snapshot_overdue()
        logger.info("Reconciliation started: %d overdue loans to check", len(snapshot))

        for record_id, version in snapshot:
            report.scanned += 1
            self._reconcile_record(record_id, version, report)

        report.finished_at = self.clock.now()
        logger.info(
            "Reconciliation finished: scanned=%d updated=%d unchanged=%d conflicts=%d skipped=%d",
            report.scanned,
            report.updated,
            report.unchanged,
            report.conflicts,
            len(report.skipped),
        )
        return report

    # =========================================================================
    # Settlement
    # =========================================================================

    def pay_penalty(
        self,
        borrow_record_id: str,
        amount: Decimal | str | int,
        idempotency_key: str | None = None,
        performed_by: str | None = None,
    ) -> PenaltySummary:
        """
        Record a payment against the outstanding balance.

        A payment carrying an idempotency key that was already used for this
        record returns the current state, marked as replayed, without paying
        again.

        Raises:
            InvalidAmountError: If amount <= 0, exceeds the outstanding
                balance, is partial while partial payments are disabled, or
                there is no pending penalty
            AlreadyProcessedError: If the penalty is already PAID or WAIVED
            DuplicateError: If the idempotency key belongs to another record
        """
        amount = self._parse_amount(amount)

        if idempotency_key:
            previous = self._find_transaction(idempotency_key)
            if previous is not None:
                if previous.borrow_record_id != borrow_record_id:
                    raise DuplicateError(
                        f"Idempotency key {idempotency_key} was used for another record"
                    )
                logger.info(
                    "Payment %s on %s already applied; returning stored result",
                    idempotency_key,
                    borrow_record_id,
                )
                summary = self._summary(self._get_record(borrow_record_id, for_update=False))
                return summary.model_copy(update={"replayed": True})

        record = self._get_record(borrow_record_id)
        self._ensure_pending(record)

        outstanding = record.outstanding_balance
        if amount > outstanding:
            raise InvalidAmountError(
                f"Payment {amount} exceeds outstanding balance {outstanding}"
            )
        if not self.config.allow_partial_payments and amount != outstanding:
            raise InvalidAmountError(
                f"Partial payments are disabled; pay the full balance of {outstanding}"
            )

        record.amount_paid = to_money(record.amount_paid + amount)
        record.outstanding_balance = to_money(outstanding - amount)
        if record.outstanding_balance == 0:
            record.penalty_status = PenaltyStatus.PAID
            record.settlement_method = SettlementMethod.PAYMENT

        self._add_transaction(
            record, PenaltyAction.PAYMENT, amount, performed_by, idempotency_key
        )
        safe_commit(self.session, "pay penalty")

        summary = self._summary(record)
        logger.info(
            "Payment of %s on %s; outstanding %s", amount, borrow_record_id, summary.outstanding_balance
        )
        if summary.penalty_status == PenaltyStatus.PAID:
            self.notifier.penalty_settled(summary)
        return summary

    def waive_penalty(
        self, borrow_record_id: str, performed_by: str | None = None
    ) -> PenaltySummary:
        """
        Forgive whatever is owed. Irreversible.

        Works on any unsettled record, including one with no penalty yet,
        which also stops it from ever accruing one.

        Raises:
            AlreadyProcessedError: If the penalty is already PAID or WAIVED
        """
        record = self._get_record(borrow_record_id)
        if record.penalty_status.is_settled:
            raise AlreadyProcessedError(
                f"Penalty on {borrow_record_id} is already {record.penalty_status.value}"
            )

        waived = record.outstanding_balance or ZERO
        record.outstanding_balance = ZERO
        record.penalty_status = PenaltyStatus.WAIVED
        record.settlement_method = SettlementMethod.WAIVER

        self._add_transaction(record, PenaltyAction.WAIVER, waived, performed_by)
        safe_commit(self.session, "waive penalty")

        summary = self._summary(record)
        logger.info("Penalty on %s waived (%s forgiven)", borrow_record_id, waived)
        self.notifier.penalty_settled(summary)
        return summary

    def mark_penalty_as_paid(
        self, borrow_record_id: str, performed_by: str | None = None
    ) -> PenaltySummary:
        """
        Administrative shortcut: close a pending penalty without a payment.

        Raises:
            AlreadyProcessedError: If the penalty is already PAID or WAIVED
            InvalidAmountError: If there is no pending penalty to settle
        """
        record = self._get_record(borrow_record_id)
        self._ensure_pending(record)

        settled = record.outstanding_balance
        record.outstanding_balance = ZERO
        record.penalty_status = PenaltyStatus.PAID
        record.settlement_method = SettlementMethod.MANUAL

        self._add_transaction(record, PenaltyAction.MANUAL_SETTLEMENT, settled, performed_by)
        safe_commit(self.session, "mark penalty as paid")

        summary = self._summary(record)
        logger.info("Penalty on %s marked as paid by %s", borrow_record_id, performed_by)
        self.notifier.penalty_settled(summary)
        return summary

    # =========================================================================
    # Queries
    # =========================================================================

    def get_penalty(self, borrow_record_id: str) -> PenaltySummary:
        return self._summary(self._get_record(borrow_record_id, for_update=False))

    def list_pending_penalties(
        self,
        student_id: str | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[PenaltySummary]:
        query = select(BorrowDB).where(BorrowDB.penalty_status == PenaltyStatus.PENDING)
        if student_id:
            query = query.where(BorrowDB.student_id == student_id)
        query = query.order_by(BorrowDB.outstanding_balance.desc(), BorrowDB.id)

        return paginate(
            self.session, query, pagination, self._summary, "Failed to list pending penalties"
        )

    def list_penalty_history(self, borrow_record_id: str) -> list[PenaltyTransactionModel]:
        self._get_record(borrow_record_id, for_update=False)
        query = (
            select(PenaltyTransactionDB)
            .where(PenaltyTransactionDB.borrow_record_id == borrow_record_id)
            .order_by(PenaltyTransactionDB.created_at, PenaltyTransactionDB.id)
        )
        transactions = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            f"Failed to list penalty history for {borrow_record_id}",
        )
        return [
            PenaltyTransactionModel.model_validate(tx, from_attributes=True)
            for tx in transactions
        ]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _snapshot_overdue(self) -> list[tuple[str, int]]:
        """Ids and versions of every active loan that should be carrying a fine."""
        query = (
            select(BorrowDB.id, BorrowDB.version_id)
            .where(
                BorrowDB.status == BorrowStatus.BORROWED,
                BorrowDB.due_date < self.clock.today(),
                BorrowDB.penalty_status.in_([PenaltyStatus.NONE, PenaltyStatus.PENDING]),
            )
            .order_by(BorrowDB.due_date, BorrowDB.id)
        )
        rows = safe_query(
            self.session, lambda s: s.execute(query).all(), "Failed to snapshot overdue loans"
        )
        return [(row.id, row.version_id) for row in rows]

    def _reconcile_record(
        self, record_id: str, version: int, report: ReconciliationReport
    ) -> None:
        max_attempts = self.config.reconciliation_max_retries
        expected = version

        for attempt in range(1, max_attempts + 1):
            try:
                before = self._get_record(record_id, for_update=False).penalty_amount
                after = self.compute_penalty(record_id, expected_version=expected)
            except ConcurrencyConflictError as e:
                report.conflicts += 1
                self.session.rollback()
                current = self._get_record(record_id, for_update=False)
                if (
                    current.status != BorrowStatus.BORROWED
                    or current.penalty_status.is_settled
                ):
                    logger.info(
                        "Skipping %s: it became %s/%s during reconciliation",
                        record_id,
                        current.status.value,
                        current.penalty_status.value,
                    )
                    report.skipped.append(record_id)
                    return
                logger.warning(
                    "Version conflict reconciling %s (attempt %d/%d): %s",
                    record_id,
                    attempt,
                    max_attempts,
                    e,
                )
                expected = current.version_id
                continue

            if after.penalty_amount != before:
                report.updated += 1
            else:
                report.unchanged += 1
            return

        logger.warning(
            "Giving up on %s after %d conflicting attempts; it will be retried next sweep",
            record_id,
            max_attempts,
        )
        report.skipped.append(record_id)

    def _get_record(self, borrow_record_id: str, for_update: bool = True) -> BorrowDB:
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

    def _ensure_pending(self, record: BorrowDB) -> None:
        if record.penalty_status.is_settled:
            raise AlreadyProcessedError(
                f"Penalty on {record.id} is already {record.penalty_status.value}"
            )
        if record.penalty_status != PenaltyStatus.PENDING or record.outstanding_balance <= 0:
            raise InvalidAmountError(f"Borrow record {record.id} has no pending penalty")

    @staticmethod
    def _parse_amount(amount: Decimal | str | int) -> Decimal:
        try:
            value = Decimal(str(amount))
        except InvalidOperation as e:
            raise InvalidAmountError(f"Amount {amount!r} is not a number") from e
        if not value.is_finite() or value <= 0:
            raise InvalidAmountError(f"Amount must be greater than zero, got {amount}")
        if value != to_money(value):
            raise InvalidAmountError(f"Amount {amount} has more than two decimal places")
        return to_money(value)

    def _find_transaction(self, idempotency_key: str) -> PenaltyTransactionDB | None:
        query = select(PenaltyTransactionDB).where(
            PenaltyTransactionDB.idempotency_key == idempotency_key
        )
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            "Failed to look up payment by idempotency key",
        )

    def _add_transaction(
        self,
        record: BorrowDB,
        action: PenaltyAction,
        amount: Decimal,
        performed_by: str | None,
        idempotency_key: str | None = None,
    ) -> None:
        self.session.add(
            PenaltyTransactionDB(
                id=f"ptx_{uuid4().hex[:12]}",
                borrow_record_id=record.id,
                action=action,
                amount=amount,
                balance_after=record.outstanding_balance,
                performed_by=performed_by,
                idempotency_key=idempotency_key,
                created_at=self.clock.now(),
            )
        )

    @staticmethod
    def _summary(record: BorrowDB) -> PenaltySummary:
        return PenaltySummary(
            borrow_record_id=record.id,
            student_id=record.student_id,
            book_id=record.book_id,
            penalty_amount=record.penalty_amount,
            amount_paid=record.amount_paid,
            outstanding_balance=record.outstanding_balance,
            penalty_type=record.penalty_type or PenaltyType.NONE,
            penalty_status=record.penalty_status,
            settlement_method=record.settlement_method.value if record.settlement_method else None,
        )
