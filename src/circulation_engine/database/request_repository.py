"""
Issue-request repository for the Circulation Engine.

Members file requests; librarians approve or reject them:

    PENDING -> APPROVED | REJECTED

Approval issues a copy through the circulation repository and records the
resulting loan in the same commit. An approval that fails (no stock, member
no longer eligible) leaves the request PENDING so it can be retried.

Bulk approval walks an ordered list of ids and treats each one as its own
transaction. Later items therefore see the copies consumed by earlier ones,
and one failure never undoes another item's success.
"""

import logging
from datetime import date, datetime
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..clock import Clock, get_clock
from ..config import EngineConfig, get_config
from ..models.borrow import BorrowRecord as BorrowModel
from ..models.request import BulkApprovalResult, FailedRequest, RequestStatus
from ..models.request import IssueRequest as IssueRequestModel
from ..notifications import Notifier, get_notifier
from .circulation_repository import CirculationRepository
from .repository import (
    AlreadyProcessedError,
    ConcurrencyConflictError,
    DuplicateError,
    MemberNotEligibleError,
    NotFoundError,
    OutOfStockError,
    PaginatedResponse,
    PaginationParams,
    ReasonRequiredError,
    RepositoryException,
    RequestLimitExceededError,
    paginate,
)
from .schema import Book as BookDB
from .schema import IssueRequest as IssueRequestDB
from .schema import Member as MemberDB
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)

# Failures that a bulk approval records per item instead of aborting
BULK_ITEM_ERRORS = (
    NotFoundError,
    AlreadyProcessedError,
    OutOfStockError,
    MemberNotEligibleError,
    ConcurrencyConflictError,
)


class IssueRequestRepository:
    """Repository for issue requests and their approval workflow."""

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
        self.circulation = CirculationRepository(session, self.config, self.clock, self.notifier)

    def create_request(self, student_id: str, book_id: str) -> IssueRequestModel:
        """
        File a request for a copy.

        Raises:
            NotFoundError: If the member or book does not exist
            MemberNotEligibleError: If the member is not in good standing
            DuplicateError: If the member already has a pending request for,
                or an active loan of, this book
            RequestLimitExceededError: If a normal member has used up this
                month's request allowance
        """
        member = self.session.get(MemberDB, student_id)
        if member is None:
            raise NotFoundError(f"Member {student_id} not found")
        if self.session.get(BookDB, book_id) is None:
            raise NotFoundError(f"Book {book_id} not found")
        if not member.in_good_standing:
            raise MemberNotEligibleError(
                f"Member {student_id} is {member.status.value} and cannot request books"
            )

        pending = select(IssueRequestDB.id).where(
            IssueRequestDB.student_id == student_id,
            IssueRequestDB.book_id == book_id,
            IssueRequestDB.status == RequestStatus.PENDING,
        )
        if safe_query(
            self.session,
            lambda s: s.execute(pending.limit(1)).scalar_one_or_none(),
            "Failed to check pending requests",
        ):
            raise DuplicateError(f"Member {student_id} already has a pending request for {book_id}")
        if self.circulation.has_active_loan(book_id, student_id):
            raise DuplicateError(f"Member {student_id} already has book {book_id} on loan")

        now = self.clock.now()
        if not member.is_premium:
            used = self._requests_this_month(student_id, now)
            if used >= self.config.monthly_request_limit:
                raise RequestLimitExceededError(
                    f"Member {student_id} has already made {used} requests this month "
                    f"(limit {self.config.monthly_request_limit})"
                )

        request = IssueRequestDB(
            id=f"req_{uuid4().hex[:12]}",
            student_id=student_id,
            book_id=book_id,
            requested_at=now,
            status=RequestStatus.PENDING,
        )
        self.session.add(request)
        safe_commit(self.session, "create issue request")

        logger.info("Member %s requested book %s (%s)", student_id, book_id, request.id)
        return self._to_model(request)

    def approve(
        self,
        request_id: str,
        due_date: date | None = None,
        processed_by: str | None = None,
    ) -> IssueRequestModel:
        """
        Approve a pending request and issue the copy.

        Safe to retry: a second call fails with AlreadyProcessedError.

        Raises:
            NotFoundError: If the request does not exist
            AlreadyProcessedError: If the request is no longer PENDING
            OutOfStockError: If no copy is free; the request stays PENDING
            MemberNotEligibleError: If the member lost good standing; the
                request stays PENDING
        """
        try:
            request = self._get_request(request_id, for_update=True)
            self._ensure_pending(request)
            record = self.circulation._issue(request.book_id, request.student_id, due_date)
        except RepositoryException:
            self.session.rollback()
            raise

        request.status = RequestStatus.APPROVED
        request.processed_at = self.clock.now()
        request.processed_by = processed_by
        request.borrow_record_id = record.id
        safe_commit(self.session, "approve issue request")

        logger.info("Request %s approved by %s; loan %s", request_id, processed_by, record.id)
        model = self._to_model(request)
        self.notifier.request_approved(model, BorrowModel.model_validate(record, from_attributes=True))
        return model

    def reject(
        self, request_id: str, reason: str, processed_by: str | None = None
    ) -> IssueRequestModel:
        """
        Reject a pending request.

        Raises:
            ReasonRequiredError: If reason is blank (checked before anything is read)
            NotFoundError: If the request does not exist
            AlreadyProcessedError: If the request is no longer PENDING
        """
        if reason is None or not reason.strip():
            raise ReasonRequiredError("A rejection reason is required")

        request = self._get_request(request_id, for_update=True)
        self._ensure_pending(request)

        request.status = RequestStatus.REJECTED
        request.rejection_reason = reason.strip()
        request.processed_at = self.clock.now()
        request.processed_by = processed_by
        safe_commit(self.session, "reject issue request")

        logger.info("Request %s rejected by %s: %s", request_id, processed_by, request.rejection_reason)
        model = self._to_model(request)
        self.notifier.request_rejected(model)
        return model

    def bulk_approve(
        self, request_ids: list[str], processed_by: str | None = None
    ) -> BulkApprovalResult:
        """
        Approve requests one by one, in the order given.

        Each item commits on its own. Items that fail are reported with their
        error code and stay PENDING; storage failures still abort the call.
        """
        result = BulkApprovalResult()

        for request_id in request_ids:
            try:
                self.approve(request_id, processed_by=processed_by)
            except BULK_ITEM_ERRORS as e:
                logger.info("Bulk approval skipped %s: %s", request_id, e.code)
                result.failed_requests.append(FailedRequest(id=request_id, reason=e.code))
            else:
                result.succeeded.append(request_id)
                result.approved_count += 1

        logger.info(
            "Bulk approval by %s: %d approved, %d failed",
            processed_by,
            result.approved_count,
            result.failed_count,
        )
        return result

    def get_request(self, request_id: str) -> IssueRequestModel:
        return self._to_model(self._get_request(request_id))

    def list_requests(
        self,
        status: RequestStatus | None = None,
        student_id: str | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[IssueRequestModel]:
        """List requests, oldest first (the natural bulk-approval order)."""
        query = select(IssueRequestDB)
        if status:
            query = query.where(IssueRequestDB.status == status)
        if student_id:
            query = query.where(IssueRequestDB.student_id == student_id)
        query = query.order_by(IssueRequestDB.requested_at, IssueRequestDB.id)

        return paginate(self.session, query, pagination, self._to_model, "Failed to list requests")

    def _requests_this_month(self, student_id: str, now: datetime) -> int:
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        query = select(func.count()).where(
            IssueRequestDB.student_id == student_id,
            IssueRequestDB.requested_at >= month_start,
        )
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar(),
            "Failed to count this month's requests",
        ) or 0

    def _get_request(self, request_id: str, for_update: bool = False) -> IssueRequestDB:
        query = (
            select(IssueRequestDB)
            .where(IssueRequestDB.id == request_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        request = safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            f"Failed to get request {request_id}",
        )
        if request is None:
            raise NotFoundError(f"Request {request_id} not found")
        return request

    @staticmethod
    def _ensure_pending(request: IssueRequestDB) -> None:
        if request.status != RequestStatus.PENDING:
            raise AlreadyProcessedError(
                f"Request {request.id} is already {request.status.value}"
            )

    @staticmethod
    def _to_model(request: IssueRequestDB) -> IssueRequestModel:
        return IssueRequestModel.model_validate(request, from_attributes=True)
