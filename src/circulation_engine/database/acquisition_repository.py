"""
Acquisition-request repository for the Circulation Engine.

Members can ask the library to stock a title. Approval either adds a copy
to a matching catalog entry or creates a new one-copy entry; the new copy is
immediately offered to that title's waitlist.
"""

import logging
from decimal import Decimal
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..clock import Clock, get_clock
from ..config import EngineConfig, get_config
from ..models.request import AcquisitionRequest as AcquisitionModel
from ..models.request import RequestStatus
from ..notifications import Notifier, get_notifier
from .book_repository import BookRepository, generate_book_id
from .circulation_repository import CirculationRepository
from .repository import (
    AlreadyProcessedError,
    DuplicateError,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
    ReasonRequiredError,
    RepositoryException,
    paginate,
)
from .schema import AcquisitionRequest as AcquisitionDB
from .schema import Book as BookDB
from .schema import Member as MemberDB
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)


class AcquisitionCreateSchema(BaseModel):
    """Schema for filing an acquisition request."""

    student_id: str
    book_name: str = Field(..., min_length=1, max_length=500)
    author: str = Field(..., min_length=1, max_length=200)
    publisher: str | None = Field(None, max_length=200)
    edition: str | None = Field(None, max_length=50)
    genre: str | None = Field(None, max_length=100)
    justification: str | None = Field(None, max_length=2000)

    @field_validator("book_name", "author")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class AcquisitionRepository:
    """Repository for acquisition requests."""

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
        self.books = BookRepository(session)
        self.circulation = CirculationRepository(session, self.config, self.clock, self.notifier)

    def create_acquisition(self, data: AcquisitionCreateSchema) -> AcquisitionModel:
        """
        Raises:
            NotFoundError: If the member does not exist
            DuplicateError: If the catalog already holds this title, author
                and publisher
        """
        if self.session.get(MemberDB, data.student_id) is None:
            raise NotFoundError(f"Member {data.student_id} not found")

        if self.books.find_by_identity(data.book_name, data.author, data.publisher):
            raise DuplicateError(
                f"'{data.book_name}' by {data.author} is already in the catalog"
            )

        request = AcquisitionDB(
            id=f"acq_{uuid4().hex[:12]}",
            requested_at=self.clock.now(),
            status=RequestStatus.PENDING,
            **data.model_dump(),
        )
        self.session.add(request)
        safe_commit(self.session, "create acquisition request")

        logger.info("Member %s asked to acquire '%s'", data.student_id, data.book_name)
        return self._to_model(request)

    def approve_acquisition(
        self,
        request_id: str,
        reviewed_by: str | None = None,
        mrp: Decimal | None = None,
    ) -> AcquisitionModel:
        """
        Stock the requested title.

        Raises:
            NotFoundError: If the request does not exist
            AlreadyProcessedError: If the request was already reviewed
        """
        request = self._get_request(request_id)
        self._ensure_pending(request)

        try:
            existing = self.books.find_by_identity(request.book_name, request.author, request.publisher)
            if existing is not None:
                book_id = existing.id
                self.session.execute(
                    update(BookDB)
                    .where(BookDB.id == book_id)
                    .values(
                        total_copies=BookDB.total_copies + 1,
                        available_copies=BookDB.available_copies + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                self.circulation._refresh_book(book_id)
            else:
                book_id = generate_book_id()
                self.session.add(
                    BookDB(
                        id=book_id,
                        title=request.book_name,
                        author=request.author,
                        publisher=request.publisher,
                        edition=request.edition,
                        genre=request.genre,
                        mrp=mrp,
                        total_copies=1,
                        available_copies=1,
                    )
                )

            request.status = RequestStatus.APPROVED
            request.reviewed_by = reviewed_by
            request.reviewed_at = self.clock.now()
            request.book_id = book_id

            entry, issued = self.circulation._release_copy(book_id)
        except RepositoryException:
            self.session.rollback()
            raise
        safe_commit(self.session, "approve acquisition request")

        logger.info("Acquisition %s approved by %s; book %s", request_id, reviewed_by, book_id)
        model = self._to_model(request)
        self.notifier.acquisition_reviewed(model)
        if entry is not None:
            self.notifier.waitlist_promoted(
                self.circulation.waitlist.get_entry(book_id, entry.student_id),
                self.circulation._to_model(issued) if issued is not None else None,
            )
        return model

    def reject_acquisition(
        self, request_id: str, reason: str, reviewed_by: str | None = None
    ) -> AcquisitionModel:
        """
        Raises:
            ReasonRequiredError: If reason is blank
            NotFoundError: If the request does not exist
            AlreadyProcessedError: If the request was already reviewed
        """
        if reason is None or not reason.strip():
            raise ReasonRequiredError("A rejection reason is required")

        request = self._get_request(request_id)
        self._ensure_pending(request)

        request.status = RequestStatus.REJECTED
        request.rejection_reason = reason.strip()
        request.reviewed_by = reviewed_by
        request.reviewed_at = self.clock.now()
        safe_commit(self.session, "reject acquisition request")

        model = self._to_model(request)
        self.notifier.acquisition_reviewed(model)
        return model

    def list_acquisitions(
        self,
        status: RequestStatus | None = None,
        student_id: str | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[AcquisitionModel]:
        query = select(AcquisitionDB)
        if status:
            query = query.where(AcquisitionDB.status == status)
        if student_id:
            query = query.where(AcquisitionDB.student_id == student_id)
        query = query.order_by(AcquisitionDB.requested_at, AcquisitionDB.id)
        return paginate(
            self.session, query, pagination, self._to_model, "Failed to list acquisition requests"
        )

    def _get_request(self, request_id: str) -> AcquisitionDB:
        query = (
            select(AcquisitionDB)
            .where(AcquisitionDB.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            f"Failed to get acquisition request {request_id}",
        )
        if request is None:
            raise NotFoundError(f"Acquisition request {request_id} not found")
        return request

    @staticmethod
    def _ensure_pending(request: AcquisitionDB) -> None:
        if request.status != RequestStatus.PENDING:
            raise AlreadyProcessedError(
                f"Acquisition request {request.id} is already {request.status.value}"
            )

    @staticmethod
    def _to_model(request: AcquisitionDB) -> AcquisitionModel:
        return AcquisitionModel.model_validate(request, from_attributes=True)
