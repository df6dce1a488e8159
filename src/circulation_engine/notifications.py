"""
Outbound notices for circulation events.

Delivery (email, push, in-app) belongs to an external channel. The engine
only announces events through a `Notifier`; the default implementation
writes them to the log. Notices are sent after the ledger change commits.
"""

import logging
from typing import Protocol

from .models.borrow import BorrowRecord
from .models.penalty import PenaltySummary
from .models.request import AcquisitionRequest, IssueRequest
from .models.waitlist import WaitlistEntry

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def request_approved(self, request: IssueRequest, record: BorrowRecord) -> None: ...

    def request_rejected(self, request: IssueRequest) -> None: ...

    def acquisition_reviewed(self, request: AcquisitionRequest) -> None: ...

    def waitlist_promoted(self, entry: WaitlistEntry, record: BorrowRecord | None) -> None: ...

    def penalty_settled(self, summary: PenaltySummary) -> None: ...


class LoggingNotifier:
    """Notifier that records every notice in the application log."""

    def request_approved(self, request: IssueRequest, record: BorrowRecord) -> None:
        logger.info(
            "Notify %s: request %s approved, loan %s due %s",
            request.student_id,
            request.id,
            record.id,
            record.due_date.isoformat(),
        )

    def request_rejected(self, request: IssueRequest) -> None:
        logger.info(
            "Notify %s: request %s rejected (%s)",
            request.student_id,
            request.id,
            request.rejection_reason,
        )

    def acquisition_reviewed(self, request: AcquisitionRequest) -> None:
        logger.info(
            "Notify %s: acquisition request %s for '%s' %s",
            request.student_id,
            request.id,
            request.book_name,
            request.status.value,
        )

    def waitlist_promoted(self, entry: WaitlistEntry, record: BorrowRecord | None) -> None:
        if record is None:
            logger.info("Notify %s: you are next for book %s", entry.student_id, entry.book_id)
        else:
            logger.info(
                "Notify %s: a copy of book %s has been issued to you (loan %s)",
                entry.student_id,
                entry.book_id,
                record.id,
            )

    def penalty_settled(self, summary: PenaltySummary) -> None:
        logger.info(
            "Notify %s: penalty on loan %s is %s",
            summary.student_id,
            summary.borrow_record_id,
            summary.penalty_status.value,
        )


class _NotifierStore:
    _instance: Notifier | None = None


def get_notifier() -> Notifier:
    if _NotifierStore._instance is None:  # type: ignore[reportPrivateUsage]
        _NotifierStore._instance = LoggingNotifier()  # type: ignore[reportPrivateUsage]
    return _NotifierStore._instance  # type: ignore[reportPrivateUsage]


def set_notifier(notifier: Notifier | None) -> None:
    _NotifierStore._instance = notifier  # type: ignore[reportPrivateUsage]
