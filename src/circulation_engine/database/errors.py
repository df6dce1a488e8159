"""
Error taxonomy for the Circulation Engine.

Every failure a caller can act on is a RepositoryException subclass with a
stable `code`. Tool handlers put that code in their error responses and bulk
operations use it as the per-item failure reason.
"""


class RepositoryException(Exception):
    """Base exception for repository operations."""

    code = "RepositoryError"


class NotFoundError(RepositoryException):
    """Raised when an entity is not found."""

    code = "NotFound"


class DuplicateError(RepositoryException):
    """Raised when attempting to create a duplicate entity."""

    code = "Duplicate"


class AlreadyProcessedError(RepositoryException):
    """Raised when a terminal record is asked to transition again."""

    code = "AlreadyProcessed"


class AlreadyReturnedError(AlreadyProcessedError):
    """Raised when a return is processed for a loan that is already closed."""

    code = "AlreadyReturned"


class OutOfStockError(RepositoryException):
    """Raised when no copy is free at the moment of issuance."""

    code = "OutOfStock"


class MemberNotEligibleError(RepositoryException):
    """Raised when the member is not in good standing."""

    code = "MemberNotEligible"


class InvalidAmountError(RepositoryException):
    """Raised for payment amounts outside (0, outstanding balance]."""

    code = "InvalidAmount"


class ReasonRequiredError(RepositoryException):
    code = "ReasonRequired"


class AlreadyOnWaitlistError(RepositoryException):
    code = "AlreadyOnWaitlist"


class BookAvailableError(RepositoryException):
    """Raised when joining the waitlist of a title that has free copies."""

    code = "BookAvailable"


class ConcurrencyConflictError(RepositoryException):
    """Raised when a record changed between read and write. Safe to retry."""

    code = "ConcurrencyConflict"


class RequestLimitExceededError(RepositoryException):
    code = "RequestLimitExceeded"
