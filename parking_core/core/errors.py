"""Domain and transaction error taxonomy.

Every error raised inside a transactional callback is caught once at the
transaction manager boundary and returned to the caller inside a failure
result. The ``code`` attribute is what the HTTP layer translates into a status
code, ``transaction_id`` is stamped by the manager when the error crosses its
boundary.
"""

from typing import Any, Dict, Optional


class ParkingError(Exception):
    """Base class for all errors surfaced by the parking core."""

    code = "PARKING_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        transaction_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}
        self.transaction_id = transaction_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "transaction_id": self.transaction_id,
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(code={self.code}, message={self.message!r})>"


class NotFoundError(ParkingError):
    """Referenced entity does not exist."""

    code = "NOT_FOUND"


class InvalidStateError(ParkingError):
    """Entity exists but is in the wrong state for the requested transition."""

    code = "INVALID_STATE"


class ConflictError(ParkingError):
    """Operation would violate a uniqueness invariant."""

    code = "CONFLICT"


class ValidationError(ParkingError):
    """Input fails a domain rule."""

    code = "VALIDATION_ERROR"


class TransactionError(ParkingError):
    """Infrastructure-level failure of a unit of work.

    ``retryable`` marks transient store conflicts (lock timeouts, deadlocks,
    serialization failures) that a caller may retry with backoff.
    """

    code = "TRANSACTION_ERROR"

    def __init__(self, message: str, *, retryable: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.retryable = retryable


class TransactionTimeoutError(TransactionError):
    code = "TIMEOUT"

    def __init__(self, transaction_id: str, timeout: float):
        super().__init__(
            f"Transaction {transaction_id} timed out after {timeout:g}s",
            transaction_id=transaction_id,
            details={"timeout_seconds": timeout},
        )
        self.timeout = timeout


class SavepointError(TransactionError):
    code = "SAVEPOINT_ERROR"
