from typing import Any


class SwitchyardError(Exception):
    """Base exception for the job queue."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(SwitchyardError):
    """Raised when a job type, payload or enqueue option is invalid."""


class NotFoundError(SwitchyardError):
    """Raised when a referenced job does not exist."""


class InvalidStateTransitionError(SwitchyardError):
    """Raised when an operation is not legal from the job's current status."""

    def __init__(
        self,
        message: str,
        current_status: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.current_status = current_status
        super().__init__(message, details)


class HandlerMissingError(SwitchyardError):
    """Raised when no handler is registered for a job type.

    A configuration error: retrying cannot change the outcome.
    """

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"No handler for job type: {job_type}", {"job_type": job_type})


class HandlerError(SwitchyardError):
    """A handler raised; the message is the handler's own message."""

    def __init__(self, job_type: str, cause: BaseException):
        self.job_type = job_type
        self.cause = cause
        super().__init__(
            str(cause) or cause.__class__.__name__,
            {"job_type": job_type, "exception": cause.__class__.__name__},
        )


class HandlerTimeoutError(SwitchyardError):
    """A handler overran its job's timeout_ms."""

    def __init__(self, job_type: str, timeout_ms: int):
        self.job_type = job_type
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Job timed out after {timeout_ms}ms",
            {"job_type": job_type, "timeout_ms": timeout_ms},
        )


class JobCancelledError(SwitchyardError):
    """Raised by a cancellation token once cancellation was requested."""

    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"Job was cancelled ({reason})", {"reason": reason})


class LockNotAcquiredError(SwitchyardError):
    """Raised when a required distributed lease is held elsewhere."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Lock is held by another instance: {key}", {"key": key})
