"""Custom exceptions for the quiz attempt client."""


class QuizAttemptError(Exception):
    """Base exception for quiz attempt errors."""

    retryable: bool = False


class LoadError(QuizAttemptError):
    """Quiz or question retrieval failed."""

    retryable = True


class ValidationError(QuizAttemptError):
    """Local input was rejected before reaching the server."""

    retryable = True


class SubmissionError(QuizAttemptError):
    """Answer submission failed. Local answers are kept."""

    retryable = True


class OverrideError(QuizAttemptError):
    """Lockdown override could not be activated."""

    pass


class InvalidStateError(QuizAttemptError):
    """Operation not allowed in the current attempt state."""

    pass


class SessionError(QuizAttemptError):
    """Unrecoverable attempt error. The taker is sent away."""

    pass


class QuizDeletedError(SessionError):
    """Quiz no longer exists upstream."""

    pass


class SessionTerminatedError(SessionError):
    """Attempt was terminated, e.g. by too many security violations."""

    pass


class ApiError(QuizAttemptError):
    """HTTP call to the quiz API failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(ApiError):
    """Bearer token missing, expired or rejected."""

    pass


class NotFoundError(ApiError):
    """Requested resource does not exist."""

    pass


class QuizAlreadyAttemptedError(SessionError):
    """Attempt already completed. The taker is sent to the review page."""

    def __init__(self, message: str, redirect: str | None = None) -> None:
        super().__init__(message)
        self.redirect = redirect


class BrowserError(QuizAttemptError):
    """Kiosk browser could not be started or driven."""

    pass
