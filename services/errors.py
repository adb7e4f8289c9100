"""
Domain errors.

Every error carries the HTTP status it maps to; the application-level
handlers in paper_api.py render them into the {code, message, body} envelope.
"""

from typing import Any, Optional


class AppError(Exception):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, body: Any = None):
        self.message = message or self.default_message
        self.body = body if body is not None else []
        super().__init__(self.message)


class InvalidRequest(AppError):
    status_code = 400
    default_message = "Invalid request"


class Unauthorized(AppError):
    status_code = 401
    default_message = "Invalid or expired token"


class Forbidden(AppError):
    status_code = 403
    default_message = "Access denied"


class QuotaExceeded(Forbidden):
    """Raised before anything is persisted; body reports the counts."""

    def __init__(self, current: int, limit: int, message: Optional[str] = None):
        self.current = current
        self.limit = limit
        super().__init__(
            message or f"Limit reached ({current}/{limit})",
            body={"current": current, "limit": limit},
        )


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class QuestionNotFound(NotFound):
    def __init__(self, question_number: int):
        self.question_number = question_number
        super().__init__(f"Question number {question_number} not found in this paper.")


class Conflict(AppError):
    status_code = 409
    default_message = "Resource already exists"


class InvalidOtp(AppError):
    # Same message for every failing check so the response is not an oracle
    status_code = 400
    default_message = "Invalid or expired OTP."


class GenerationFailed(AppError):
    """Provider retries exhausted. `cause` is the last underlying error."""
    status_code = 400
    default_message = "Server is Busy Please Try Again Later, Thanks"

    def __init__(self, message: Optional[str] = None, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class IncompleteGeneration(GenerationFailed):
    def __init__(self, expected: int, got: int):
        self.expected = expected
        self.got = got
        super().__init__(f"Expected {expected} questions but got {got}")


class ExplanationPending(NotFound):
    default_message = "Explanation generation is in progress. Please try again shortly."
