from __future__ import annotations

from typing import Sequence


class BookingError(Exception):
    """Base class for every failure the booking engine reports to callers."""

    code = "ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationFailedError(BookingError):
    """Malformed or policy-violating input. Carries every violated rule."""

    code = "VALIDATION_ERROR"

    def __init__(self, errors: Sequence[str] | str) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__(", ".join(self.errors))


class NotFoundError(BookingError):
    code = "NOT_FOUND"


class ConflictError(BookingError):
    code = "CONFLICT"


class DuplicateConfirmationCodeError(ConflictError):
    """The unique constraint on confirmation codes rejected an insert."""


class CodeGenerationExhaustedError(ConflictError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Failed to generate unique confirmation code after {attempts} attempts")
        self.attempts = attempts


class ForbiddenError(BookingError):
    code = "FORBIDDEN"


class StoreBusyError(BookingError):
    """Lock wait timeout or deadlock in the backing store. Safe to retry."""

    code = "TRANSIENT"
