"""Error types shared by the scheduling services.

Business logic errors that should not be logged as database errors.
"""


class NotFoundError(LookupError):
    """Raised when an identifier handed in by the caller matches no row."""


class NoValidDatesError(ValueError):
    """Raised when a pasted date list contains no parseable date."""

    def __init__(self, message: str = "Paste at least one valid date") -> None:
        super().__init__(message)


BUSINESS_ERRORS: tuple[type[Exception], ...] = (NotFoundError, ValueError)
