"""Domain errors raised by the allocation, proposal, ledger and reconciliation services.

Routers never catch these; main.py maps them onto HTTP responses.
"""


class SplitError(Exception):
    """Base class for expense service errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SplitError):
    """Malformed input. Nothing has been persisted."""

    status_code = 400


class NotFoundError(SplitError):
    """A referenced expense, group or member does not exist."""

    status_code = 404


class ConflictError(SplitError):
    """The requested transition does not apply to the expense's current state,
    or a ledger row for the same (expense, ower) already exists."""

    status_code = 409
