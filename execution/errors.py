"""
Exception types raised by the position engine.
"""


class SepDexError(Exception):
    """Base class for position engine errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(SepDexError):
    """Malformed or out-of-range input. Never retried."""

    def __init__(self, field: str, message: str):
        super().__init__(f'{field}: {message}', {'field': field})
        self.field = field


class PositionClosedError(ValidationError):
    """Position has already left the open state."""

    def __init__(self, position_id: str, status: str):
        super().__init__('status', f'position {position_id} is already {status}')
        self.position_id = position_id
        self.status = status


class NotFoundError(SepDexError):
    """Referenced position or user does not exist."""
    pass


class SettlementError(SepDexError):
    """A ledger or signing call failed.

    When several settlement paths were tried, ``errors`` holds each
    underlying failure in the order the paths were attempted.
    """

    def __init__(self, message: str, errors: list = None):
        super().__init__(message, {'errors': [str(e) for e in (errors or [])]})
        self.errors = list(errors or [])


class OracleError(SepDexError):
    """Price lookup failed."""
    pass
