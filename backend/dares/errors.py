"""
Settlement errors.

Each error carries the HTTP status the API answers with.
"""


class SettlementError(Exception):
    """Base class for every refused settlement operation."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SettlementError):
    """Input has the right shape but an unacceptable value."""


class ConflictError(SettlementError):
    """Signature reuse or an entitlement that was already claimed."""


class IneligibleError(SettlementError):
    """Nothing to claim or the dare is in the wrong state."""


class NotFoundError(SettlementError):
    status_code = 404


class ForbiddenError(SettlementError):
    status_code = 403


class AuthError(SettlementError):
    """Missing, stale or invalid wallet signature."""
    status_code = 401


class VerificationError(SettlementError):
    """The on-chain transfer behind a bet could not be confirmed."""

    def __init__(self, message: str, reason: str = ""):
        super().__init__(f"{message}: {reason}" if reason else message)
        self.reason = reason
