"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Bad amount, secret or receiver; rejected before any store or gateway call"""

    pass


class StateConflict(DomainException):
    """Request conflicts with current ledger state (no active loan, already redeemed, ...)"""

    pass


class MissingRedemptionSecret(StateConflict):
    """Claimed check has no stored secret and can never be paid out"""

    pass


class NotFoundError(DomainException):
    """Requested record does not exist"""

    pass


class AccessDeniedError(DomainException):
    """Caller is not a party to the requested record"""

    pass


class GatewayFailure(DomainException):
    """Wallet rail declined or could not complete a transfer"""

    pass


class GatewayLockout(GatewayFailure):
    """Identity temporarily locked after repeated failed secret attempts"""

    pass


class GatewayTimeout(GatewayFailure):
    """
    No response within the transfer timeout.

    The outcome is unknown: the rail may or may not have moved the funds.
    """

    def __init__(self, message: str, request_id: str | None = None):
        super().__init__(message)
        self.request_id = request_id


class StorageFailure(DomainException):
    """Ledger store operation failed; nothing from it is assumed committed"""

    pass
