"""Domain errors raised by the ledger and settlement services.

Every failure mode has its own type so callers can tell them apart. The
HTTP layer maps ``status_code`` to a response in one exception handler.
"""


class LedgerError(Exception):
    """Base class for ledger and settlement failures."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LedgerError):
    """Group, settlement or expense share does not exist."""
    status_code = 404


class PermissionDeniedError(LedgerError):
    """Actor is not a group member, or not a party to the settlement."""
    status_code = 403


class LedgerValidationError(LedgerError):
    """Bad amount, same-user settlement, unsupported currency, over-settlement."""
    status_code = 422


class ConversionError(LedgerError):
    """Exchange rate unavailable and no last-known rate to fall back on."""
    status_code = 503


class InvalidStateTransition(LedgerError):
    """Attempt to mutate a settlement that is no longer PENDING."""
    status_code = 409
