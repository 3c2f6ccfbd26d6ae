"""Ledger error taxonomy.

Every error carries a stable ``code`` (the name an indexer or client matches on)
and aborts the operation that raised it with nothing persisted.
"""


class LedgerError(Exception):
    """Base exception for ledger errors."""
    code = "LedgerError"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class ValidationError(LedgerError):
    """Field length/range violation, or an operation the record's schema does not support."""
    code = "ValidationError"


class UnsupportedOperation(ValidationError):
    code = "UnsupportedOperation"


class AddressOccupied(LedgerError):
    """A record already exists at the derived address."""
    code = "AddressOccupied"


class NotFound(LedgerError):
    code = "NotFound"


class Unauthorized(LedgerError):
    """The invoking principal is not the owner or bound delegate of the record."""
    code = "Unauthorized"


class NonCompliantFarm(LedgerError):
    code = "NonCompliantFarm"


class TokenServiceError(LedgerError):
    """The identity-token collaborator failed; the registration is aborted."""
    code = "TokenServiceError"
