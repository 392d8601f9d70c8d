# Overview: Domain error taxonomy shared by services and routes.

"""
Ledger error taxonomy.

Every service raises one of these; routes map `http_status` onto the
response. Anything raised inside a unit of work aborts it, so callers only
ever see the most specific value below.

- ValidationError:      bad input shape, raised before any transaction opens
- NotFound:             referenced entity missing
- AlreadyResolved:      approve/reject race loser
- InsufficientStock:    export would oversell
- DuplicateReference:   reused order code / SKU / pending request
- TransientStoreError:  lock timeout, deadlock, connection loss; retry the whole operation
- InvariantViolation:   invariant broken after a write; surfaced, never corrected
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every domain error."""
    http_status = 400

    def to_dict(self) -> dict:
        return {"error": str(self), "type": type(self).__name__}


class ValidationError(LedgerError, ValueError):
    """400-level input problem."""
    http_status = 400


class InvalidReference(ValidationError):
    """A reference id could not be parsed."""


class NotFound(LedgerError):
    http_status = 404


class NoActiveTaxRate(NotFound):
    """No tax rule is effective for the requested type and date."""


class AlreadyResolved(LedgerError):
    """The approval request left PENDING before this call got the lock."""
    http_status = 409


class DuplicateReference(LedgerError):
    http_status = 409


class InsufficientStock(LedgerError):
    """
    Export would make on-hand stock negative.

    Carries the product and both quantities so callers can report them.
    """
    http_status = 409

    def __init__(self, product_id: int, product_name: str | None, have: int, want: int):
        self.product_id = product_id
        self.product_name = product_name
        self.have = have
        self.want = want
        label = product_name or f"#{product_id}"
        super().__init__(
            f"insufficient stock for product {label} (current: {have}, requested: {want})"
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"product_id": self.product_id, "have": self.have, "want": self.want})
        return data


class TransientStoreError(LedgerError):
    """Lock timeout, deadlock or lost connection. Safe to retry the whole operation."""
    http_status = 503


class DeadlineExceeded(TransientStoreError):
    """The execution context deadline expired before commit."""


class InvariantViolation(LedgerError):
    """Fatal: a ledger invariant was violated. Must be surfaced, never patched over."""
    http_status = 500
