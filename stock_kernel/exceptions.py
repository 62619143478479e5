"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A stock posting either applies completely or not at all, and the caller has
to know precisely why it did not apply: a retry is right for a concurrency
conflict, wrong for a validation failure, and pointless for a replayed
idempotency key.  Every error therefore has:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA (item, warehouse, quantities) instead of prose only

Example:
    try:
        store.apply_movement(item_id, warehouse_id, None, Decimal("-5"))
    except InsufficientStockError as e:
        api_response(code=e.code, available=e.available, requested=e.requested)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- ValidationError
    |   +-- UnknownReferenceError
    |   +-- InactiveReferenceError
    |   +-- InvalidQuantityError
    |   +-- MissingFieldError
    |
    +-- InsufficientStockError
    +-- ReservationError
    +-- ConcurrencyConflictError
    +-- DuplicateDocumentError
    +-- NotFoundError
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                  | When Raised
----------------------|------------------------------------------------------
VALIDATION_ERROR      | Malformed document (same-location transfer, bad
                      | adjustment direction)
UNKNOWN_REFERENCE     | Item / warehouse / bin / supplier id does not exist
INACTIVE_REFERENCE    | Referenced item or warehouse is deactivated
INVALID_QUANTITY      | Quantity <= 0 on a line, or a quantity or cost
                      | that is not a finite number
MISSING_FIELD         | Mandatory field absent (adjustment reason, actor)
INSUFFICIENT_STOCK    | Outbound movement exceeds available quantity
RESERVATION_ERROR     | Release of more than is reserved
CONCURRENCY_CONFLICT  | StockLevel version changed under the writer
DUPLICATE_DOCUMENT    | Idempotency key reused for another document type,
                      | or document number collision
NOT_FOUND             | Document / work order / BOM id does not exist
IMMUTABILITY_VIOLATION| Update or delete of a ledger entry or posted line
"""

from decimal import Decimal
from uuid import UUID


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Validation-related exceptions


class ValidationError(StockKernelError):
    """A document or request failed validation before any write."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class UnknownReferenceError(ValidationError):
    """A referenced id does not exist."""

    code: str = "UNKNOWN_REFERENCE"

    def __init__(self, entity_type: str, entity_id: UUID | str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(
            f"Unknown {entity_type} reference: {entity_id}",
            field=f"{entity_type}_id",
        )


class InactiveReferenceError(ValidationError):
    """A referenced entity exists but has been deactivated."""

    code: str = "INACTIVE_REFERENCE"

    def __init__(self, entity_type: str, entity_id: UUID | str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(
            f"{entity_type.capitalize()} {entity_id} is inactive",
            field=f"{entity_type}_id",
        )


class InvalidQuantityError(ValidationError):
    """A quantity or cost is not a number, or a quantity is not strictly positive."""

    code: str = "INVALID_QUANTITY"

    def __init__(
        self,
        quantity,
        line_no: int | None = None,
        field: str = "quantity",
        malformed: bool = False,
    ):
        self.quantity = quantity
        self.line_no = line_no
        where = f" on line {line_no}" if line_no is not None else ""
        if malformed:
            message = f"{field} must be a finite decimal number{where}, got {quantity!r}"
        else:
            message = f"Quantity must be greater than zero{where}, got {quantity}"
        super().__init__(message, field=field)


class MissingFieldError(ValidationError):
    """A mandatory field was empty."""

    code: str = "MISSING_FIELD"

    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(f"Field '{field_name}' is required", field=field_name)


# Stock-related exceptions


class InsufficientStockError(StockKernelError):
    """An outbound movement would drive available quantity negative."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        bin_id: UUID | None,
        available: Decimal,
        requested: Decimal,
    ):
        self.item_id = str(item_id)
        self.warehouse_id = str(warehouse_id)
        self.bin_id = str(bin_id) if bin_id is not None else None
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for item {item_id} in warehouse {warehouse_id}"
            f" (bin {bin_id}): available {available}, requested {requested}"
        )


class ReservationError(StockKernelError):
    """A release exceeded the reserved quantity."""

    code: str = "RESERVATION_ERROR"

    def __init__(self, item_id: UUID, reserved: Decimal, requested: Decimal):
        self.item_id = str(item_id)
        self.reserved = reserved
        self.requested = requested
        super().__init__(
            f"Cannot release {requested} of item {item_id}: only {reserved} reserved"
        )


# Concurrency-related exceptions


class ConcurrencyConflictError(StockKernelError):
    """
    Optimistic version mismatch on a StockLevel row.

    The whole document should be resubmitted.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: UUID | str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class DuplicateDocumentError(StockKernelError):
    """
    Idempotency-key replay for a different document type, or a number
    collision.  The caller should fetch the existing document.
    """

    code: str = "DUPLICATE_DOCUMENT"

    def __init__(
        self,
        message: str,
        existing_number: str | None = None,
        existing_type: str | None = None,
    ):
        self.existing_number = existing_number
        self.existing_type = existing_type
        super().__init__(message)


class NotFoundError(StockKernelError):
    """A referenced header, line or other entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: UUID | str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} {entity_id} not found")


# Immutability-related exceptions


class ImmutabilityViolationError(StockKernelError):
    """
    Attempted to modify or delete an immutable record.

    Ledger entries are immutable from creation.  A completed document keeps
    its status and its lines, and an item keeps its code once assigned.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
