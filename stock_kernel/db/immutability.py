"""
ORM-level immutability enforcement for stock records.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                       | Operations blocked
------------------|--------------------------------------|-------------------
LedgerEntry       | ALWAYS (from creation)               | UPDATE, DELETE
Document headers  | When the status is completed          | status change, DELETE
Document lines    | When the header status is completed  | UPDATE, DELETE
Item              | Always, for the ``code`` column      | UPDATE of code

SQLAlchemy fires ``before_update`` / ``before_delete`` during flush, before
any SQL is sent:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
    [before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

A raised error aborts the flush; the posting facade rolls the transaction
back.  Bulk ``UPDATE``/``DELETE`` statements bypass mapper events and are
not used by the kernel.

A header moves from ``pending`` to ``completed`` in the posting transaction;
from then on its status is fixed.

===============================================================================
USAGE
===============================================================================

Registered by ``init_engine_from_url``.  Registration is idempotent.

To temporarily disable (TESTS ONLY):

    from stock_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_ledger_entry_update(mapper, connection, target):
    """Ledger entries are append-only."""
    _blocked("LedgerEntry", target, "UPDATE", "Ledger entries cannot be modified")


def _check_ledger_entry_delete(mapper, connection, target):
    _blocked("LedgerEntry", target, "DELETE", "Ledger entries cannot be deleted")


def _header_is_posted(target) -> bool:
    from stock_kernel.models.documents import DocumentStatus

    header = target.document
    return header is not None and header.status == DocumentStatus.COMPLETED


def _check_document_header_update(mapper, connection, target):
    from stock_kernel.models.documents import DocumentStatus

    history = inspect(target).attrs.status.history
    if DocumentStatus.COMPLETED in (history.deleted or ()) and target.status != DocumentStatus.COMPLETED:
        _blocked(
            type(target).__name__,
            target,
            "UPDATE",
            f"A posted document cannot change status to {getattr(target.status, 'value', target.status)}",
        )


def _check_document_header_delete(mapper, connection, target):
    if target.is_posted:
        _blocked(
            type(target).__name__,
            target,
            "DELETE",
            "Posted documents cannot be deleted",
        )


def _check_document_line_update(mapper, connection, target):
    """Lines are frozen once their header is completed."""
    if _header_is_posted(target):
        _blocked(
            type(target).__name__,
            target,
            "UPDATE",
            "Document lines cannot be modified after the document is posted",
        )


def _check_document_line_delete(mapper, connection, target):
    # Lines of an unposted document may still be deleted
    if _header_is_posted(target):
        _blocked(
            type(target).__name__,
            target,
            "DELETE",
            "Document lines cannot be deleted after the document is posted",
        )


def _check_item_code(mapper, connection, target):
    """Item.code is assigned once; documents and reports key on it."""
    if inspect(target).attrs.code.history.has_changes():
        _blocked("Item", target, "UPDATE", "Item code cannot be changed")


def _listener_table():
    from stock_kernel.models.documents import (
        Adjustment,
        AdjustmentLine,
        Backflush,
        BackflushLine,
        Grn,
        GrnLine,
        Min,
        MinLine,
        Mrn,
        MrnLine,
        Transfer,
        TransferLine,
    )
    from stock_kernel.models.ledger import LedgerEntry
    from stock_kernel.models.registry import Item

    table = [
        (LedgerEntry, "before_update", _check_ledger_entry_update),
        (LedgerEntry, "before_delete", _check_ledger_entry_delete),
        (Item, "before_update", _check_item_code),
    ]
    for header_model in (Grn, Min, Mrn, Transfer, Adjustment, Backflush):
        table.append((header_model, "before_update", _check_document_header_update))
        table.append((header_model, "before_delete", _check_document_header_delete))
    for line_model in (GrnLine, MinLine, MrnLine, TransferLine, AdjustmentLine, BackflushLine):
        table.append((line_model, "before_update", _check_document_line_update))
        table.append((line_model, "before_delete", _check_document_line_delete))
    return table


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; a listener already present is skipped.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring one that was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to bypass the rules.
    """
    for target, event_name, listener_fn in _listener_table():
        _safe_remove_listener(target, event_name, listener_fn)
