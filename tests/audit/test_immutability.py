"""
Append-only ledger and frozen posted documents.

Verifies:
- LedgerEntry can never be updated or deleted through the ORM
- A completed document header keeps its status and cannot be deleted
- Lines of a completed document can no longer change
- Item.code cannot be changed once assigned
- Every blocked attempt is logged
"""

from contextlib import contextmanager
from decimal import Decimal

import pytest
from sqlalchemy import event

from stock_kernel.db.immutability import (
    _check_ledger_entry_update,
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from stock_kernel.exceptions import ImmutabilityViolationError, ValidationError
from stock_kernel.models.documents import DocumentStatus, VoucherType
from stock_kernel.models.ledger import LedgerEntry
from stock_kernel.selectors.document_selector import DocumentSelector
from stock_kernel.selectors.ledger_selector import LedgerSelector
from tests.conftest import TEST_ACTOR


@contextmanager
def disabled_immutability():
    """Temporarily remove the ORM listeners (simulates tampering)."""
    unregister_immutability_listeners()
    try:
        yield
    finally:
        register_immutability_listeners()


@pytest.fixture
def posted_receipt(receive, item):
    return receive(item.id, "10", unit_cost="2.00")


class TestLedgerEntryImmutability:
    def test_update_is_blocked(self, session, posted_receipt):
        (entry,) = LedgerSelector(session).entries_for_document(posted_receipt.document_id)

        entry.quantity_in = Decimal("1000")
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"
        session.rollback()

    def test_delete_is_blocked(self, session, posted_receipt):
        (entry,) = LedgerSelector(session).entries_for_document(posted_receipt.document_id)

        session.delete(entry)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_blocked_attempt_is_logged(self, session, posted_receipt, captured_logs):
        (entry,) = LedgerSelector(session).entries_for_document(posted_receipt.document_id)

        entry.reference = "edited"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["entity_type"] == "LedgerEntry"
        assert blocked[0]["operation"] == "UPDATE"

    def test_listeners_can_be_disabled_for_tests(self, session, posted_receipt):
        (entry,) = LedgerSelector(session).entries_for_document(posted_receipt.document_id)

        with disabled_immutability():
            entry.reference = "tampered"
            session.flush()

        assert entry.reference == "tampered"


class TestPostedDocumentLines:
    def test_line_update_is_blocked(self, session, posted_receipt):
        (line,) = DocumentSelector(session).lines(VoucherType.GRN, posted_receipt.document_id)

        line.quantity = Decimal("99")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_line_delete_is_blocked(self, session, posted_receipt):
        (line,) = DocumentSelector(session).lines(VoucherType.GRN, posted_receipt.document_id)

        session.delete(line)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestPostedDocumentHeader:
    def test_status_cannot_leave_completed(self, session, posted_receipt):
        header = DocumentSelector(session).get(VoucherType.GRN, posted_receipt.document_id)
        assert header.status == DocumentStatus.COMPLETED

        header.status = DocumentStatus.CANCELLED
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "Grn"
        session.rollback()

    def test_status_change_after_expiry_is_blocked(self, session, posted_receipt):
        header = DocumentSelector(session).get(VoucherType.GRN, posted_receipt.document_id)
        session.expire(header)

        header.status = DocumentStatus.DRAFT
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_header_delete_is_blocked(self, session, posted_receipt):
        header = DocumentSelector(session).get(VoucherType.GRN, posted_receipt.document_id)

        session.delete(header)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_notes_may_still_change(self, session, posted_receipt):
        header = DocumentSelector(session).get(VoucherType.GRN, posted_receipt.document_id)

        header.notes = "Checked by QA"
        session.flush()

        assert header.status == DocumentStatus.COMPLETED

class TestItemCode:
    def test_code_change_is_blocked(self, session, item):
        item.code = "BEAM-RENAMED"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_other_fields_may_change(self, session, registry, item):
        registry.update_item(item.id, TEST_ACTOR, name="Steel beam 2.0m", reorder_point=Decimal("20"))

        assert item.name == "Steel beam 2.0m"
        assert item.updated_by == TEST_ACTOR

    def test_update_item_refuses_code(self, registry, item):
        with pytest.raises(ValidationError):
            registry.update_item(item.id, TEST_ACTOR, code="OTHER")


class TestRegistration:
    def test_registration_is_idempotent(self):
        register_immutability_listeners()
        register_immutability_listeners()

        assert event.contains(LedgerEntry, "before_update", _check_ledger_entry_update)
