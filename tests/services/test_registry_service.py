"""
Tests for RegistryService and ReferenceValidator.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from stock_kernel.exceptions import (
    InactiveReferenceError,
    MissingFieldError,
    NotFoundError,
    UnknownReferenceError,
    ValidationError,
)
from stock_kernel.services.registry_service import ReferenceValidator
from tests.conftest import TEST_ACTOR


class TestItems:
    def test_defaults(self, registry):
        item = registry.create_item("NUT-M8", "Hex nut M8", TEST_ACTOR)

        assert item.uom == "PCS"
        assert item.is_active
        assert item.created_by == TEST_ACTOR

    def test_code_required(self, registry):
        with pytest.raises(MissingFieldError):
            registry.create_item("", "No code", TEST_ACTOR)

    def test_duplicate_code(self, session, registry, item):
        with pytest.raises(IntegrityError):
            registry.create_item(item.code, "Duplicate", TEST_ACTOR)
        session.rollback()

    def test_unknown_default_supplier(self, registry):
        with pytest.raises(UnknownReferenceError):
            registry.create_item("X-1", "X", TEST_ACTOR, default_supplier_id=uuid4())

    def test_update_rejects_unknown_field(self, registry, item):
        with pytest.raises(ValidationError) as exc_info:
            registry.update_item(item.id, TEST_ACTOR, colour="red")

        assert exc_info.value.field == "colour"

    def test_update_unknown_item(self, registry):
        with pytest.raises(NotFoundError):
            registry.update_item(uuid4(), TEST_ACTOR, name="x")

    def test_deactivate(self, registry, item):
        registry.deactivate_item(item.id, TEST_ACTOR)

        assert not item.is_active
        assert item.min_stock is None


class TestBins:
    def test_bin_belongs_to_warehouse(self, bin_a, warehouse):
        assert bin_a.warehouse_id == warehouse.id

    def test_bin_in_unknown_warehouse(self, registry):
        with pytest.raises(UnknownReferenceError):
            registry.create_bin(uuid4(), "Z-01", TEST_ACTOR)


class TestReferenceValidator:
    def test_resolve(self, session, item, warehouse, bin_a):
        resolved = ReferenceValidator(session).resolve(item.id, warehouse.id, bin_a.id)

        assert resolved.item is item
        assert resolved.warehouse is warehouse
        assert resolved.bin is bin_a

    def test_resolve_without_bin(self, session, item, warehouse):
        assert ReferenceValidator(session).resolve(item.id, warehouse.id).bin is None

    def test_bin_of_other_warehouse(self, session, item, second_warehouse, bin_a):
        with pytest.raises(UnknownReferenceError) as exc_info:
            ReferenceValidator(session).resolve(item.id, second_warehouse.id, bin_a.id)

        assert exc_info.value.entity_type == "bin"

    def test_inactive_item(self, session, registry, item, warehouse):
        registry.deactivate_item(item.id, TEST_ACTOR)

        with pytest.raises(InactiveReferenceError) as exc_info:
            ReferenceValidator(session).resolve(item.id, warehouse.id)

        assert exc_info.value.code == "INACTIVE_REFERENCE"

    def test_unknown_supplier(self, session):
        with pytest.raises(UnknownReferenceError):
            ReferenceValidator(session).supplier(uuid4())

    def test_reorder_point_round_trips(self, session, make_item):
        tracked = make_item(reorder_point=Decimal("15"))

        assert tracked.reorder_point == Decimal("15")
