"""
RegistryService -- reference data for stock mutation targets.

Responsibility:
    Creates and maintains items, warehouses, bins and suppliers, and
    validates the ids a document references (ReferenceValidator).

Architecture position:
    Kernel > Services.  Master-data CRUD screens live outside the kernel; this
    is the narrow write path they call.

Invariants enforced:
    - Items are never deleted, only deactivated.
    - Item.code is immutable (enforced by the ORM listener; update_item
      refuses a code change up front).
    - A bin is always validated against the warehouse it belongs to.

Failure modes:
    - UnknownReferenceError / InactiveReferenceError from
      ReferenceValidator.resolve.
    - ValidationError on an unknown attribute passed to update_item.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from stock_kernel.exceptions import (
    InactiveReferenceError,
    MissingFieldError,
    NotFoundError,
    UnknownReferenceError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.registry import Bin, Item, Supplier, Warehouse
from stock_kernel.services.base import BaseService

logger = get_logger("services.registry")

_UPDATABLE_ITEM_FIELDS = frozenset({
    "name",
    "description",
    "uom",
    "min_stock",
    "max_stock",
    "reorder_point",
    "default_supplier_id",
    "requires_batch",
    "requires_serial",
})


@dataclass(frozen=True)
class ResolvedLocation:
    """Validated mutation target."""

    item: Item
    warehouse: Warehouse
    bin: Bin | None


class ReferenceValidator:
    """
    Read-only existence and activity checks for document references.

    Runs before any write of a posting, so an unknown id rejects the whole
    document without side effects.
    """

    def __init__(self, session: Session):
        self._session = session
        self._items: dict[UUID, Item] = {}

    def item(self, item_id: UUID) -> Item:
        if item_id in self._items:
            return self._items[item_id]
        item = self._session.get(Item, item_id)
        if item is None:
            raise UnknownReferenceError("item", item_id)
        if not item.is_active:
            raise InactiveReferenceError("item", item_id)
        self._items[item_id] = item
        return item

    def warehouse(self, warehouse_id: UUID) -> Warehouse:
        warehouse = self._session.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise UnknownReferenceError("warehouse", warehouse_id)
        if not warehouse.is_active:
            raise InactiveReferenceError("warehouse", warehouse_id)
        return warehouse

    def bin(self, bin_id: UUID | None, warehouse_id: UUID) -> Bin | None:
        if bin_id is None:
            return None
        bin_ = self._session.get(Bin, bin_id)
        # A bin of another warehouse is not a valid target here
        if bin_ is None or bin_.warehouse_id != warehouse_id:
            raise UnknownReferenceError("bin", bin_id)
        if not bin_.is_active:
            raise InactiveReferenceError("bin", bin_id)
        return bin_

    def supplier(self, supplier_id: UUID | None) -> Supplier | None:
        if supplier_id is None:
            return None
        supplier = self._session.get(Supplier, supplier_id)
        if supplier is None:
            raise UnknownReferenceError("supplier", supplier_id)
        return supplier

    def resolve(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        bin_id: UUID | None = None,
    ) -> ResolvedLocation:
        """Validate an (item, warehouse, bin) triple."""
        return ResolvedLocation(
            item=self.item(item_id),
            warehouse=self.warehouse(warehouse_id),
            bin=self.bin(bin_id, warehouse_id),
        )


class RegistryService(BaseService[Item]):
    """Write path for items, warehouses, bins and suppliers."""

    def __init__(self, session: Session, default_uom: str = "PCS"):
        super().__init__(session)
        self._default_uom = default_uom

    def create_supplier(
        self,
        code: str,
        name: str,
        created_by: str,
        contact_email: str | None = None,
    ) -> Supplier:
        if not code:
            raise MissingFieldError("code")
        supplier = Supplier(
            code=code,
            name=name,
            contact_email=contact_email,
            created_by=created_by,
        )
        self.session.add(supplier)
        self.session.flush()
        logger.info("supplier_created", extra={"supplier_id": str(supplier.id), "code": code})
        return supplier

    def create_item(
        self,
        code: str,
        name: str,
        created_by: str,
        uom: str | None = None,
        description: str | None = None,
        min_stock: Decimal | None = None,
        max_stock: Decimal | None = None,
        reorder_point: Decimal | None = None,
        default_supplier_id: UUID | None = None,
        requires_batch: bool = False,
        requires_serial: bool = False,
    ) -> Item:
        if not code:
            raise MissingFieldError("code")
        if default_supplier_id is not None:
            ReferenceValidator(self.session).supplier(default_supplier_id)
        item = Item(
            code=code,
            name=name,
            description=description,
            uom=uom or self._default_uom,
            min_stock=min_stock,
            max_stock=max_stock,
            reorder_point=reorder_point,
            default_supplier_id=default_supplier_id,
            requires_batch=requires_batch,
            requires_serial=requires_serial,
            created_by=created_by,
        )
        self.session.add(item)
        self.session.flush()
        logger.info("item_created", extra={"item_id": str(item.id), "code": code})
        return item

    def update_item(self, item_id: UUID, updated_by: str, **changes) -> Item:
        """
        Edit mutable item attributes.

        Raises:
            NotFoundError: item does not exist.
            ValidationError: an unknown or immutable attribute was passed.
        """
        item = self.session.get(Item, item_id)
        if item is None:
            raise NotFoundError("Item", item_id)
        rejected = set(changes) - _UPDATABLE_ITEM_FIELDS
        if rejected:
            raise ValidationError(
                f"Item fields cannot be updated: {sorted(rejected)}",
                field=sorted(rejected)[0],
            )
        for name, value in changes.items():
            setattr(item, name, value)
        item.updated_by = updated_by
        self.session.flush()
        logger.info(
            "item_updated",
            extra={"item_id": str(item_id), "fields": sorted(changes)},
        )
        return item

    def deactivate_item(self, item_id: UUID, updated_by: str) -> Item:
        item = self.session.get(Item, item_id)
        if item is None:
            raise NotFoundError("Item", item_id)
        item.is_active = False
        item.updated_by = updated_by
        self.session.flush()
        logger.info("item_deactivated", extra={"item_id": str(item_id)})
        return item

    def create_warehouse(
        self,
        code: str,
        name: str,
        created_by: str,
        location: str | None = None,
    ) -> Warehouse:
        if not code:
            raise MissingFieldError("code")
        warehouse = Warehouse(code=code, name=name, location=location, created_by=created_by)
        self.session.add(warehouse)
        self.session.flush()
        logger.info(
            "warehouse_created",
            extra={"warehouse_id": str(warehouse.id), "code": code},
        )
        return warehouse

    def create_bin(
        self,
        warehouse_id: UUID,
        code: str,
        created_by: str,
        name: str | None = None,
    ) -> Bin:
        if not code:
            raise MissingFieldError("code")
        ReferenceValidator(self.session).warehouse(warehouse_id)
        bin_ = Bin(warehouse_id=warehouse_id, code=code, name=name, created_by=created_by)
        self.session.add(bin_)
        self.session.flush()
        logger.info(
            "bin_created",
            extra={"bin_id": str(bin_.id), "warehouse_id": str(warehouse_id), "code": code},
        )
        return bin_
