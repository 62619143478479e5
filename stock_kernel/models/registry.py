"""
Module: stock_kernel.models.registry
Responsibility: Reference data identifying valid stock-mutation targets --
    items, warehouses, bins and suppliers.
Architecture position: Kernel > Models.  Inherits from TrackedBase.

Invariants enforced:
    - Item.code is unique and immutable once created (ORM listener in
      db/immutability.py).
    - A Bin belongs to exactly one Warehouse; its code is unique within it.
    - Items are never deleted, only deactivated (is_active=False).

Failure modes:
    - IntegrityError on duplicate item / warehouse / supplier code, or a
      duplicate bin code inside one warehouse.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString


class Supplier(TrackedBase):
    """Vendor that goods are received from."""

    __tablename__ = "suppliers"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Supplier {self.code}>"


class Item(TrackedBase):
    """
    A trackable good.

    Contract:
        Identity is the code; every other attribute may be edited.  Thresholds
        (min/max/reorder) are informational and feed stock queries only.

    Guarantees:
        - code never changes after creation.
        - uom defaults to the ledger policy's default unit (PCS).
    """

    __tablename__ = "items"

    __table_args__ = (
        Index("idx_item_active", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    uom: Mapped[str] = mapped_column(String(20), default="PCS", nullable=False)

    min_stock: Mapped[Decimal | None] = mapped_column(nullable=True)
    max_stock: Mapped[Decimal | None] = mapped_column(nullable=True)
    reorder_point: Mapped[Decimal | None] = mapped_column(nullable=True)

    default_supplier_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("suppliers.id"),
        nullable=True,
    )

    requires_batch: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requires_serial: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Item {self.code}>"


class Warehouse(TrackedBase):
    """A stock-holding location."""

    __tablename__ = "warehouses"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    bins: Mapped[list["Bin"]] = relationship(back_populates="warehouse")

    def __repr__(self) -> str:
        return f"<Warehouse {self.code}>"


class Bin(TrackedBase):
    """A storage position inside exactly one warehouse."""

    __tablename__ = "bins"

    __table_args__ = (
        UniqueConstraint("warehouse_id", "code", name="uq_bin_warehouse_code"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    warehouse: Mapped[Warehouse] = relationship(back_populates="bins")

    def __repr__(self) -> str:
        return f"<Bin {self.code}>"
