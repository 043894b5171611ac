"""Product model."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Boolean, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from barledger.db.base import Base, TimestampMixin


class Product(Base, TimestampMixin):
    """A stocked product tracked in ``unit``.

    ``unit_size`` is the declared container size (750 for a 750 ml bottle) and
    is what turns a poured serving into a fraction of a container.
    """

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    unit: Mapped[str] = mapped_column(String(20), default="unit", nullable=False)
    unit_size: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    inventory_items: Mapped[List["InventoryItem"]] = relationship(
        "InventoryItem", back_populates="product", order_by="InventoryItem.id"
    )


# Forward references
from barledger.models.inventory import InventoryItem  # noqa: E402
