"""Sale models: ingested POS transactions."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint, DateTime, ForeignKey, Numeric, String, UniqueConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from barledger.db.base import Base


class Sale(Base):
    """One POS transaction. ``external_id`` is the idempotency key."""

    __tablename__ = "sales"
    __table_args__ = (
        UniqueConstraint("organization_id", "external_id", name="uq_sale_org_external"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    integration_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("pos_integrations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    external_id: Mapped[str] = mapped_column(String(100), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    sale_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    items: Mapped[List["SaleItem"]] = relationship(
        "SaleItem", back_populates="sale", cascade="all, delete-orphan", order_by="SaleItem.id"
    )


class SaleItem(Base):
    """One aggregated line of a sale: a product or a recipe, never both."""

    __tablename__ = "sale_items"
    __table_args__ = (
        CheckConstraint(
            "product_id IS NULL OR recipe_id IS NULL",
            name="ck_sale_item_product_xor_recipe",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    sale_id: Mapped[int] = mapped_column(
        ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pos_product_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("pos_products.id", ondelete="SET NULL"), nullable=True, index=True
    )
    product_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True
    )
    recipe_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recipes.id", ondelete="SET NULL"), nullable=True, index=True
    )
    external_product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    item_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=0, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    sale: Mapped["Sale"] = relationship("Sale", back_populates="items")
