from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from smb_erp.db.base import Base


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Assigned right after the header insert, inside the same transaction.
    document_number: Mapped[Optional[str]] = mapped_column("po_number", String(40), unique=True, nullable=True)
    counterpart_id: Mapped[int] = mapped_column("vendor_id", Integer, ForeignKey("contacts.id"), index=True)
    order_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft", server_default="draft")
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    items: Mapped[list["PurchaseOrderItem"]] = relationship(
        back_populates="order",
        order_by="PurchaseOrderItem.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_purchase_orders_status_date", "status", "date"),
    )


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column("purchase_order_id", Integer, ForeignKey("purchase_orders.id"), index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    inventory_item_id: Mapped[int] = mapped_column(Integer, ForeignKey("inventory_items.id"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    order: Mapped[PurchaseOrder] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_purchase_order_items_quantity_positive"),
    )


class SaleOrder(Base):
    __tablename__ = "sale_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_number: Mapped[Optional[str]] = mapped_column("invoice_number", String(40), unique=True, nullable=True)
    counterpart_id: Mapped[int] = mapped_column("customer_id", Integer, ForeignKey("contacts.id"), index=True)
    order_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft", server_default="draft")
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    items: Mapped[list["SaleOrderItem"]] = relationship(
        back_populates="order",
        order_by="SaleOrderItem.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_sale_orders_status_date", "status", "date"),
    )


class SaleOrderItem(Base):
    __tablename__ = "sale_order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column("sale_order_id", Integer, ForeignKey("sale_orders.id"), index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    inventory_item_id: Mapped[int] = mapped_column(Integer, ForeignKey("inventory_items.id"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    order: Mapped[SaleOrder] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_order_items_quantity_positive"),
    )
