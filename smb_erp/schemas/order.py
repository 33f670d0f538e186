from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from smb_erp.schemas.common import PaginationMeta


class OrderLineIn(BaseModel):
    inventory_item_id: int = Field(gt=0)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)


def _normalize_status(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip().lower()
    if not cleaned:
        raise ValueError("status cannot be blank")
    return cleaned


class OrderCreateBase(BaseModel):
    order_date: date = Field(alias="date")
    description: Optional[str] = Field(default=None, max_length=500)
    status: str = "draft"
    items: list[OrderLineIn] = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("status")
    @classmethod
    def normalize_status(cls, value: str) -> str:
        return _normalize_status(value)


class PurchaseOrderCreate(OrderCreateBase):
    vendor_id: int = Field(gt=0)

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "vendor_id": 3,
                "date": "2026-10-19",
                "description": "Monthly restock",
                "status": "draft",
                "items": [
                    {"inventory_item_id": 1, "quantity": 10, "unit_price": 2.0},
                    {"inventory_item_id": 2, "quantity": 3, "unit_price": 5.0},
                ],
            }
        },
    )

    @property
    def counterpart_id(self) -> int:
        return self.vendor_id


class SaleOrderCreate(OrderCreateBase):
    customer_id: int = Field(gt=0)

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "customer_id": 5,
                "date": "2026-10-19",
                "description": "Counter sale",
                "status": "confirmed",
                "items": [
                    {"inventory_item_id": 1, "quantity": 2, "unit_price": 12.5},
                ],
            }
        },
    )

    @property
    def counterpart_id(self) -> int:
        return self.customer_id


class OrderUpdateBase(BaseModel):
    order_date: Optional[date] = Field(default=None, alias="date")
    description: Optional[str] = Field(default=None, max_length=500)
    status: Optional[str] = None
    items: Optional[list[OrderLineIn]] = Field(default=None, min_length=1)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("status")
    @classmethod
    def normalize_status(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_status(value)


class PurchaseOrderUpdate(OrderUpdateBase):
    vendor_id: Optional[int] = Field(default=None, gt=0)

    @property
    def counterpart_id(self) -> Optional[int]:
        return self.vendor_id


class SaleOrderUpdate(OrderUpdateBase):
    customer_id: Optional[int] = Field(default=None, gt=0)

    @property
    def counterpart_id(self) -> Optional[int]:
        return self.customer_id


class OrderStatusUpdateIn(BaseModel):
    status: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "confirmed",
            }
        }
    )

    @field_validator("status")
    @classmethod
    def normalize_status(cls, value: str) -> str:
        return _normalize_status(value)


class OrderCreateOut(BaseModel):
    success: bool = True
    id: int
    document_number: str
    total_amount: float
    status: str


class OrderLineOut(BaseModel):
    id: int
    position: int
    inventory_item_id: int
    item_name: str | None = None
    sku: str | None = None
    quantity: int
    unit_price: float
    line_total: float


class OrderSummaryOut(BaseModel):
    id: int
    document_number: str
    counterpart_id: int
    counterpart_name: str | None = None
    order_date: date
    description: str | None = None
    status: str
    total_amount: float
    created_at: datetime
    updated_at: datetime


class OrderOut(OrderSummaryOut):
    success: bool = True
    items: list[OrderLineOut]


class OrderListOut(BaseModel):
    success: bool = True
    pagination: PaginationMeta
    status: str | None = None
    counterpart_id: int | None = None
    start_date: date | None = None
    end_date: date | None = None
    items: list[OrderSummaryOut]


class OrderDeleteOut(BaseModel):
    success: bool = True
    id: int
    document_number: str
