from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from smb_erp.schemas.common import PaginationMeta


class InventoryItemCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    sku: str = Field(min_length=1, max_length=100)
    category: str = Field(min_length=1, max_length=100)
    unit_price: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    sale_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    reorder_level: int = Field(default=0, ge=0)
    opening_stock: int = Field(default=0, ge=0)
    supplier: Optional[str] = Field(default=None, max_length=255)
    image_url: Optional[str] = Field(default=None, max_length=2048)
    inventory_asset_account_id: Optional[int] = Field(default=None, gt=0)

    @field_validator("sku")
    @classmethod
    def normalize_sku(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("sku is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Cable HDMI 2m",
                "sku": "CAB-HDMI-2M",
                "category": "Cables",
                "unit_price": 2.0,
                "sale_price": 4.5,
                "reorder_level": 10,
                "opening_stock": 50,
                "supplier": "Distribuciones Norte",
            }
        }
    )


class InventoryItemUpdateIn(BaseModel):
    """Stock is not editable here; use the adjust endpoint."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    sku: Optional[str] = Field(default=None, min_length=1, max_length=100)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    unit_price: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    sale_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    reorder_level: Optional[int] = Field(default=None, ge=0)
    supplier: Optional[str] = Field(default=None, max_length=255)
    image_url: Optional[str] = Field(default=None, max_length=2048)
    inventory_asset_account_id: Optional[int] = Field(default=None, gt=0)

    model_config = ConfigDict(extra="forbid")


class InventoryItemOut(BaseModel):
    id: int
    name: str
    sku: str
    category: str
    current_stock: int
    reorder_level: int
    unit_price: float
    sale_price: float | None = None
    supplier: str | None = None
    image_url: str | None = None
    inventory_asset_account_id: int | None = None
    is_low_stock: bool
    created_at: datetime
    updated_at: datetime


class InventoryItemSavedOut(InventoryItemOut):
    success: bool = True


class InventoryItemListOut(BaseModel):
    success: bool = True
    pagination: PaginationMeta
    category: str | None = None
    q: str | None = None
    items: list[InventoryItemOut]


class LowStockListOut(BaseModel):
    success: bool = True
    items: list[InventoryItemOut]


class StockAdjustIn(BaseModel):
    delta: int = Field(..., description="Positive adds stock, negative removes stock. Cannot be zero.")
    reason: str = Field(..., min_length=3, max_length=255)

    @field_validator("delta")
    @classmethod
    def validate_non_zero_delta(cls, value: int) -> int:
        if value == 0:
            raise ValueError("delta cannot be zero")
        return value

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, value: str) -> str:
        cleaned = value.strip()
        if len(cleaned) < 3:
            raise ValueError("reason must be at least 3 characters")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "delta": -2,
                "reason": "damaged during packaging",
            }
        }
    )


class StockAdjustOut(BaseModel):
    success: bool = True
    item_id: int
    new_stock: int


class StockAdjustmentOut(BaseModel):
    id: int
    inventory_item_id: int
    delta: int
    resulting_stock: int
    reason: str
    reference_type: str
    reference_id: int | None = None
    actor_user_id: str | None = None
    created_at: datetime


class StockAdjustmentListOut(BaseModel):
    success: bool = True
    pagination: PaginationMeta
    items: list[StockAdjustmentOut]
