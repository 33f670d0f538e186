from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from smb_erp.schemas.common import PaginationMeta

ExpenseStatus = Literal["submitted", "approved", "rejected", "paid"]


class ExpenseCreate(BaseModel):
    expense_date: date = Field(alias="date")
    category: str = Field(max_length=50)
    description: str = Field(max_length=500)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    vendor: Optional[str] = Field(default=None, max_length=255)
    receipt_url: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("category", "description")
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value is required")
        return cleaned

    @field_validator("vendor")
    @classmethod
    def normalize_vendor(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "date": "2026-10-19",
                "category": "logistics",
                "description": "Courier for October deliveries",
                "amount": 25.0,
                "vendor": "Rapid Couriers",
            }
        },
    )


class ExpenseUpdate(BaseModel):
    expense_date: Optional[date] = Field(default=None, alias="date")
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    amount: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    vendor: Optional[str] = Field(default=None, max_length=255)
    receipt_url: Optional[str] = Field(default=None, max_length=2048)

    model_config = ConfigDict(populate_by_name=True)


class ExpenseStatusUpdateIn(BaseModel):
    status: ExpenseStatus


class ExpenseOut(BaseModel):
    id: int
    expense_date: date
    category: str
    description: str
    amount: float
    vendor: str | None = None
    status: str
    receipt_url: str | None = None
    created_at: datetime
    updated_at: datetime


class ExpenseSavedOut(ExpenseOut):
    success: bool = True


class ExpenseListOut(BaseModel):
    success: bool = True
    pagination: PaginationMeta
    status: str | None = None
    category: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    items: list[ExpenseOut]
