from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from smb_erp.schemas.common import PaginationMeta

PaymentSource = Literal["sale_order", "purchase_order", "expense"]
PaymentMethod = Literal["cash", "transfer", "card", "check", "other"]


class PaymentCreateIn(BaseModel):
    source_type: PaymentSource
    source_id: int = Field(gt=0)
    payment_date: date
    payment_method: PaymentMethod
    amount: Optional[Decimal] = Field(
        default=None,
        gt=0,
        max_digits=12,
        decimal_places=2,
        description="Defaults to the full amount of the order or expense.",
    )
    reference_number: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "source_type": "sale_order",
                "source_id": 12,
                "payment_date": "2026-10-19",
                "payment_method": "transfer",
                "reference_number": "TRX-88812",
            }
        }
    )


class PaymentOut(BaseModel):
    id: int
    source_type: str
    source_id: int
    payment_date: date
    amount: float
    payment_method: str
    reference_number: str | None = None
    notes: str | None = None
    created_by_user_id: str | None = None
    created_at: datetime


class PaymentSavedOut(PaymentOut):
    success: bool = True


class PaymentListOut(BaseModel):
    success: bool = True
    pagination: PaginationMeta
    source_type: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    items: list[PaymentOut]


class PendingPaymentOut(BaseModel):
    source_type: str
    source_id: int
    reference: str
    counterpart: str | None = None
    due_date: date
    amount: float


class PendingPaymentListOut(BaseModel):
    success: bool = True
    total_amount: float
    items: list[PendingPaymentOut]
