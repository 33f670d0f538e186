from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from smb_erp.schemas.common import PaginationMeta

AccountType = Literal["asset", "liability", "equity", "revenue", "expense"]


class AccountCreateIn(BaseModel):
    code: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=1, max_length=255)
    type: AccountType
    balance: Decimal = Field(default=Decimal("0.00"), max_digits=14, decimal_places=2)
    parent_account_id: Optional[int] = Field(default=None, gt=0)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("code is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "1100",
                "name": "Cash",
                "type": "asset",
                "balance": 0,
                "parent_account_id": 1,
            }
        }
    )


class AccountUpdateIn(BaseModel):
    code: Optional[str] = Field(default=None, min_length=1, max_length=20)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[AccountType] = None
    parent_account_id: Optional[int] = Field(default=None, gt=0)


class AccountOut(BaseModel):
    id: int
    code: str
    name: str
    type: str
    balance: float
    parent_account_id: int | None = None
    rolled_up_balance: float | None = None


class AccountSavedOut(AccountOut):
    success: bool = True


class AccountListOut(BaseModel):
    success: bool = True
    items: list[AccountOut]


class AccountTreeNodeOut(BaseModel):
    id: int
    code: str
    name: str
    type: str
    balance: float
    rolled_up_balance: float
    children: list["AccountTreeNodeOut"] = Field(default_factory=list)


class AccountTreeOut(BaseModel):
    success: bool = True
    items: list[AccountTreeNodeOut]


class JournalEntryCreateIn(BaseModel):
    entry_date: date = Field(alias="date")
    description: str = Field(min_length=1, max_length=500)
    debit_account_code: str = Field(min_length=1, max_length=20)
    credit_account_code: str = Field(min_length=1, max_length=20)
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    fiscal_year_id: Optional[int] = Field(default=None, gt=0)

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "date": "2026-10-19",
                "description": "Owner capital contribution",
                "debit_account_code": "1100",
                "credit_account_code": "3000",
                "amount": 1500.0,
            }
        },
    )

    @model_validator(mode="after")
    def validate_distinct_accounts(self) -> "JournalEntryCreateIn":
        if self.debit_account_code.strip() == self.credit_account_code.strip():
            raise ValueError("debit and credit accounts must differ")
        return self


class JournalEntryUpdateIn(BaseModel):
    entry_date: Optional[date] = Field(default=None, alias="date")
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)

    model_config = ConfigDict(populate_by_name=True)


class JournalEntryOut(BaseModel):
    id: int
    entry_number: str
    entry_date: date
    description: str
    debit_account_code: str
    credit_account_code: str
    amount: float
    fiscal_year_id: int | None = None
    created_at: datetime


class JournalEntrySavedOut(JournalEntryOut):
    success: bool = True


class JournalEntryListOut(BaseModel):
    success: bool = True
    pagination: PaginationMeta
    items: list[JournalEntryOut]


class FiscalYearCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    start_date: date
    end_date: date

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={"example": {"name": "FY2026", "start_date": "2026-01-01", "end_date": "2026-12-31"}},
    )

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    @model_validator(mode="after")
    def validate_range(self) -> "FiscalYearCreateIn":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class FiscalYearUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    model_config = ConfigDict(extra="forbid")


class FiscalYearOut(BaseModel):
    id: int
    name: str
    start_date: date
    end_date: date
    is_closed: bool
    is_active: bool = False
    closed_at: datetime | None = None


class FiscalYearSavedOut(FiscalYearOut):
    success: bool = True


class FiscalYearListOut(BaseModel):
    success: bool = True
    items: list[FiscalYearOut]


class FiscalYearCloseOut(BaseModel):
    success: bool = True
    fiscal_year: FiscalYearOut
    net_income: float
    closing_entries: list[JournalEntryOut]


class AccountingSettingsIn(BaseModel):
    current_fiscal_year_id: Optional[int] = Field(default=None, gt=0)
    retained_earnings_account_id: Optional[int] = Field(default=None, gt=0)

    model_config = ConfigDict(extra="forbid")


class AccountingSettingsOut(BaseModel):
    success: bool = True
    current_fiscal_year_id: int | None = None
    retained_earnings_account_id: int | None = None
