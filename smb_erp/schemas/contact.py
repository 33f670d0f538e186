from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from smb_erp.schemas.common import PaginationMeta

ContactType = Literal["customer", "vendor", "prospect"]


class ContactCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    phone: str = Field(min_length=1, max_length=50)
    type: ContactType
    company: Optional[str] = Field(default=None, max_length=255)

    @field_validator("name", "phone")
    @classmethod
    def strip_required(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Distribuciones Norte",
                "email": "orders@norte.example",
                "phone": "+34 600 000 000",
                "type": "vendor",
                "company": "Distribuciones Norte S.A.",
            }
        }
    )


class ContactUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, min_length=1, max_length=50)
    type: Optional[ContactType] = None
    company: Optional[str] = Field(default=None, max_length=255)


class ContactOut(BaseModel):
    id: int
    name: str
    email: str
    phone: str
    type: str
    company: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ContactSavedOut(ContactOut):
    success: bool = True


class ContactListOut(BaseModel):
    success: bool = True
    pagination: PaginationMeta
    type: Optional[str] = None
    q: Optional[str] = None
    items: list[ContactOut]
