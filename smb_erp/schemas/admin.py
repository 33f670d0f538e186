from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from smb_erp.schemas.auth import validate_password_strength

Currency = Literal["EUR", "USD", "GBP"]


class CompanyInfoIn(BaseModel):
    company_name: str = Field(min_length=1, max_length=255)
    company_email: EmailStr
    company_address: str = Field(min_length=1, max_length=500)
    currency: Currency = "EUR"
    timezone: str = Field(default="Europe/Madrid", min_length=1, max_length=64)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "company_name": "Acme Supplies S.L.",
                "company_email": "billing@acme.example",
                "company_address": "Calle Mayor 1, Madrid",
                "currency": "EUR",
                "timezone": "Europe/Madrid",
            }
        }
    )


class CompanyInfoOut(BaseModel):
    success: bool = True
    company_name: str
    company_email: str
    company_address: str
    currency: str
    timezone: str
    updated_at: datetime | None = None


class UserCreateIn(BaseModel):
    email: EmailStr
    username: str = Field(min_length=3, max_length=50)
    full_name: str = Field(min_length=1, max_length=100)
    password: str
    role: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return validate_password_strength(value)

    @field_validator("role")
    @classmethod
    def normalize_role(cls, value: str) -> str:
        return value.strip().lower()


class UserUpdateIn(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    role: Optional[str] = None
    is_active: Optional[bool] = None
    password: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return validate_password_strength(value)

    @field_validator("role")
    @classmethod
    def normalize_role(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().lower()


class UserOut(BaseModel):
    id: str
    email: str
    username: str
    full_name: Optional[str] = None
    role: Optional[str] = None
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime


class UserSavedOut(UserOut):
    success: bool = True


class UserListOut(BaseModel):
    success: bool = True
    items: list[UserOut]


class RoleOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    permissions: list[str]


class RoleListOut(BaseModel):
    success: bool = True
    items: list[RoleOut]
    available_permissions: list[str]


class RolePermissionsIn(BaseModel):
    permissions: list[str]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "permissions": ["sales.view", "sales.manage", "contacts.view"],
            }
        }
    )


class SecuritySettingsIn(BaseModel):
    mfa_enabled: bool = False
    password_policy: Literal["simple", "medium", "strong"]
    session_timeout_minutes: int = Field(ge=5, le=24 * 60)

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "mfa_enabled": False,
                "password_policy": "strong",
                "session_timeout_minutes": 60,
            }
        },
    )


class SecuritySettingsOut(BaseModel):
    success: bool = True
    mfa_enabled: bool
    password_policy: str
    session_timeout_minutes: int
    updated_at: datetime | None = None


class NotificationSettingsIn(BaseModel):
    email_notifications_enabled: bool = True
    new_sale_notify: bool = True
    low_stock_notify: bool = True

    model_config = ConfigDict(extra="forbid")


class NotificationSettingsOut(BaseModel):
    success: bool = True
    email_notifications_enabled: bool
    new_sale_notify: bool
    low_stock_notify: bool
    updated_at: datetime | None = None
