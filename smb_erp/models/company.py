from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from smb_erp.db.base import Base


class CompanyInfo(Base):
    """Single-row company profile (id is always 1)."""

    __tablename__ = "company_info"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    company_email: Mapped[str] = mapped_column(String(255), nullable=False)
    company_address: Mapped[str] = mapped_column(String(500), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR", server_default="EUR")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="Europe/Madrid")
    current_fiscal_year_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("fiscal_years.id"), nullable=True
    )
    retained_earnings_account_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("chart_of_accounts.id"), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (CheckConstraint("id = 1", name="ck_company_info_single_row"),)


class SecuritySettings(Base):
    __tablename__ = "security_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    mfa_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    password_policy: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")  # simple, medium, strong
    session_timeout_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint("id = 1", name="ck_security_settings_single_row"),
        CheckConstraint("session_timeout_minutes >= 5", name="ck_security_settings_session_timeout"),
    )


class NotificationSettings(Base):
    __tablename__ = "notification_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    email_notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    new_sale_notify: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    low_stock_notify: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (CheckConstraint("id = 1", name="ck_notification_settings_single_row"),)
