import re
from datetime import timedelta

from sqlalchemy.orm import Session

from smb_erp.core.errors import ValidationError
from smb_erp.models.company import NotificationSettings, SecuritySettings
from smb_erp.services.audit_service import log_audit_event

SETTINGS_ROW_ID = 1
PASSWORD_POLICIES = ("simple", "medium", "strong")


def get_security_settings(db: Session) -> SecuritySettings:
    """Stored security settings, or unsaved defaults when none were written yet."""
    row = db.get(SecuritySettings, SETTINGS_ROW_ID)
    if row is None:
        return SecuritySettings(
            id=SETTINGS_ROW_ID, mfa_enabled=False, password_policy="medium", session_timeout_minutes=30
        )
    return row


def get_notification_settings(db: Session) -> NotificationSettings:
    row = db.get(NotificationSettings, SETTINGS_ROW_ID)
    if row is None:
        return NotificationSettings(
            id=SETTINGS_ROW_ID, email_notifications_enabled=True, new_sale_notify=True, low_stock_notify=True
        )
    return row


def _upsert(db: Session, model, values: dict):
    row = db.get(model, SETTINGS_ROW_ID)
    if row is None:
        row = model(id=SETTINGS_ROW_ID)
        db.add(row)
    for key, value in values.items():
        setattr(row, key, value)
    db.flush()
    return row


def update_security_settings(db: Session, values: dict, *, actor_user_id: str | None) -> SecuritySettings:
    if values.get("password_policy") not in PASSWORD_POLICIES:
        raise ValidationError(
            f"password_policy must be one of: {', '.join(PASSWORD_POLICIES)}", field="password_policy"
        )
    row = _upsert(db, SecuritySettings, values)
    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="settings.security.update",
        target_type="security_settings",
        target_id=SETTINGS_ROW_ID,
        metadata_json=values,
    )
    return row


def update_notification_settings(db: Session, values: dict, *, actor_user_id: str | None) -> NotificationSettings:
    row = _upsert(db, NotificationSettings, values)
    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="settings.notifications.update",
        target_type="notification_settings",
        target_id=SETTINGS_ROW_ID,
        metadata_json=values,
    )
    return row


def check_password_policy(db: Session, password: str) -> None:
    """Raise ValidationError when `password` is weaker than the configured policy.

    simple: length only. medium: letters and digits. strong: 12+ characters
    with upper and lower case, a digit and a symbol.
    """
    policy = get_security_settings(db).password_policy
    problems: list[str] = []
    if policy in ("medium", "strong"):
        if not re.search(r"[A-Za-z]", password) or not re.search(r"\d", password):
            problems.append("must contain letters and digits")
    if policy == "strong":
        if len(password) < 12:
            problems.append("must be at least 12 characters")
        if not (re.search(r"[a-z]", password) and re.search(r"[A-Z]", password)):
            problems.append("must mix upper and lower case")
        if not re.search(r"[^A-Za-z0-9]", password):
            problems.append("must contain a symbol")
    if problems:
        raise ValidationError(
            f"Password does not meet the {policy} policy: {'; '.join(problems)}",
            field="password",
        )


def session_lifetime(db: Session) -> timedelta | None:
    """Access-token lifetime from stored settings; None falls back to configuration."""
    row = db.get(SecuritySettings, SETTINGS_ROW_ID)
    if row is None:
        return None
    return timedelta(minutes=row.session_timeout_minutes)
