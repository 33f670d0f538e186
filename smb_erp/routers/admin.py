from fastapi import APIRouter, Depends
from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from smb_erp.core.api_docs import error_responses
from smb_erp.core.deps import get_db
from smb_erp.core.errors import (
    DuplicateKey,
    HasDependents,
    InvalidStateForDeletion,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from smb_erp.core.permissions import ADMINISTRATOR_ROLE, ALL_PERMISSIONS, require_permission
from smb_erp.core.security import hash_password
from smb_erp.core.security_current import CurrentActor
from smb_erp.models.accounting import FiscalYear, JournalEntry
from smb_erp.models.audit_log import AuditLog
from smb_erp.models.company import CompanyInfo, NotificationSettings, SecuritySettings
from smb_erp.models.inventory import StockAdjustment
from smb_erp.models.order import PurchaseOrder, SaleOrder
from smb_erp.models.payment import Payment
from smb_erp.models.user import Permission, Role, RolePermission, User
from smb_erp.schemas.admin import (
    CompanyInfoIn,
    CompanyInfoOut,
    NotificationSettingsIn,
    NotificationSettingsOut,
    RoleListOut,
    RoleOut,
    RolePermissionsIn,
    SecuritySettingsIn,
    SecuritySettingsOut,
    UserCreateIn,
    UserListOut,
    UserOut,
    UserSavedOut,
    UserUpdateIn,
)
from smb_erp.schemas.common import OkOut
from smb_erp.services import settings_service
from smb_erp.services.audit_service import log_audit_event

router = APIRouter(prefix="/admin", tags=["admin"])

COMPANY_INFO_ID = 1


def _company_out(company: CompanyInfo) -> CompanyInfoOut:
    return CompanyInfoOut(
        company_name=company.company_name,
        company_email=company.company_email,
        company_address=company.company_address,
        currency=company.currency,
        timezone=company.timezone,
        updated_at=company.updated_at,
    )


def _role_names(db: Session) -> dict[int, str]:
    return {role_id: name for role_id, name in db.execute(select(Role.id, Role.name)).all()}


def _user_out(user: User, role_names: dict[int, str]) -> UserOut:
    return UserOut(
        id=user.id,
        email=user.email,
        username=user.username,
        full_name=user.full_name,
        role=role_names.get(user.role_id) if user.role_id is not None else None,
        is_active=user.is_active,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
    )


def _get_role_by_name(db: Session, name: str) -> Role:
    role = db.execute(select(Role).where(Role.name == name)).scalar_one_or_none()
    if not role:
        raise ValidationError(f"Unknown role '{name}'", field="role")
    return role


def _active_administrators(db: Session) -> int:
    return int(
        db.execute(
            select(func.count(User.id))
            .join(Role, Role.id == User.role_id)
            .where(Role.name == ADMINISTRATOR_ROLE, User.is_active.is_(True))
        ).scalar_one()
    )


@router.get(
    "/company",
    response_model=CompanyInfoOut,
    summary="Get company information",
    responses=error_responses(401, 403, 404, 500),
)
def get_company(
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("admin.manage")),
):
    company = db.get(CompanyInfo, COMPANY_INFO_ID)
    if not company:
        raise NotFound("Company information has not been set up yet")
    return _company_out(company)


@router.put(
    "/company",
    response_model=CompanyInfoOut,
    summary="Create or replace company information",
    responses=error_responses(401, 403, 422, 500),
)
def put_company(
    payload: CompanyInfoIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("admin.manage")),
):
    company = db.get(CompanyInfo, COMPANY_INFO_ID)
    if company is None:
        company = CompanyInfo(id=COMPANY_INFO_ID)
        db.add(company)
    company.company_name = payload.company_name
    company.company_email = str(payload.company_email)
    company.company_address = payload.company_address
    company.currency = payload.currency
    company.timezone = payload.timezone

    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="company.update",
        target_type="company_info",
        target_id=COMPANY_INFO_ID,
        metadata_json={"currency": payload.currency},
    )
    db.commit()
    db.refresh(company)
    return _company_out(company)


@router.get(
    "/users",
    response_model=UserListOut,
    summary="List users",
    responses=error_responses(401, 403, 500),
)
def list_users(
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("admin.manage")),
):
    role_names = _role_names(db)
    rows = db.execute(select(User).order_by(User.created_at.asc(), User.username.asc())).scalars().all()
    return UserListOut(items=[_user_out(row, role_names) for row in rows])


@router.post(
    "/users",
    response_model=UserSavedOut,
    status_code=201,
    summary="Create user",
    responses=error_responses(401, 403, 409, 422, 500),
)
def create_user(
    payload: UserCreateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("admin.manage")),
):
    email = payload.email.lower()
    username = payload.username.strip()
    taken = db.execute(
        select(User.id).where(
            or_(func.lower(User.email) == email, func.lower(User.username) == username.lower())
        )
    ).first()
    if taken:
        raise DuplicateKey("A user with this email or username already exists", details=[{"field": "email"}])

    settings_service.check_password_policy(db, payload.password)
    role = _get_role_by_name(db, payload.role)
    user = User(
        email=email,
        username=username,
        full_name=payload.full_name.strip(),
        hashed_password=hash_password(payload.password),
        role_id=role.id,
        is_active=True,
    )
    db.add(user)
    db.flush()
    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="user.create",
        target_type="user",
        target_id=user.id,
        metadata_json={"role": role.name},
    )
    db.commit()
    db.refresh(user)
    return UserSavedOut(**_user_out(user, _role_names(db)).model_dump())


@router.patch(
    "/users/{user_id}",
    response_model=UserSavedOut,
    summary="Update user role, status, name or password",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def update_user(
    user_id: str,
    payload: UserUpdateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("admin.manage")),
):
    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if not user:
        raise NotFound(f"User {user_id} not found")

    changes = payload.model_dump(exclude_unset=True)
    if changes.get("full_name") is not None:
        user.full_name = changes["full_name"].strip()
    if changes.get("role") is not None:
        user.role_id = _get_role_by_name(db, changes["role"]).id
    if changes.get("is_active") is not None:
        user.is_active = changes["is_active"]
    if changes.get("password") is not None:
        settings_service.check_password_policy(db, changes["password"])
        user.hashed_password = hash_password(changes["password"])

    db.flush()
    if _active_administrators(db) == 0:
        raise InvalidTransition("At least one active administrator must remain")

    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="user.update",
        target_type="user",
        target_id=user.id,
        metadata_json={"fields": sorted(changes.keys())},
    )
    db.commit()
    db.refresh(user)
    return UserSavedOut(**_user_out(user, _role_names(db)).model_dump())


_USER_HISTORY = (
    ("purchase_orders", PurchaseOrder.created_by_user_id),
    ("sale_orders", SaleOrder.created_by_user_id),
    ("payments", Payment.created_by_user_id),
    ("journal_entries", JournalEntry.created_by_user_id),
    ("stock_adjustments", StockAdjustment.actor_user_id),
    ("fiscal_years_closed", FiscalYear.closed_by_user_id),
    ("audit_logs", AuditLog.actor_user_id),
)


@router.delete(
    "/users/{user_id}",
    response_model=OkOut,
    summary="Delete user",
    description=(
        "Only users without recorded activity can be deleted; deactivate the others "
        "so their orders, payments and audit trail keep a valid author."
    ),
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_user(
    user_id: str,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("admin.manage")),
):
    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if not user:
        raise NotFound(f"User {user_id} not found")
    if user.id == actor.user_id:
        raise InvalidStateForDeletion("You cannot delete your own account")

    dependents = []
    for name, column in _USER_HISTORY:
        count = int(db.execute(select(func.count()).where(column == user.id)).scalar_one())
        if count:
            dependents.append({"dependent": name, "count": count})
    if dependents:
        raise HasDependents(
            f"User {user.username} has recorded activity; deactivate the account instead",
            details=dependents,
        )

    snapshot = {"username": user.username, "email": user.email}
    db.delete(user)
    db.flush()
    if _active_administrators(db) == 0:
        raise InvalidStateForDeletion("At least one active administrator must remain")

    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="user.delete",
        target_type="user",
        target_id=user_id,
        metadata_json=snapshot,
    )
    db.commit()
    return OkOut()


@router.get(
    "/roles",
    response_model=RoleListOut,
    summary="List roles and their permissions",
    responses=error_responses(401, 403, 500),
)
def list_roles(
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("admin.manage")),
):
    roles = db.execute(select(Role).order_by(Role.name.asc())).scalars().all()
    pairs = db.execute(
        select(RolePermission.role_id, Permission.key).join(
            Permission, Permission.id == RolePermission.permission_id
        )
    ).all()
    keys_by_role: dict[int, list[str]] = {}
    for role_id, key in pairs:
        keys_by_role.setdefault(role_id, []).append(key)

    return RoleListOut(
        items=[
            RoleOut(
                id=role.id,
                name=role.name,
                description=role.description,
                permissions=sorted(keys_by_role.get(role.id, [])),
            )
            for role in roles
        ],
        available_permissions=sorted(ALL_PERMISSIONS),
    )


@router.put(
    "/roles/{role_id}/permissions",
    response_model=RoleOut,
    summary="Replace a role's permission set",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def replace_role_permissions(
    role_id: int,
    payload: RolePermissionsIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("admin.manage")),
):
    role = db.get(Role, role_id)
    if not role:
        raise NotFound(f"Role {role_id} not found")

    requested = sorted({key.strip().lower() for key in payload.permissions if key.strip()})
    unknown = [key for key in requested if key not in ALL_PERMISSIONS]
    if unknown:
        raise ValidationError(
            f"Unknown permission(s): {', '.join(unknown)}",
            details=[{"field": "permissions", "value": key} for key in unknown],
        )
    if role.name == ADMINISTRATOR_ROLE and "admin.manage" not in requested:
        raise InvalidTransition("The administrator role must keep admin.manage")

    permission_ids = dict(
        db.execute(select(Permission.key, Permission.id).where(Permission.key.in_(requested))).all()
    )
    db.execute(delete(RolePermission).where(RolePermission.role_id == role.id))
    for key in requested:
        db.add(RolePermission(role_id=role.id, permission_id=permission_ids[key]))

    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="role.permissions.update",
        target_type="role",
        target_id=role.id,
        metadata_json={"permissions": requested},
    )
    db.commit()
    return RoleOut(id=role.id, name=role.name, description=role.description, permissions=requested)


def _security_out(row: SecuritySettings) -> SecuritySettingsOut:
    return SecuritySettingsOut(
        mfa_enabled=row.mfa_enabled,
        password_policy=row.password_policy,
        session_timeout_minutes=row.session_timeout_minutes,
        updated_at=row.updated_at,
    )


def _notifications_out(row: NotificationSettings) -> NotificationSettingsOut:
    return NotificationSettingsOut(
        email_notifications_enabled=row.email_notifications_enabled,
        new_sale_notify=row.new_sale_notify,
        low_stock_notify=row.low_stock_notify,
        updated_at=row.updated_at,
    )


@router.get(
    "/settings/security",
    response_model=SecuritySettingsOut,
    summary="Get security settings",
    description="Returns the defaults (medium password policy, 30 minute sessions) until settings are saved.",
    responses=error_responses(401, 403, 500),
)
def get_security_settings(
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("admin.manage")),
):
    return _security_out(settings_service.get_security_settings(db))


@router.put(
    "/settings/security",
    response_model=SecuritySettingsOut,
    summary="Save security settings",
    description=(
        "The password policy applies to new passwords; the session timeout sets the "
        "lifetime of access tokens issued from now on."
    ),
    responses=error_responses(401, 403, 422, 500),
)
def put_security_settings(
    payload: SecuritySettingsIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("admin.manage")),
):
    row = settings_service.update_security_settings(db, payload.model_dump(), actor_user_id=actor.user_id)
    db.commit()
    db.refresh(row)
    return _security_out(row)


@router.get(
    "/settings/notifications",
    response_model=NotificationSettingsOut,
    summary="Get notification settings",
    responses=error_responses(401, 403, 500),
)
def get_notification_settings(
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("admin.manage")),
):
    return _notifications_out(settings_service.get_notification_settings(db))


@router.put(
    "/settings/notifications",
    response_model=NotificationSettingsOut,
    summary="Save notification settings",
    responses=error_responses(401, 403, 422, 500),
)
def put_notification_settings(
    payload: NotificationSettingsIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("admin.manage")),
):
    row = settings_service.update_notification_settings(db, payload.model_dump(), actor_user_id=actor.user_id)
    db.commit()
    db.refresh(row)
    return _notifications_out(row)
