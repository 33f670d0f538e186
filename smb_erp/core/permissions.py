from collections.abc import Callable

from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from smb_erp.core.security_current import CurrentActor, get_current_actor
from smb_erp.models.user import Permission, Role, RolePermission

ADMINISTRATOR_ROLE = "administrator"

ALL_PERMISSIONS: dict[str, str] = {
    "contacts.view": "View customers, vendors and prospects",
    "contacts.manage": "Create, edit and delete contacts",
    "inventory.view": "View inventory items and stock history",
    "inventory.manage": "Create, edit and delete inventory items",
    "inventory.adjust": "Adjust stock manually",
    "purchases.view": "View purchase orders",
    "purchases.manage": "Create, edit and delete purchase orders",
    "sales.view": "View sale orders",
    "sales.manage": "Create, edit and delete sale orders",
    "accounting.view": "View the chart of accounts and journal entries",
    "accounting.manage": "Maintain accounts and post journal entries",
    "expenses.view": "View expenses",
    "expenses.manage": "Submit and review expenses",
    "payments.view": "View payments and pending items",
    "payments.manage": "Register payments",
    "admin.manage": "Manage company settings, users and roles",
    "audit.view": "Read the audit log",
}

DEFAULT_ROLE_PERMISSIONS: dict[str, set[str]] = {
    ADMINISTRATOR_ROLE: set(ALL_PERMISSIONS),
    "accountant": {
        "accounting.view",
        "accounting.manage",
        "expenses.view",
        "expenses.manage",
        "payments.view",
        "payments.manage",
        "contacts.view",
        "inventory.view",
        "purchases.view",
        "sales.view",
        "audit.view",
    },
    "manager": set(ALL_PERMISSIONS) - {"admin.manage"},
    "warehouse": {
        "inventory.view",
        "inventory.manage",
        "inventory.adjust",
        "purchases.view",
        "purchases.manage",
        "sales.view",
        "contacts.view",
    },
    "sales": {
        "contacts.view",
        "contacts.manage",
        "sales.view",
        "sales.manage",
        "inventory.view",
    },
}


def seed_roles_and_permissions(db: Session) -> dict[str, Role]:
    """Insert the default roles and permission matrix; existing rows are kept."""
    permissions = {p.key: p for p in db.execute(select(Permission)).scalars().all()}
    for key, description in ALL_PERMISSIONS.items():
        if key not in permissions:
            permissions[key] = Permission(key=key, description=description)
            db.add(permissions[key])

    roles = {r.name: r for r in db.execute(select(Role)).scalars().all()}
    for name in DEFAULT_ROLE_PERMISSIONS:
        if name not in roles:
            roles[name] = Role(name=name)
            db.add(roles[name])
    db.flush()

    existing_pairs = set(db.execute(select(RolePermission.role_id, RolePermission.permission_id)).all())
    for name, keys in DEFAULT_ROLE_PERMISSIONS.items():
        role_id = roles[name].id
        for key in sorted(keys):
            pair = (role_id, permissions[key].id)
            if pair not in existing_pairs:
                db.add(RolePermission(role_id=role_id, permission_id=permissions[key].id))
                existing_pairs.add(pair)
    db.flush()
    return roles


def has_permission(actor: CurrentActor, permission: str) -> bool:
    return permission in actor.permissions


def require_permission(permission: str) -> Callable[[CurrentActor], CurrentActor]:
    normalized_permission = (permission or "").strip().lower()
    if normalized_permission not in ALL_PERMISSIONS:
        raise ValueError(f"Unknown permission key: {permission}")

    def dependency(actor: CurrentActor = Depends(get_current_actor)) -> CurrentActor:
        if not has_permission(actor, normalized_permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permission for this action",
            )
        return actor

    return dependency
