from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from smb_erp.core.deps import get_db
from smb_erp.core.security import TokenValidationError, decode_access_token
from smb_erp.models.user import Permission, Role, RolePermission, User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


@dataclass(frozen=True)
class CurrentActor:
    user: User
    role: str | None
    permissions: frozenset[str]

    @property
    def user_id(self) -> str:
        return self.user.id


def load_role_permissions(db: Session, role_id: int | None) -> tuple[str | None, frozenset[str]]:
    if role_id is None:
        return None, frozenset()
    role_name = db.execute(select(Role.name).where(Role.id == role_id)).scalar_one_or_none()
    keys = db.execute(
        select(Permission.key)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id == role_id)
    ).scalars().all()
    return role_name, frozenset(keys)


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    try:
        user_id = decode_access_token(token)
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is inactive")
    return user


def get_current_actor(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> CurrentActor:
    role, permissions = load_role_permissions(db, user.role_id)
    return CurrentActor(user=user, role=role, permissions=permissions)
