from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from smb_erp.core.api_docs import error_responses
from smb_erp.core.config import settings
from smb_erp.core.deps import get_db
from smb_erp.core.permissions import ADMINISTRATOR_ROLE, seed_roles_and_permissions
from smb_erp.core.rate_limit import LoginRateLimiter, login_key
from smb_erp.core.security import create_access_token, hash_password, verify_password
from smb_erp.core.security_current import CurrentActor, get_current_actor
from smb_erp.models.user import User
from smb_erp.schemas.auth import BootstrapIn, LoginIn, TokenOut, UserProfileOut
from smb_erp.services.audit_service import log_audit_event
from smb_erp.services.settings_service import check_password_policy, session_lifetime

router = APIRouter(prefix="/auth", tags=["auth"])
TOKEN_RESPONSE = {
    200: {
        "description": "Bearer access token",
        "content": {
            "application/json": {
                "example": {
                    "access_token": "access-token",
                    "token_type": "bearer",
                }
            }
        },
    }
}

login_rate_limiter = LoginRateLimiter(
    max_attempts=settings.auth_rate_limit_max_attempts,
    window_seconds=settings.auth_rate_limit_window_seconds,
    lock_seconds=settings.auth_rate_limit_lock_seconds,
)


def _client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _enforce_rate_limit(identifier: str, client_ip: str) -> str:
    key = login_key(identifier, client_ip)
    retry_after = login_rate_limiter.retry_after(key)
    if retry_after > 0:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed attempts. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )
    return key


def _authenticate_user(db: Session, identifier: str, password: str) -> User:
    normalized_identifier = identifier.strip().lower()
    user = db.execute(
        select(User).where(
            or_(
                func.lower(User.email) == normalized_identifier,
                func.lower(User.username) == normalized_identifier,
            )
        )
    ).scalar_one_or_none()

    if not user or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="User is inactive")
    return user


def _login(db: Session, request: Request, identifier: str, password: str) -> TokenOut:
    key = _enforce_rate_limit(identifier, _client_ip(request))
    try:
        user = _authenticate_user(db, identifier, password)
    except HTTPException as exc:
        if exc.status_code == 401:
            login_rate_limiter.register_failure(key)
        raise

    login_rate_limiter.register_success(key)
    user.last_login_at = datetime.now(timezone.utc)
    lifetime = session_lifetime(db)
    db.commit()
    return TokenOut(access_token=create_access_token(user.id, expires_in=lifetime))


@router.post(
    "/bootstrap",
    response_model=TokenOut,
    status_code=201,
    summary="Create the first administrator",
    description="Seeds the default roles and permissions. Only allowed while no user exists.",
    responses={**TOKEN_RESPONSE, **error_responses(409, 422, 500)},
)
def bootstrap(payload: BootstrapIn, db: Session = Depends(get_db)):
    if db.execute(select(func.count(User.id))).scalar_one() > 0:
        raise HTTPException(
            status_code=409,
            detail="The system already has users; ask an administrator for an account",
        )

    check_password_policy(db, payload.password)
    roles = seed_roles_and_permissions(db)
    user = User(
        email=payload.email.lower(),
        username=payload.username,
        full_name=payload.full_name,
        hashed_password=hash_password(payload.password),
        role_id=roles[ADMINISTRATOR_ROLE].id,
        is_active=True,
    )
    db.add(user)
    db.flush()
    log_audit_event(
        db,
        actor_user_id=user.id,
        action="auth.bootstrap",
        target_type="user",
        target_id=user.id,
        metadata_json={"role": ADMINISTRATOR_ROLE},
    )
    db.commit()
    return TokenOut(access_token=create_access_token(user.id))


@router.post(
    "/login",
    response_model=TokenOut,
    summary="Login with JSON",
    description="Authenticate with email/username and password.",
    responses={**TOKEN_RESPONSE, **error_responses(401, 403, 422, 429, 500)},
)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    return _login(db, request, payload.identifier, payload.password)


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password token (Swagger Authorize)",
    description=(
        "Form-data login endpoint used by Swagger Authorize. "
        "Use your email or username in the `username` field."
    ),
    responses={**TOKEN_RESPONSE, **error_responses(401, 403, 422, 429, 500)},
)
def login_for_swagger(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    return _login(db, request, form_data.username, form_data.password)


@router.get(
    "/me",
    response_model=UserProfileOut,
    summary="Current user profile",
    responses=error_responses(401, 403, 500),
)
def get_my_profile(actor: CurrentActor = Depends(get_current_actor)):
    user = actor.user
    return UserProfileOut(
        id=user.id,
        email=user.email,
        username=user.username,
        full_name=user.full_name,
        role=actor.role,
        permissions=sorted(actor.permissions),
        is_active=user.is_active,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
    )
