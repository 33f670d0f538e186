from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from smb_erp.core.config import settings

ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"


class TokenValidationError(ValueError):
    pass


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # stored hash is not bcrypt
        return False


def create_access_token(user_id: str, *, expires_in: timedelta | None = None) -> str:
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_in or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {
        "sub": user_id,
        "typ": ACCESS_TOKEN_TYPE,
        "iss": settings.app_name,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + lifetime).timestamp()),
    }
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> str:
    """Return the user id carried by a valid access token."""
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM], issuer=settings.app_name)
    except ExpiredSignatureError as exc:
        raise TokenValidationError("Token expired") from exc
    except JWTError as exc:
        raise TokenValidationError("Invalid token") from exc

    if claims.get("typ") != ACCESS_TOKEN_TYPE or not claims.get("sub"):
        raise TokenValidationError("Invalid token")
    return claims["sub"]
