from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from stockledger.config import get_settings
from stockledger.permissions import Actor, Permission, Role, has_permission

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 12

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_actor(token: str) -> Actor:
    """Turn a bearer token issued by the identity provider into an ``Actor``."""
    settings = get_settings()
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    subject = payload.get("sub")
    role = payload.get("role")
    if subject is None or role not in {member.value for member in Role}:
        raise JWTError("Token is missing a subject or a known role.")
    return Actor(id=int(subject), role=role, name=payload.get("name") or "")


def get_current_actor(token: str | None = Depends(oauth2_scheme)) -> Actor:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception
    try:
        return decode_actor(token)
    except (JWTError, ValueError):
        raise credentials_exception


def require_permission(permission: Permission):
    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not has_permission(actor.role, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Not authorized for '{permission.value}'",
            )
        return actor

    return dependency
