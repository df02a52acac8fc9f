"""
Bearer-token authentication. Tokens are issued elsewhere; this only verifies them and turns the
claims into a RequestContext that handlers receive explicitly.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from orderdesk.config import settings

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class RequestContext:
    user_id: str
    username: str | None = None
    role: str = "user"


def decode_access_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def create_access_token(user_id: str, username: str | None = None, role: str = "user",
                        expires_delta: timedelta = timedelta(hours=24)) -> str:
    """Signs a token the same way the login service does. Used by tooling and tests."""
    claims = {
        "sub": user_id,
        "username": username,
        "role": role,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def get_request_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> RequestContext:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(credentials.credentials)
    user_id = (payload or {}).get("sub") or (payload or {}).get("id")
    if payload is None or not user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired token")

    return RequestContext(
        user_id=str(user_id),
        username=payload.get("username"),
        role=payload.get("role") or "user",
    )
