from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from marketplace.core.config import settings
from marketplace.core.exceptions import Unauthenticated
from marketplace.models.user import UserRole

security = HTTPBearer(auto_error=False)


class Principal(BaseModel):
    """The authenticated actor behind a request."""
    id: str
    role: UserRole


def create_access_token(user_id: str, role: str, expires_delta: timedelta | None = None) -> str:
    """Create JWT access token."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    now = datetime.now(timezone.utc)
    expire = now + expires_delta

    payload = {
        "sub": user_id,
        "role": role,
        "exp": int(expire.timestamp()),
        "iat": int(now.timestamp())
    }

    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Principal:
    """Decode a JWT into a principal. Raises Unauthenticated."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise Unauthenticated("Invalid token") from e

    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role not in {r.value for r in UserRole}:
        raise Unauthenticated("Invalid token")
    return Principal(id=user_id, role=role)


PrincipalCallback = Callable[[Optional[Principal]], None]


class PrincipalSession:
    """
    Holds the current principal for a client session.

    Listeners registered with ``on_principal_changed`` fire on sign-in,
    sign-out and token refresh with the new principal (or None).
    """

    def __init__(self):
        self._principal: Optional[Principal] = None
        self._listeners: List[PrincipalCallback] = []

    def current_principal(self) -> Optional[Principal]:
        return self._principal

    def on_principal_changed(self, callback: PrincipalCallback) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def sign_in(self, token: str) -> Principal:
        principal = decode_access_token(token)
        self._set(principal)
        return principal

    def refresh(self, token: str) -> Principal:
        return self.sign_in(token)

    def sign_out(self) -> None:
        self._set(None)

    def _set(self, principal: Optional[Principal]) -> None:
        self._principal = principal
        for listener in list(self._listeners):
            listener(principal)


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(security)
) -> Optional[Principal]:
    """Principal from the bearer token, or None when no token was sent."""
    if credentials is None:
        return None
    return decode_access_token(credentials.credentials)
