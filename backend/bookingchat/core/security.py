from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, WebSocket, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from bookingchat.core import config

ROLES = ("customer", "staff", "admin")


@dataclass(frozen=True)
class Actor:
    """Verified caller identity as issued by the external auth collaborator."""
    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_staff(self) -> bool:
        return self.role == "staff"

    @property
    def is_team_member(self) -> bool:
        return self.role in ("admin", "staff")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Creates a JWT access token. Dev tooling and tests only; production tokens come from the identity service."""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def token_for(user_id: int, role: str, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token({"sub": str(user_id), "role": role}, expires_delta)


def _credentials_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_token(token: str) -> Actor:
    """
    Decodes and validates a JWT, returning the Actor it carries.
    """
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        raise _credentials_error()

    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role not in ROLES:
        raise _credentials_error()
    try:
        return Actor(id=int(user_id), role=role)
    except (TypeError, ValueError):
        raise _credentials_error()


# --- HTTP ---

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/v1/auth/token")


async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    """
    FastAPI Dependency: extracts the bearer token from the header and returns its Actor.
    """
    return verify_token(token)


# --- WebSocket ---

async def verify_websocket_token(websocket: WebSocket, token: Optional[str]) -> Optional[Actor]:
    """
    Handshake check for the realtime channel. Accepts the token from the query
    string or an Authorization header; closes with 4401 and returns None when
    it is missing or invalid.
    """
    if not token:
        header = websocket.headers.get("authorization", "")
        if header.lower().startswith("bearer "):
            token = header[7:]

    if not token:
        await websocket.close(code=4401, reason="Authentication required")
        return None
    try:
        return verify_token(token)
    except HTTPException:
        await websocket.close(code=4401, reason="Invalid token")
        return None
