from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException, Request
from jose import JWTError, jwt
from passlib.context import CryptContext

ALGORITHM = "HS256"
TOKEN_HEADER = "auth-token"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(username: str, secret: str, expires_in: timedelta,
                        now: Optional[datetime] = None) -> str:
    # No "iat" claim: the token only carries identity and expiry.
    issued = now or datetime.now(timezone.utc)
    to_encode = {"username": username, "exp": issued + expires_in}
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> dict:
    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid Token")


def _extract_token(auth_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    if auth_token:
        return auth_token
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1]
    return None


# Dependency yielding the username claim of a verified token

def get_current_username(
    request: Request,
    auth_token: Optional[str] = Header(default=None, alias=TOKEN_HEADER),
    authorization: Optional[str] = Header(default=None),
) -> str:
    token = _extract_token(auth_token, authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Access Denied")
    payload = decode_token(token, request.app.state.settings.token_secret)
    username = payload.get("username")
    if not username:
        raise HTTPException(status_code=401, detail="Invalid Token")
    return username
