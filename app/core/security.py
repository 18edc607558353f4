from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from passlib.context import CryptContext
from jose import jwt, JWTError

ALGORITHM = "HS256"
_pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return _pwd_ctx.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return _pwd_ctx.verify(plain_password, password_hash)


def create_access_token(
    *,
    subject: str,
    grants: List[Mapping[str, Any]],
    secret: str,
    email: Optional[str] = None,
    expires_minutes: int = 30,
    algorithm: str = ALGORITHM,
) -> str:
    """
    Access-токен з grant-ами користувача (role + department? + team?).
    Claims довіряються до `exp` — зміни ролей після видачі токена не видно.
    """
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=expires_minutes)
    payload: Dict[str, Any] = {
        "sub": subject,
        "grants": [dict(g) for g in grants],
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_token(token: str, secret: str, algorithm: str = ALGORITHM) -> Dict[str, Any]:
    try:
        data = jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError as e:
        raise ValueError("invalid_token") from e
    if data.get("type") != "access" or "sub" not in data:
        raise ValueError("invalid_token_payload")
    return data
