from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import HTTPException

from roundsmatch import config

ALGORITHM = "HS256"


def _secret() -> str:
    secret = str(config.ADMIN_JWT_SECRET or "")
    if not secret:
        raise HTTPException(status_code=500, detail="Admin JWT secret not configured")
    return secret


def create_admin_access_token(
    *,
    operator_id: str,
    role: str,
    email: str = "",
    ttl_minutes: int = 60,
) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=max(5, int(ttl_minutes)))
    payload: dict[str, Any] = {
        "sub": operator_id,
        "email": email,
        "role": role,
        "scope": "admin",
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def decode_admin_access_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, _secret(), algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=401, detail="Token expired") from exc
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    if not isinstance(payload, dict) or payload.get("scope") != "admin":
        raise HTTPException(status_code=401, detail="Invalid admin token")
    return payload
