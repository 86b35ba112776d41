from __future__ import annotations

from typing import Any

from fastapi import Depends, Header, HTTPException

from roundsmatch import config
from roundsmatch.auth.security import decode_admin_access_token


ROLE_ORDER = {"viewer": 1, "operator": 2, "admin": 3}


def _extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        return None
    return parts[1].strip()


def get_current_admin(
    authorization: str | None = Header(default=None, alias="Authorization"),
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> dict[str, Any]:
    bearer = _extract_bearer(authorization)
    if bearer:
        payload = decode_admin_access_token(bearer)
        operator_id = str(payload.get("sub") or "").strip()
        role = str(payload.get("role") or "viewer").strip().lower()
        if not operator_id or role not in ROLE_ORDER:
            raise HTTPException(status_code=401, detail="Invalid admin token")
        return {
            "id": operator_id,
            "email": str(payload.get("email") or ""),
            "role": role,
            "auth_mode": "jwt",
        }

    # Dev fallback only. The static token carries no operator identity.
    runtime_admin_token = str(config.ADMIN_TOKEN or "")
    if runtime_admin_token and x_admin_token and x_admin_token == runtime_admin_token:
        return {"id": None, "email": "admin-token", "role": "admin", "auth_mode": "token"}

    if not runtime_admin_token and x_admin_token and x_admin_token == "dev-admin-token":
        return {"id": None, "email": "dev-admin-token", "role": "admin", "auth_mode": "token"}

    raise HTTPException(status_code=401, detail="Admin authentication required")


def require_admin_role(min_role: str):
    required = ROLE_ORDER.get(min_role)
    if required is None:
        raise ValueError(f"Unknown role: {min_role}")

    def _dep(admin_user: dict[str, Any] = Depends(get_current_admin)) -> dict[str, Any]:
        role = str(admin_user.get("role") or "viewer").lower()
        current = ROLE_ORDER.get(role, 0)
        if current < required:
            raise HTTPException(status_code=403, detail="Insufficient admin role")
        return admin_user

    return _dep
