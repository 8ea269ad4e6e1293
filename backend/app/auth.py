from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import HTTPException, Request

from .config import settings


def _parse_api_keys(raw: Optional[str]) -> Dict[str, str]:
    keys: Dict[str, str] = {}
    for pair in (raw or "").split(","):
        key, sep, owner = pair.strip().partition(":")
        if sep and key and owner:
            keys[key] = owner
    return keys


API_KEYS = _parse_api_keys(settings.get("auth.api_keys"))


@dataclass
class AuthUser:
    uid: str
    email: Optional[str] = None


async def require_auth(request: Request) -> AuthUser:
    # 1) API key header, mapped to an owner id
    if API_KEYS:
        key = request.headers.get("x-api-key")
        if key and key in API_KEYS:
            return AuthUser(uid=API_KEYS[key])
        raise HTTPException(status_code=401, detail="Invalid API key")

    # 2) Identity forwarded by the fronting gateway
    uid = (request.headers.get("x-user-id") or "").strip()
    if uid:
        return AuthUser(uid=uid)
    raise HTTPException(status_code=401, detail="Access token required")
