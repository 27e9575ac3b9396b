from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Iterable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from hue_extended.config import AppConfig


logger = logging.getLogger("hue_extended.security")

API_KEY_HEADER = "X-API-Key"


@dataclass(frozen=True)
class AuthContext:
    credential: str
    scheme: str  # "bearer" | "api_key"


def credential_allowed(value: str, allowed: Iterable[str]) -> bool:
    # compares against every candidate, no early exit
    candidate = value.encode("utf-8")
    results = [secrets.compare_digest(candidate, item.encode("utf-8")) for item in allowed]
    return any(results)


def authenticate(config: AppConfig, *, token: str | None, api_key: str | None) -> AuthContext | None:
    """Resolve the caller of a state-tree request, or ``None`` when neither credential matches."""
    token = (token or "").strip()
    if token and credential_allowed(token, config.auth_tokens):
        return AuthContext(credential=token, scheme="bearer")
    if api_key and credential_allowed(api_key, config.api_keys):
        return AuthContext(credential=api_key, scheme="api_key")
    return None


_bearer = HTTPBearer(auto_error=False)
_api_key = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


async def require_auth(
    request: Request,
    bearer: HTTPAuthorizationCredentials | None = Depends(_bearer),
    api_key: str | None = Depends(_api_key),
) -> AuthContext:
    token = bearer.credentials if bearer is not None and bearer.scheme.lower() == "bearer" else None
    context = authenticate(request.app.state.state.config, token=token, api_key=api_key)
    if context is None:
        logger.debug("Rejected %s %s without valid credentials.", request.method, request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail={"error": "unauthorized"})
    return context
