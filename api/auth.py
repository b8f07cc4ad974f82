from __future__ import annotations

import json
import logging
import time
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, Query
from jose import jwt
from jose.exceptions import JWTError

from api.config import Settings, get_settings

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Token missing, malformed or not verifiable."""


@dataclass
class AuthContext:
    user_id: str
    claims: Dict[str, Any]


_JWKS_CACHE: Dict[str, Any] = {"fetched_at": 0.0, "jwks": None}


def _fetch_jwks(supabase_url: str) -> Dict[str, Any]:
    if not supabase_url:
        raise AuthError("SUPABASE_URL is not set")
    req = urllib.request.Request(
        supabase_url + "/auth/v1/keys", headers={"Content-Type": "application/json"}, method="GET"
    )
    with urllib.request.urlopen(req, timeout=10) as resp:
        return json.loads(resp.read().decode("utf-8"))


def get_jwks(settings: Settings) -> Dict[str, Any]:
    now = time.time()
    cached = _JWKS_CACHE.get("jwks")
    if cached and (now - float(_JWKS_CACHE.get("fetched_at") or 0.0)) < settings.jwks_ttl_seconds:
        return cached
    try:
        jwks = _fetch_jwks(settings.supabase_url)
    except (OSError, ValueError) as e:
        raise AuthError(f"Could not load signing keys: {e}") from e
    _JWKS_CACHE["jwks"] = jwks
    _JWKS_CACHE["fetched_at"] = now
    return jwks


def parse_bearer_token(authorization_header: Optional[str]) -> Optional[str]:
    if not authorization_header:
        return None
    parts = authorization_header.strip().split()
    if len(parts) != 2:
        return None
    scheme, token = parts
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def verify_supabase_jwt(token: str, settings: Settings) -> AuthContext:
    """
    Verify a Supabase JWT against the project JWKS and return the user id (sub).
    Audience is not enforced; it varies between Supabase projects.
    """
    try:
        claims = jwt.decode(token, get_jwks(settings), algorithms=["RS256"], options={"verify_aud": False})
    except JWTError as e:
        raise AuthError(f"Invalid JWT: {e}") from e

    sub = claims.get("sub")
    if not sub:
        raise AuthError("JWT missing 'sub'")
    return AuthContext(user_id=str(sub), claims=dict(claims))


def resolve_user_id(authorization: Optional[str], user_id: Optional[str], settings: Settings) -> str:
    """
    Acting user from the bearer token. The `user_id` fallback is honoured
    only when ENVIRONMENT=local and no Authorization header is sent.
    """
    if authorization:
        token = parse_bearer_token(authorization)
        if not token:
            raise AuthError("Malformed Authorization header")
        return verify_supabase_jwt(token, settings).user_id
    if user_id and settings.is_local:
        return user_id
    raise AuthError("Missing Authorization header")


def current_user_id(
    authorization: Optional[str] = Header(None),
    user_id: Optional[str] = Query(None, description="User UUID (local development only)"),
    settings: Settings = Depends(get_settings),
) -> str:
    """FastAPI dependency returning the acting user id, 401 otherwise."""
    try:
        return resolve_user_id(authorization, user_id, settings)
    except AuthError as e:
        logger.info("Rejected request: %s", e)
        raise HTTPException(status_code=401, detail=str(e)) from e
