from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True)
class Settings:
    environment: str
    supabase_url: str
    max_upload_bytes: int
    jwks_ttl_seconds: int

    @property
    def is_local(self) -> bool:
        return self.environment == "local"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {value}")
    return value


def get_settings() -> Settings:
    return Settings(
        environment=os.getenv("ENVIRONMENT", "local").strip() or "local",
        supabase_url=os.getenv("SUPABASE_URL", "").strip().rstrip("/"),
        max_upload_bytes=_int_env("IMPORT_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
        jwks_ttl_seconds=_int_env("SUPABASE_JWKS_TTL_SECONDS", 3600),
    )
