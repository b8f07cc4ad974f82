from __future__ import annotations

import os
from dataclasses import dataclass

from supabase import create_client

from db_connector import SupabaseHandler


@dataclass(frozen=True)
class SupabaseEnv:
    url: str
    key: str


def _get_supabase_env() -> SupabaseEnv:
    """
    API-safe Supabase config loader (no Streamlit secrets).

    Expected env vars:
    - SUPABASE_URL
    - SUPABASE_SERVICE_ROLE_KEY (preferred server-side) OR SUPABASE_ANON_KEY / SUPABASE_KEY
    """
    url = os.getenv("SUPABASE_URL", "").strip()
    key = (
        os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
        or os.getenv("SUPABASE_ANON_KEY", "").strip()
        or os.getenv("SUPABASE_KEY", "").strip()
    )
    if not url or not key:
        raise RuntimeError(
            "Missing Supabase env vars. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY "
            "(or SUPABASE_ANON_KEY / SUPABASE_KEY)."
        )
    return SupabaseEnv(url=url, key=key)


class SupabaseAPIHandler(SupabaseHandler):
    """
    SupabaseHandler configured from environment variables, for the API.

    Every query is scoped by the user id taken from the verified JWT, since
    the service role key bypasses row level security.
    """

    def __init__(self):
        env = _get_supabase_env()
        super().__init__(client=create_client(env.url, env.key))
