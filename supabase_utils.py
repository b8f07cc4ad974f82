"""
Supabase Utilities
Client construction from Streamlit secrets and acting-user resolution.
"""
import logging
from typing import Optional

import streamlit as st
from supabase import create_client, Client

logger = logging.getLogger(__name__)

SECRET_KEY_NAMES = ("service_role_key", "anon_key", "key")


def get_supabase_client() -> Optional[Client]:
    """Get Supabase client from Streamlit secrets, or None when not configured."""
    try:
        supa = st.secrets["supabase"]
        url = supa["url"]
        key = next((supa[name] for name in SECRET_KEY_NAMES if name in supa), None)
        if not key:
            raise KeyError("No Supabase key found (service_role_key/anon_key/key)")
        return create_client(url, key)
    except KeyError as e:
        logger.error("Missing Supabase configuration in secrets: %s", e)
        st.error(f"Missing Supabase configuration in secrets: {e}")
        return None
    except Exception as e:
        logger.error("Error connecting to Supabase: %s", e)
        st.error(f"Error connecting to Supabase: {e}")
        return None


def get_user_id() -> Optional[str]:
    """
    Returns the acting user ID.

    Session state wins (set after login); otherwise `[dev] user_id` from
    secrets for local development. None when neither is set.
    """
    if st.session_state.get("user_id"):
        return st.session_state["user_id"]

    try:
        dev_user_id = st.secrets.get("dev", {}).get("user_id")
    except FileNotFoundError:
        dev_user_id = None
    if dev_user_id:
        st.session_state["user_id"] = dev_user_id
        return dev_user_id
    return None


def set_user_id(user_id: str):
    """Set user ID in session state"""
    st.session_state["user_id"] = user_id
