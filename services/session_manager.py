"""
Session State Manager
=====================
Centralized session state for the import page.

An import spans several reruns (upload, mapping, preview, confirmation,
commit), so the intermediate results live in st.session_state under the
keys defined here.
"""

import streamlit as st
from typing import Any, Optional, Dict, List, Tuple


class SessionManager:
    """
    Centralized session state manager.
    """

    # Session state keys (centralized constants)
    USER_ID = 'user_id'
    DB_HANDLER = 'db_handler'
    IMPORT_FILE_KEY = 'import_file_key'
    IMPORT_TABLE = 'import_table'
    IMPORT_MAPPING = 'import_mapping'
    IMPORT_PARSE_RESULT = 'import_parse_result'
    IMPORT_CONFIRM_MISSING = 'import_confirm_missing'
    IMPORT_RESULT = 'import_result'
    LATIDO_PARSE_RESULT = 'latido_parse_result'
    LATIDO_RESULT = 'latido_result'

    IMPORT_KEYS = (
        IMPORT_FILE_KEY,
        IMPORT_TABLE,
        IMPORT_MAPPING,
        IMPORT_PARSE_RESULT,
        IMPORT_CONFIRM_MISSING,
        IMPORT_RESULT,
    )

    @staticmethod
    def get(key: str, default: Any = None) -> Any:
        return st.session_state.get(key, default)

    @staticmethod
    def set(key: str, value: Any) -> None:
        st.session_state[key] = value

    @staticmethod
    def delete(key: str) -> None:
        if key in st.session_state:
            del st.session_state[key]

    @staticmethod
    def exists(key: str) -> bool:
        return key in st.session_state

    @staticmethod
    def get_user_id() -> Optional[str]:
        """Get current user ID."""
        return SessionManager.get(SessionManager.USER_ID)

    @staticmethod
    def set_user_id(user_id: str) -> None:
        """Set current user ID."""
        SessionManager.set(SessionManager.USER_ID, user_id)

    @staticmethod
    def start_import(file_key: str) -> bool:
        """
        Register the uploaded file. When a different file is uploaded, the
        state of the previous import is dropped.

        Returns:
            True if this is a new file
        """
        if SessionManager.get(SessionManager.IMPORT_FILE_KEY) == file_key:
            return False
        SessionManager.clear_import()
        SessionManager.set(SessionManager.IMPORT_FILE_KEY, file_key)
        return True

    @staticmethod
    def clear_import() -> None:
        """Forget every intermediate result of the current import."""
        for key in SessionManager.IMPORT_KEYS:
            SessionManager.delete(key)

    @staticmethod
    def clear_latido() -> None:
        SessionManager.delete(SessionManager.LATIDO_PARSE_RESULT)
        SessionManager.delete(SessionManager.LATIDO_RESULT)

    @staticmethod
    def validate_state() -> Tuple[bool, List[str]]:
        """
        Validate session state integrity.

        Returns:
            (is_valid, list_of_issues)
        """
        issues = []

        user_id = SessionManager.get_user_id()
        if not user_id:
            issues.append("Missing user_id")
        elif not isinstance(user_id, str):
            issues.append("user_id must be a string")

        if SessionManager.exists(SessionManager.IMPORT_PARSE_RESULT) and not SessionManager.exists(
            SessionManager.IMPORT_MAPPING
        ):
            issues.append("Parse result without column mapping")

        return len(issues) == 0, issues

    @staticmethod
    def get_state_summary() -> Dict[str, Any]:
        return {
            'user_id': SessionManager.get_user_id(),
            'has_table': SessionManager.exists(SessionManager.IMPORT_TABLE),
            'has_mapping': SessionManager.exists(SessionManager.IMPORT_MAPPING),
            'has_parse_result': SessionManager.exists(SessionManager.IMPORT_PARSE_RESULT),
            'has_result': SessionManager.exists(SessionManager.IMPORT_RESULT),
            'total_keys': len(st.session_state),
        }
