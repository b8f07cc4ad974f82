"""
Services Layer
==============
Business logic separated from the UI and database layers.

Service classes can be used from the Streamlit page, the API and tests.
"""

from .import_service import SessionImportService
from .session_manager import SessionManager

__all__ = [
    'SessionImportService',
    'SessionManager',
]
