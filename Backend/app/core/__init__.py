"""
Core module - configuration, database and response formatting.
"""
from .config import Settings, get_settings
from .db import AsyncSessionLocal, Base, build_engine, build_session_factory, engine
from .responses import ErrorCodes, error_response, success_response

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "AsyncSessionLocal",
    "Base",
    "build_engine",
    "build_session_factory",
    "engine",
    # Responses
    "ErrorCodes",
    "error_response",
    "success_response",
]
