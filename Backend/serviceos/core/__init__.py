"""
Core module - configuration, database engine, logging, and response formatting.
"""
from .config import Settings, get_settings
from .db import Base, build_engine
from .logging import ExecutionContextFilter, configure_logging
from .responses import ErrorCodes, error_response, success_response

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "Base",
    "build_engine",
    # Logging
    "ExecutionContextFilter",
    "configure_logging",
    # Responses
    "ErrorCodes",
    "success_response",
    "error_response",
]
