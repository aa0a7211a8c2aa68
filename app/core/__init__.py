"""
Core module initialization.
Exports configuration, logging utilities and domain errors.
"""

from app.core.config import get_settings, Settings, EnvironmentMode
from app.core.errors import (
    OrderingError,
    ValidationError,
    NotFoundError,
    InvalidTransitionError,
    AuthenticationError,
    PersistenceError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "OrderingError",
    "ValidationError",
    "NotFoundError",
    "InvalidTransitionError",
    "AuthenticationError",
    "PersistenceError",
]
