"""Core module - Configuration, errors and database."""

from contactline.core.config import get_settings, Settings
from contactline.core.database import DatabaseService, db_service

__all__ = [
    "get_settings",
    "Settings",
    "DatabaseService",
    "db_service",
]
