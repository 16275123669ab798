"""
Pitch Market - Core Package
===========================

Core business logic, models, and schemas.
"""

from pitchmarket.core.config import settings
from pitchmarket.core.database import Base, get_db

__all__ = ["Base", "get_db", "settings"]
