"""Adapters for integrating creatormet with storage and frameworks."""

from .sqlalchemy_repo import SQLAlchemyChatAnalyticsRepository

__all__ = ["SQLAlchemyChatAnalyticsRepository"]
