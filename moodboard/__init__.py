"""Core package for Moodboard.

This module exposes the entity models, the application state store and the
local document store so that consumers of the package can simply import
them from ``moodboard``.
"""

from .core.models import Community, CommunityPost, Notification, NotificationType, User, Vibe
from .core.storage import JSONDocumentStore
from .data.store import AppStateStore

__all__ = [
    "AppStateStore",
    "Community",
    "CommunityPost",
    "JSONDocumentStore",
    "Notification",
    "NotificationType",
    "User",
    "Vibe",
]
