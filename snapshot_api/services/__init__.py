"""Service layer for tags, user profiles and push tokens."""

from .document_store import MongoDocumentStore
from .tag_repository import TagRepository
from .token_registrar import NotificationTokenRegistrar
from .user_service import UserProfileService

__all__ = [
    "MongoDocumentStore",
    "NotificationTokenRegistrar",
    "TagRepository",
    "UserProfileService",
]
