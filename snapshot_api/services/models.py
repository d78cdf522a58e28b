"""Domain records stored in the document database.

Document layout:
    users/{userId}:
        {"userId", "username", "email", "profilePicUrl", "bio",
         "creationDate", "fcmToken"?}
    tags/{tagId}:
        {"tagId", "name", "tagType", "description", "creatorId",
         "useCount", "lastUsed"?}
    saved_tags/{userId}_{tagId}:
        {"userId", "tagId", "savedAt"}
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

USERS_COLLECTION = "users"
TAGS_COLLECTION = "tags"
SAVED_TAGS_COLLECTION = "saved_tags"

TAG_TYPE_LOCATION = "location"
TAG_TYPE_PRODUCT = "product"
TAG_TYPE_BRAND = "brand"
TAG_TYPE_PRICE = "price"
TAG_TYPE_EVENT = "event"

TAG_TYPES = (
    TAG_TYPE_LOCATION,
    TAG_TYPE_PRODUCT,
    TAG_TYPE_BRAND,
    TAG_TYPE_PRICE,
    TAG_TYPE_EVENT,
)


def saved_tag_key(user_id: str, tag_id: str) -> str:
    """Document id of the presence record for a (user, tag) pair."""
    return f"{user_id}_{tag_id}"


@dataclass
class Tag:
    """A taxonomy entry users can save."""
    tag_id: str
    name: str
    tag_type: str
    description: str = ""
    creator_id: Optional[str] = None
    use_count: int = 0
    last_used: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Tag":
        return cls(
            tag_id=doc.get("tagId") or doc["_id"],
            name=doc.get("name", ""),
            tag_type=doc.get("tagType", ""),
            description=doc.get("description", ""),
            creator_id=doc.get("creatorId"),
            use_count=int(doc.get("useCount", 0)),
            last_used=doc.get("lastUsed"),
        )

    def to_document(self) -> dict[str, Any]:
        doc = {
            "tagId": self.tag_id,
            "name": self.name,
            "tagType": self.tag_type,
            "description": self.description,
            "creatorId": self.creator_id,
            "useCount": self.use_count,
        }
        if self.last_used is not None:
            doc["lastUsed"] = self.last_used
        return doc


@dataclass
class User:
    """A user profile.

    ``user_id`` is issued by the identity provider and never changes.
    ``profile_pic_url`` stays empty until an image upload completes.
    """
    user_id: str
    username: str
    email: str
    profile_pic_url: str = ""
    bio: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    fcm_token: Optional[str] = None

    def __post_init__(self):
        if not self.user_id:
            raise ValueError("User requires a non-empty user_id")
        if not self.email:
            raise ValueError("User requires a non-empty email")

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "User":
        return cls(
            user_id=doc.get("userId") or doc["_id"],
            username=doc.get("username", ""),
            email=doc.get("email", ""),
            profile_pic_url=doc.get("profilePicUrl") or "",
            bio=doc.get("bio", ""),
            created_at=doc.get("creationDate") or datetime.now(timezone.utc),
            fcm_token=doc.get("fcmToken"),
        )

    def to_document(self) -> dict[str, Any]:
        # fcmToken is owned by the token registrar and never written here
        return {
            "userId": self.user_id,
            "username": self.username,
            "email": self.email,
            "profilePicUrl": self.profile_pic_url,
            "bio": self.bio,
            "creationDate": self.created_at,
        }


@dataclass
class SavedTag:
    """Presence record: the user has saved the tag."""
    user_id: str
    tag_id: str
    saved_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "SavedTag":
        return cls(
            user_id=doc["userId"],
            tag_id=doc["tagId"],
            saved_at=doc.get("savedAt"),
        )


@dataclass(frozen=True)
class Identity:
    """An identity issued by the external identity provider."""
    uid: str
    email: str
    id_token: Optional[str] = None
