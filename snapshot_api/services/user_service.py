"""User profile service.

Profiles live in ``users/{userId}``. The user id comes from the identity
provider and never changes.

Profile creation is a composite operation:
    1. merge-write the profile (primary, errors propagate)
    2. upload the profile image (secondary)
    3. merge-write profilePicUrl once the upload has a download URL

A failure in 2 or 3 leaves the profile from step 1 in place with an empty
profilePicUrl and is reported as a partial success, never as a failure.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

from pymongo import ASCENDING

from .blob_store import UploadResult
from .document_store import DocumentStore
from .errors import (
    BlobStoreError,
    IdentityError,
    NotAuthenticatedError,
    StoreError,
    UserNotFoundError,
)
from .identity import IdentitySource
from .models import USERS_COLLECTION, User

logger = logging.getLogger(__name__)

PROFILE_IMAGE_PATH = "profile_images/{user_id}.jpg"


def _is_profile(doc: Optional[dict]) -> bool:
    # the token registrar may create users/{uid} holding only fcmToken
    return doc is not None and bool(doc.get("email"))


class BlobStoreProtocol(Protocol):
    """Protocol for blob stores (HTTP client or test doubles)."""

    async def upload(self, path: str, data: bytes, content_type: str = "image/jpeg") -> UploadResult: ...


@dataclass
class ProfileResult:
    """Outcome of a profile write that may include an image upload.

    ``image_error`` is set when the profile was stored but the image was
    not (partial success).
    """
    user: User
    image_error: Optional[str] = None

    @property
    def partial(self) -> bool:
        return self.image_error is not None


class UserProfileService:
    """Creates, updates and reads user profiles.

    Usage:
        users = UserProfileService(store, identity_source, blob_store)

        result = await users.create_profile("jane", image=jpeg_bytes)
        if result.partial:
            ...  # profile saved, image not

        me = await users.get_current_user()
    """

    def __init__(
        self,
        store: DocumentStore,
        identity: IdentitySource,
        blob_store: Optional[BlobStoreProtocol] = None,
    ):
        self.store = store
        self.identity = identity
        self.blob_store = blob_store

    async def create_or_update_user(self, user: User) -> None:
        """Merge-write the full user record. Safe to repeat."""
        await self.store.set(USERS_COLLECTION, user.user_id, user.to_document())
        logger.debug(f"Stored profile for {user.user_id}")

    async def upload_profile_image(self, user_id: str, data: bytes) -> UploadResult:
        """Upload a profile image and return its download URL.

        Raises:
            BlobStoreError: If no blob store is configured or the upload fails
        """
        path = PROFILE_IMAGE_PATH.format(user_id=user_id)
        if self.blob_store is None:
            raise BlobStoreError(path, "no blob store configured")
        return await self.blob_store.upload(path, data)

    async def get_user_by_id(self, user_id: str) -> User:
        """Get a stored profile.

        Raises:
            UserNotFoundError: If no profile exists for this id
        """
        doc = await self.store.get(USERS_COLLECTION, user_id)
        if not _is_profile(doc):
            raise UserNotFoundError(user_id)
        return User.from_document(doc)

    async def get_current_user(self) -> Optional[User]:
        """Profile of the signed-in identity, or None when signed out.

        Falls back to a bare profile built from the identity when no
        profile has been stored yet.

        Raises:
            UserNotFoundError: If there is no stored profile and the
                identity carries no email to build one from
        """
        identity = self.identity.current_user
        if identity is None:
            return None

        doc = await self.store.get(USERS_COLLECTION, identity.uid)
        if _is_profile(doc):
            return User.from_document(doc)

        if not identity.email:
            raise UserNotFoundError(identity.uid)
        return User(
            user_id=identity.uid,
            username="",
            email=identity.email,
            fcm_token=(doc or {}).get("fcmToken"),
        )

    async def create_profile(
        self,
        username: str,
        image: Optional[bytes] = None,
        bio: str = "",
    ) -> ProfileResult:
        """Create the profile of the signed-in identity.

        Raises:
            NotAuthenticatedError: If nobody is signed in
            IdentityError: If the identity has no email
            StoreError: If the profile itself cannot be written
        """
        identity = self.identity.current_user
        if identity is None:
            raise NotAuthenticatedError("Sign in before creating a profile")
        if not identity.email:
            raise IdentityError("Signed-in identity has no email", code="EMAIL_NOT_FOUND")

        user = User(
            user_id=identity.uid,
            username=username,
            email=identity.email,
            bio=bio,
        )
        await self.create_or_update_user(user)
        logger.info(f"Created profile for {user.user_id}")

        if not image:
            return ProfileResult(user=user)

        return await self._attach_image(user, image)

    async def update_profile(
        self,
        user_id: str,
        username: Optional[str] = None,
        bio: Optional[str] = None,
        image: Optional[bytes] = None,
    ) -> ProfileResult:
        """Update an existing profile; same partial-failure rule as creation.

        Raises:
            UserNotFoundError: If the profile does not exist
        """
        user = await self.get_user_by_id(user_id)
        if username is not None:
            user.username = username
        if bio is not None:
            user.bio = bio
        await self.create_or_update_user(user)

        if not image:
            return ProfileResult(user=user)

        return await self._attach_image(user, image)

    async def _attach_image(self, user: User, image: bytes) -> ProfileResult:
        try:
            upload = await self.upload_profile_image(user.user_id, image)
            await self.store.set(
                USERS_COLLECTION,
                user.user_id,
                {"profilePicUrl": upload.download_url},
            )
        except (BlobStoreError, StoreError) as e:
            logger.warning(f"Profile image for {user.user_id} not stored, keeping profile: {e}")
            return ProfileResult(user=user, image_error=str(e))

        user.profile_pic_url = upload.download_url
        return ProfileResult(user=user)

    async def search_users_by_name(self, prefix: str) -> list[User]:
        docs = await self.store.find(
            USERS_COLLECTION,
            {"username": {"$regex": f"^{re.escape(prefix or '')}"}},
            sort=[("username", ASCENDING)],
        )
        return [User.from_document(d) for d in docs if _is_profile(d)]

    async def delete_user(self, user_id: str) -> None:
        """Users are never hard-deleted by this service."""
        logger.debug(f"delete_user({user_id}) ignored")
