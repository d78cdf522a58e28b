"""Tag catalog and user-tag save relation.

A saved tag is a presence record in ``saved_tags`` keyed by
``{userId}_{tagId}``. Its existence is the whole fact; the fields are only
there for listing.

Saving is a conditional transaction:
    1. read the tag (TagNotFoundError -> nothing written)
    2. create the presence record if it does not exist
    3. increment tags/{tagId}.useCount only if step 2 created it

So saving the same tag twice moves useCount by exactly one. Unsaving
deletes the presence record; whether it also decrements useCount is the
configured UnsavePolicy.
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from pymongo import ASCENDING, DESCENDING

from ..config import UnsavePolicy
from .document_store import DocumentStore
from .errors import TagNotFoundError
from .models import (
    SAVED_TAGS_COLLECTION,
    TAGS_COLLECTION,
    SavedTag,
    Tag,
    saved_tag_key,
)

logger = logging.getLogger(__name__)


@dataclass
class SaveOutcome:
    """Result of save_tag_for_user.

    ``newly_saved`` is False when the tag was already saved, in which case
    useCount was left unchanged.
    """
    user_id: str
    tag_id: str
    newly_saved: bool


class TagRepository:
    """Tag reads, writes and the saved-tag relation.

    Usage:
        repo = TagRepository(store)

        outcome = await repo.save_tag_for_user("u1", "t1")
        saved = await repo.is_tag_saved_by_user("u1", "t1")   # True
        await repo.unsave_tag_for_user("u1", "t1")
    """

    def __init__(
        self,
        store: DocumentStore,
        unsave_policy: UnsavePolicy = UnsavePolicy.KEEP,
        transactional: bool = True,
    ):
        """Initialize the repository.

        Args:
            store: Document store adapter
            unsave_policy: Whether unsaving decrements useCount
            transactional: Run save/unsave in a multi-document transaction.
                Disable only for stores without transaction support; the
                conditional increment still prevents double counting but a
                failure between the two writes can leave the counter behind.
        """
        self.store = store
        self.unsave_policy = unsave_policy
        self.transactional = transactional
        self._background: set[asyncio.Task] = set()

    async def _run(self, callback):
        if self.transactional:
            return await self.store.run_transaction(callback)
        return await callback(None)

    async def get_tag_by_id(self, tag_id: str) -> Tag:
        """Get a tag.

        Raises:
            TagNotFoundError: If the tag does not exist
        """
        doc = await self.store.get(TAGS_COLLECTION, tag_id)
        if doc is None:
            raise TagNotFoundError(tag_id)
        return Tag.from_document(doc)

    async def create_tag(self, tag: Tag) -> Tag:
        """Create a catalog entry with useCount 0.

        The name is stored lowercase so prefix search is case-insensitive.
        A tag id is generated when the tag has none.
        """
        if not tag.tag_id:
            tag.tag_id = uuid.uuid4().hex
        tag.name = tag.name.strip().lower()
        tag.use_count = 0

        await self.store.set(TAGS_COLLECTION, tag.tag_id, tag.to_document(), merge=False)
        logger.info(f"Created tag {tag.tag_id} ({tag.tag_type}: {tag.name})")
        return tag

    async def is_tag_saved_by_user(self, user_id: str, tag_id: str) -> bool:
        """Check whether the user has saved the tag. Never writes."""
        doc = await self.store.get(SAVED_TAGS_COLLECTION, saved_tag_key(user_id, tag_id))
        return doc is not None

    async def save_tag_for_user(self, user_id: str, tag_id: str) -> SaveOutcome:
        """Save a tag for a user and count the first save.

        Raises:
            TagNotFoundError: If the tag does not exist (nothing is written)
            StoreError: If the store fails (the transaction is rolled back)
        """
        logger.debug(f"save_tag_for_user: user={user_id}, tag={tag_id}")
        key = saved_tag_key(user_id, tag_id)

        async def _save(session: Any) -> bool:
            tag_doc = await self.store.get(TAGS_COLLECTION, tag_id, session=session)
            if tag_doc is None:
                raise TagNotFoundError(tag_id)

            created = await self.store.create_if_absent(
                SAVED_TAGS_COLLECTION,
                key,
                {
                    "userId": user_id,
                    "tagId": tag_id,
                    "savedAt": datetime.now(timezone.utc),
                },
                session=session,
            )
            if created:
                await self.store.increment(TAGS_COLLECTION, tag_id, "useCount", 1, session=session)
            return created

        newly_saved = await self._run(_save)

        if newly_saved:
            logger.info(f"User {user_id} saved tag {tag_id}")
        else:
            logger.debug(f"User {user_id} already saved tag {tag_id}, useCount unchanged")

        return SaveOutcome(user_id=user_id, tag_id=tag_id, newly_saved=newly_saved)

    async def unsave_tag_for_user(self, user_id: str, tag_id: str) -> bool:
        """Remove a saved tag. Unsaving a tag that was never saved is a no-op.

        Returns:
            True if a presence record was removed
        """
        key = saved_tag_key(user_id, tag_id)

        if self.unsave_policy is UnsavePolicy.KEEP:
            removed = await self.store.delete(SAVED_TAGS_COLLECTION, key)
        else:
            async def _unsave(session: Any) -> bool:
                deleted = await self.store.delete(SAVED_TAGS_COLLECTION, key, session=session)
                if deleted:
                    await self.store.increment(TAGS_COLLECTION, tag_id, "useCount", -1, session=session)
                return deleted

            removed = await self._run(_unsave)

        if removed:
            logger.info(f"User {user_id} unsaved tag {tag_id}")
        return removed

    async def increment_tag_use_count(self, tag_id: str) -> None:
        """Atomically add one to a tag's useCount.

        Raises:
            ValueError: If tag_id is empty
            TagNotFoundError: If the tag does not exist
        """
        if not tag_id:
            raise ValueError("tag_id must not be empty")

        matched = await self.store.increment(TAGS_COLLECTION, tag_id, "useCount", 1)
        if not matched:
            raise TagNotFoundError(tag_id)

    async def record_tag_use(self, tag_id: str) -> None:
        """Count one use of the tag and stamp its lastUsed time."""
        await self.increment_tag_use_count(tag_id)
        await self.update_tag_last_used(tag_id)

    def schedule_use_count_increment(self, tag_id: str) -> asyncio.Task:
        """Run record_tag_use in the background.

        The caller does not wait for completion. Failures are logged.
        Must be called from a running event loop.
        """
        task = asyncio.create_task(self.record_tag_use(tag_id))
        self._background.add(task)
        task.add_done_callback(lambda t: self._on_increment_done(tag_id, t))
        return task

    def _on_increment_done(self, tag_id: str, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.warning(f"useCount increment for tag {tag_id} was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"useCount increment for tag {tag_id} failed: {error}")

    async def update_tag_last_used(self, tag_id: str) -> None:
        """Stamp lastUsed on an existing tag.

        Raises:
            TagNotFoundError: If the tag does not exist (nothing is created)
        """
        matched = await self.store.update(
            TAGS_COLLECTION,
            tag_id,
            {"lastUsed": datetime.now(timezone.utc)},
        )
        if not matched:
            raise TagNotFoundError(tag_id)

    async def get_tags_by_type(self, tag_type: str) -> list[Tag]:
        docs = await self.store.find(
            TAGS_COLLECTION,
            {"tagType": tag_type},
            sort=[("name", ASCENDING)],
        )
        return [Tag.from_document(d) for d in docs]

    async def search_tags_by_name(self, prefix: str, tag_type: Optional[str] = None) -> list[Tag]:
        """Find tags whose name starts with ``prefix`` (case-insensitive)."""
        query: dict[str, Any] = {
            "name": {"$regex": f"^{re.escape((prefix or '').lower())}"},
        }
        if tag_type:
            query["tagType"] = tag_type

        docs = await self.store.find(TAGS_COLLECTION, query, sort=[("name", ASCENDING)])
        return [Tag.from_document(d) for d in docs]

    async def get_trending_tags(self, limit: int = 10) -> list[Tag]:
        """Most used tags first."""
        docs = await self.store.find(
            TAGS_COLLECTION,
            {},
            sort=[("useCount", DESCENDING)],
            limit=limit,
        )
        return [Tag.from_document(d) for d in docs]

    async def get_saved_tags_by_user(self, user_id: str) -> list[SavedTag]:
        """Presence records for a user, newest first."""
        docs = await self.store.find(
            SAVED_TAGS_COLLECTION,
            {"userId": user_id},
            sort=[("savedAt", DESCENDING)],
        )
        return [SavedTag.from_document(d) for d in docs]
