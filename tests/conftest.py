"""
Shared fixtures and test doubles for service and API tests.
"""
import asyncio
import copy
import re
from collections import defaultdict
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

from snapshot_api.config import UnsavePolicy
from snapshot_api.services.blob_store import UploadResult
from snapshot_api.services.errors import IdentityError
from snapshot_api.services.identity import RequestIdentity
from snapshot_api.services.models import Identity
from snapshot_api.services.tag_repository import TagRepository


class InMemoryDocumentStore:
    """DocumentStore double keeping documents in dicts.

    Transactions are serialized and rolled back when the callback raises.
    ``writes`` records every mutating call as (operation, collection, id).
    """

    def __init__(self):
        self.collections: dict[str, dict[str, dict]] = defaultdict(dict)
        self.writes: list[tuple[str, str, str]] = []
        self.transactions = 0
        self._lock: Optional[asyncio.Lock] = None

    def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    def put(self, collection: str, doc_id: str, fields: dict) -> None:
        """Insert a document directly, bypassing ``writes``."""
        self.collections[collection][doc_id] = {"_id": doc_id, **fields}

    async def get(self, collection, doc_id, session=None):
        doc = self.collections[collection].get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, collection, doc_id, fields, merge=True, session=None):
        self.writes.append(("set", collection, doc_id))
        existing = self.collections[collection].get(doc_id)
        if merge and existing is not None:
            existing.update(copy.deepcopy(fields))
        else:
            self.collections[collection][doc_id] = {"_id": doc_id, **copy.deepcopy(fields)}

    async def update(self, collection, doc_id, fields, session=None):
        doc = self.collections[collection].get(doc_id)
        if doc is None:
            return False
        self.writes.append(("update", collection, doc_id))
        doc.update(copy.deepcopy(fields))
        return True

    async def increment(self, collection, doc_id, field, delta=1, session=None):
        doc = self.collections[collection].get(doc_id)
        if doc is None:
            return False
        if delta < 0 and doc.get(field, 0) < -delta:
            return False
        self.writes.append(("increment", collection, doc_id))
        doc[field] = doc.get(field, 0) + delta
        return True

    async def create_if_absent(self, collection, doc_id, fields, session=None):
        if doc_id in self.collections[collection]:
            return False
        self.writes.append(("create", collection, doc_id))
        self.collections[collection][doc_id] = {"_id": doc_id, **copy.deepcopy(fields)}
        return True

    async def delete(self, collection, doc_id, session=None):
        removed = self.collections[collection].pop(doc_id, None)
        if removed is None:
            return False
        self.writes.append(("delete", collection, doc_id))
        return True

    async def find(self, collection, query, sort=None, limit=0, session=None):
        docs = [d for d in self.collections[collection].values() if _matches(d, query)]
        for key, direction in reversed(sort or []):
            docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        if limit:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    async def run_transaction(self, callback):
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            self.transactions += 1
            snapshot = copy.deepcopy(self.collections)
            writes = list(self.writes)
            try:
                return await callback("session")
            except BaseException:
                self.collections = snapshot
                self.writes = writes
                raise


def _matches(doc: dict, query: dict[str, Any]) -> bool:
    for key, expected in query.items():
        value = doc.get(key)
        if isinstance(expected, dict) and "$regex" in expected:
            if not isinstance(value, str) or not re.match(expected["$regex"], value):
                return False
        elif value != expected:
            return False
    return True


@pytest.fixture
def store():
    """Empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def seeded_store(store):
    """Store with a small tag catalog and one user profile."""
    store.put("tags", "t1", {"tagId": "t1", "name": "seoul tower", "tagType": "location", "useCount": 5})
    store.put("tags", "t2", {"tagId": "t2", "name": "sneakers", "tagType": "product", "useCount": 12})
    store.put("tags", "t3", {"tagId": "t3", "name": "seoul forest", "tagType": "location", "useCount": 0})
    store.put("users", "u1", {
        "userId": "u1",
        "username": "jane",
        "email": "jane@example.com",
        "profilePicUrl": "",
        "bio": "",
    })
    return store


@pytest.fixture
def tag_repo(seeded_store):
    """Tag repository with the default (keep) unsave policy."""
    return TagRepository(seeded_store)


@pytest.fixture
def decrementing_tag_repo(seeded_store):
    """Tag repository that decrements useCount on unsave."""
    return TagRepository(seeded_store, unsave_policy=UnsavePolicy.DECREMENT)


@pytest.fixture
def sample_identity():
    return Identity(uid="u1", email="jane@example.com", id_token="token-u1")


@pytest.fixture
def signed_in(sample_identity):
    """Identity source with u1 signed in."""
    return RequestIdentity(sample_identity)


@pytest.fixture
def signed_out():
    """Identity source with nobody signed in."""
    return RequestIdentity()


@pytest.fixture
def mock_blob_store():
    """Blob store that accepts every upload."""
    blobs = Mock()
    blobs.upload = AsyncMock(side_effect=lambda path, data, content_type="image/jpeg": UploadResult(
        path=path,
        download_url=f"https://blobs.example.com/{path}?token=abc",
    ))
    return blobs


@pytest.fixture
def mock_identity_provider(sample_identity):
    """Identity provider double that knows one token, 'token-u1'."""
    provider = MagicMock()
    provider.connect = Mock()
    provider.close = AsyncMock()

    async def lookup(id_token):
        if id_token == sample_identity.id_token:
            return sample_identity
        raise IdentityError("Identity provider rejected lookup", code="INVALID_ID_TOKEN")

    provider.lookup = AsyncMock(side_effect=lookup)
    provider.sign_in = AsyncMock(return_value=sample_identity)
    provider.sign_up = AsyncMock(return_value=sample_identity)
    return provider
