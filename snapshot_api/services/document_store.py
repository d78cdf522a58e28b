"""Document store adapter backed by MongoDB.

Every operation is atomic at single-document granularity. Multi-document
atomicity is only available through ``run_transaction``, which requires a
replica set or sharded cluster.

Operations map onto MongoDB as follows:
    get               -> find_one({"_id": id})
    set (merge)       -> update_one({"_id": id}, {"$set": fields}, upsert=True)
    set (replace)     -> replace_one({"_id": id}, fields, upsert=True)
    update            -> update_one({"_id": id}, {"$set": fields})
    increment         -> update_one({"_id": id}, {"$inc": {field: delta}})
    create_if_absent  -> update_one({"_id": id}, {"$setOnInsert": fields}, upsert=True)
    delete            -> delete_one({"_id": id})

Driver failures are re-raised as StoreError with the driver exception as
``cause``. Nothing here retries.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from .errors import StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Document = dict[str, Any]
SortSpec = list[tuple[str, int]]


class DocumentStore(Protocol):
    """Protocol for document stores (MongoDB or test doubles)."""

    async def get(self, collection: str, doc_id: str, session: Any = None) -> Optional[Document]: ...

    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Document,
        merge: bool = True,
        session: Any = None,
    ) -> None: ...

    async def update(self, collection: str, doc_id: str, fields: Document, session: Any = None) -> bool: ...

    async def increment(
        self,
        collection: str,
        doc_id: str,
        field: str,
        delta: int = 1,
        session: Any = None,
    ) -> bool: ...

    async def create_if_absent(
        self,
        collection: str,
        doc_id: str,
        fields: Document,
        session: Any = None,
    ) -> bool: ...

    async def delete(self, collection: str, doc_id: str, session: Any = None) -> bool: ...

    async def find(
        self,
        collection: str,
        query: Document,
        sort: Optional[SortSpec] = None,
        limit: int = 0,
        session: Any = None,
    ) -> list[Document]: ...

    async def run_transaction(self, callback: Callable[[Any], Awaitable[T]]) -> T: ...


class MongoDocumentStore:
    """DocumentStore implementation using the async PyMongo client.

    Usage:
        store = MongoDocumentStore("mongodb://...", "snapshot")
        store.connect()

        await store.set("users", "u1", {"email": "a@b.c"})
        doc = await store.get("users", "u1")

        await store.close()
    """

    def __init__(self, connection_string: str, database: str = "snapshot"):
        """Initialize the store.

        Args:
            connection_string: MongoDB connection URL
            database: Database name
        """
        self.connection_string = connection_string
        self.database_name = database
        self._client: Optional[AsyncMongoClient] = None
        self._db = None

    def connect(self) -> None:
        """Create the MongoDB client. Connections are opened lazily by the driver."""
        self._client = AsyncMongoClient(self.connection_string)
        self._db = self._client[self.database_name]
        logger.info(f"Connected to MongoDB database: {self.database_name}")

    async def close(self) -> None:
        """Close the MongoDB client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._db = None

    def _collection(self, name: str):
        if self._db is None:
            raise RuntimeError("Not connected to MongoDB - call connect() first")
        return self._db[name]

    async def get(self, collection: str, doc_id: str, session: Any = None) -> Optional[Document]:
        """Fetch a document by id.

        Returns:
            The document, or None if it does not exist
        """
        coll = self._collection(collection)
        try:
            return await coll.find_one({"_id": doc_id}, session=session)
        except PyMongoError as e:
            raise StoreError("get", e) from e

    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Document,
        merge: bool = True,
        session: Any = None,
    ) -> None:
        """Write a document.

        With ``merge=True`` only the given fields are updated and all others
        are left untouched. With ``merge=False`` the document is replaced.
        The document is created if missing in both modes.
        """
        coll = self._collection(collection)
        try:
            if merge:
                await coll.update_one(
                    {"_id": doc_id},
                    {"$set": fields},
                    upsert=True,
                    session=session,
                )
            else:
                await coll.replace_one(
                    {"_id": doc_id},
                    fields,
                    upsert=True,
                    session=session,
                )
        except PyMongoError as e:
            raise StoreError("set", e) from e

        logger.debug(f"Wrote {collection}/{doc_id} (merge={merge})")

    async def update(self, collection: str, doc_id: str, fields: Document, session: Any = None) -> bool:
        """Set fields on an existing document. Never creates one.

        Returns:
            True if the document exists, False otherwise
        """
        coll = self._collection(collection)
        try:
            result = await coll.update_one(
                {"_id": doc_id},
                {"$set": fields},
                upsert=False,
                session=session,
            )
        except PyMongoError as e:
            raise StoreError("update", e) from e

        return result.matched_count > 0

    async def increment(
        self,
        collection: str,
        doc_id: str,
        field: str,
        delta: int = 1,
        session: Any = None,
    ) -> bool:
        """Atomically add ``delta`` to a numeric field.

        A negative delta is only applied while the field stays >= 0.

        Returns:
            True if the document matched, False if it does not exist
            (or, for a negative delta, the counter is already too low)
        """
        coll = self._collection(collection)
        query: Document = {"_id": doc_id}
        if delta < 0:
            query[field] = {"$gte": -delta}

        try:
            result = await coll.update_one(
                query,
                {"$inc": {field: delta}},
                upsert=False,
                session=session,
            )
        except PyMongoError as e:
            raise StoreError("increment", e) from e

        return result.matched_count > 0

    async def create_if_absent(
        self,
        collection: str,
        doc_id: str,
        fields: Document,
        session: Any = None,
    ) -> bool:
        """Insert a document only if no document with this id exists.

        Returns:
            True if the document was created by this call
        """
        coll = self._collection(collection)
        try:
            result = await coll.update_one(
                {"_id": doc_id},
                {"$setOnInsert": fields},
                upsert=True,
                session=session,
            )
        except PyMongoError as e:
            raise StoreError("create_if_absent", e) from e

        return result.upserted_id is not None

    async def delete(self, collection: str, doc_id: str, session: Any = None) -> bool:
        """Delete a document. Deleting a missing document is a no-op.

        Returns:
            True if a document was removed
        """
        coll = self._collection(collection)
        try:
            result = await coll.delete_one({"_id": doc_id}, session=session)
        except PyMongoError as e:
            raise StoreError("delete", e) from e

        return result.deleted_count > 0

    async def find(
        self,
        collection: str,
        query: Document,
        sort: Optional[SortSpec] = None,
        limit: int = 0,
        session: Any = None,
    ) -> list[Document]:
        """Query a collection.

        Args:
            collection: Collection name
            query: MongoDB filter document
            sort: Optional list of (field, direction) pairs
            limit: Maximum number of results (0 = no limit)

        Returns:
            Matching documents
        """
        coll = self._collection(collection)
        try:
            cursor = coll.find(query, session=session)
            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(length=None)
        except PyMongoError as e:
            raise StoreError("find", e) from e

    async def run_transaction(self, callback: Callable[[Any], Awaitable[T]]) -> T:
        """Run ``callback(session)`` inside a multi-document transaction.

        The driver commits when the callback returns and aborts when it
        raises. Exceptions raised by the callback propagate unchanged.
        """
        if self._client is None:
            raise RuntimeError("Not connected to MongoDB - call connect() first")

        try:
            async with self._client.start_session() as session:
                return await session.with_transaction(callback)
        except PyMongoError as e:
            raise StoreError("transaction", e) from e
