"""Error types shared by the SnapShot services.

Store and vendor failures are raised as typed exceptions and propagate to
the immediate caller. Nothing in the services retries automatically.

Hierarchy:
    SnapshotError
    ├── NotFoundError
    │   ├── TagNotFoundError
    │   └── UserNotFoundError
    ├── StoreError            (document store call failed, carries cause)
    ├── NotAuthenticatedError (operation requires a signed-in identity)
    ├── IdentityError         (identity provider rejected the request)
    └── BlobStoreError        (profile image upload failed)
"""

from typing import Optional


class SnapshotError(Exception):
    """Base class for all service errors."""


class NotFoundError(SnapshotError):
    """A referenced document does not exist."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


class TagNotFoundError(NotFoundError):
    def __init__(self, tag_id: str):
        super().__init__("tags", tag_id)
        self.tag_id = tag_id


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: str):
        super().__init__("users", user_id)
        self.user_id = user_id


class StoreError(SnapshotError):
    """A document store operation failed.

    Attributes:
        operation: Adapter operation that failed (e.g. "increment")
        cause: The underlying driver exception
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"Document store {operation} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class NotAuthenticatedError(SnapshotError):
    """No identity is signed in."""


class IdentityError(SnapshotError):
    """The identity provider rejected a sign-in, sign-up or token lookup."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


class BlobStoreError(SnapshotError):
    """An upload to the blob store failed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Upload of {path} failed: {reason}")
