"""Push-messaging token registration and inbound push handling.

The current token is the ``fcmToken`` field of ``users/{userId}``. A new
token simply overwrites the old one; nothing invalidates previous tokens.
Registering while nobody is signed in is skipped rather than failed,
because a token cannot be attached to nobody.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .document_store import DocumentStore
from .identity import IdentitySource
from .models import USERS_COLLECTION

logger = logging.getLogger(__name__)


class TokenRegistration(str, Enum):
    REGISTERED = "registered"
    SKIPPED = "skipped"


class NotificationTokenRegistrar:
    """Stores the push token of the signed-in user."""

    def __init__(self, store: DocumentStore, identity: IdentitySource):
        self.store = store
        self.identity = identity

    async def register_token(self, token: str) -> TokenRegistration:
        """Attach ``token`` to the current user's document.

        Returns:
            SKIPPED if nobody is signed in (nothing is written),
            REGISTERED otherwise

        Raises:
            ValueError: If token is empty
            StoreError: If the write fails
        """
        if not token:
            raise ValueError("token must not be empty")

        identity = self.identity.current_user
        if identity is None:
            logger.info("No signed-in user, skipping push token registration")
            return TokenRegistration.SKIPPED

        await self.store.set(USERS_COLLECTION, identity.uid, {"fcmToken": token})
        logger.info(f"Registered push token for {identity.uid}")
        return TokenRegistration.REGISTERED


@dataclass
class PushMessage:
    """Inbound push message as delivered by the messaging provider."""
    title: Optional[str] = None
    body: Optional[str] = None
    data: dict[str, str] = field(default_factory=dict)
    sender: Optional[str] = None


@dataclass(frozen=True)
class LocalNotification:
    """What should be shown to the user for a push message."""
    title: str
    body: str


class PushMessageHandler:
    """Reacts to messaging-provider callbacks.

    Rendering the notification is left to the caller.
    """

    def __init__(self, registrar: NotificationTokenRegistrar):
        self.registrar = registrar

    async def on_new_token(self, token: str) -> TokenRegistration:
        logger.debug("Push token refreshed")
        return await self.registrar.register_token(token)

    def on_message_received(self, message: PushMessage) -> Optional[LocalNotification]:
        """Pick the title and body to display.

        A data payload wins over the notification payload. Messages with
        neither produce nothing.
        """
        logger.debug(f"Push message from {message.sender}")

        if message.data:
            title = message.data.get("title")
            body = message.data.get("body")
            if title or body:
                return LocalNotification(title=title or "", body=body or "")

        if message.title or message.body:
            return LocalNotification(title=message.title or "", body=message.body or "")

        return None
