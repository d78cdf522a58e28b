"""
Tests for push token registration and inbound push handling.
"""
import pytest

from snapshot_api.services.token_registrar import (
    LocalNotification,
    NotificationTokenRegistrar,
    PushMessage,
    PushMessageHandler,
    TokenRegistration,
)


class TestRegisterToken:
    """Tests for NotificationTokenRegistrar."""

    @pytest.mark.asyncio
    async def test_signed_out_is_skipped(self, seeded_store, signed_out):
        """Test registering while signed out writes nothing."""
        registrar = NotificationTokenRegistrar(seeded_store, signed_out)

        result = await registrar.register_token("tok-1")

        assert result == TokenRegistration.SKIPPED
        assert seeded_store.writes == []

    @pytest.mark.asyncio
    async def test_signed_in_stores_token(self, seeded_store, signed_in):
        registrar = NotificationTokenRegistrar(seeded_store, signed_in)

        result = await registrar.register_token("tok-1")

        assert result == TokenRegistration.REGISTERED
        doc = await seeded_store.get("users", "u1")
        assert doc["fcmToken"] == "tok-1"
        assert doc["username"] == "jane"

    @pytest.mark.asyncio
    async def test_last_token_wins(self, seeded_store, signed_in):
        """Test a refreshed token overwrites the previous one."""
        registrar = NotificationTokenRegistrar(seeded_store, signed_in)

        await registrar.register_token("tok-1")
        await registrar.register_token("tok-2")

        assert (await seeded_store.get("users", "u1"))["fcmToken"] == "tok-2"

    @pytest.mark.asyncio
    async def test_empty_token_rejected(self, seeded_store, signed_in):
        registrar = NotificationTokenRegistrar(seeded_store, signed_in)

        with pytest.raises(ValueError):
            await registrar.register_token("")


class TestPushMessageHandler:
    """Tests for PushMessageHandler."""

    @pytest.fixture
    def handler(self, seeded_store, signed_in):
        return PushMessageHandler(NotificationTokenRegistrar(seeded_store, signed_in))

    @pytest.mark.asyncio
    async def test_new_token_is_registered(self, handler, seeded_store):
        assert await handler.on_new_token("tok-9") == TokenRegistration.REGISTERED
        assert (await seeded_store.get("users", "u1"))["fcmToken"] == "tok-9"

    def test_data_payload_wins(self, handler):
        """Test title and body from the data payload take precedence."""
        message = PushMessage(
            title="notification title",
            body="notification body",
            data={"title": "data title", "body": "data body"},
        )

        assert handler.on_message_received(message) == LocalNotification("data title", "data body")

    def test_notification_payload_fallback(self, handler):
        message = PushMessage(title="New follower", body="kim saved your tag")

        assert handler.on_message_received(message) == LocalNotification("New follower", "kim saved your tag")

    def test_data_without_display_fields_falls_back(self, handler):
        message = PushMessage(title="hello", data={"tagId": "t1"})

        assert handler.on_message_received(message) == LocalNotification("hello", "")

    def test_empty_message_shows_nothing(self, handler):
        assert handler.on_message_received(PushMessage(sender="server")) is None
