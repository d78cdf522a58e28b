"""
Tests for the HTTP identity provider and blob store clients.
"""
import json

import httpx
import pytest

from snapshot_api.services.blob_store import HttpBlobStore
from snapshot_api.services.errors import BlobStoreError, IdentityError
from snapshot_api.services.identity import HttpIdentityProvider, RequestIdentity
from snapshot_api.services.models import Identity


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def provider():
    return HttpIdentityProvider(api_key="test-key", api_url="https://identity.example.com/v1")


class TestHttpIdentityProvider:
    """Tests for sign-up, sign-in and lookup."""

    @pytest.mark.asyncio
    async def test_sign_in_sets_current_user(self, provider):
        """Test a successful sign-in becomes the current user."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={
                "localId": "u1",
                "email": "jane@example.com",
                "idToken": "token-u1",
            })

        provider._client = _client(handler)

        identity = await provider.sign_in("jane@example.com", "secret")

        assert identity == Identity("u1", "jane@example.com", "token-u1")
        assert provider.current_user == identity
        assert seen[0].url.path == "/v1/accounts:signInWithPassword"
        assert seen[0].url.params["key"] == "test-key"
        assert json.loads(seen[0].content)["email"] == "jane@example.com"

    @pytest.mark.asyncio
    async def test_sign_in_without_remember(self, provider):
        """Test remember=False leaves current_user untouched."""
        provider._client = _client(lambda request: httpx.Response(
            200, json={"localId": "u1", "email": "jane@example.com", "idToken": "t"},
        ))

        await provider.sign_in("jane@example.com", "secret", remember=False)

        assert provider.current_user is None

    @pytest.mark.asyncio
    async def test_sign_out_clears_current_user(self, provider):
        provider._client = _client(lambda request: httpx.Response(
            200, json={"localId": "u2", "email": "kim@example.com", "idToken": "t"},
        ))

        await provider.sign_up("kim@example.com", "secret")
        provider.sign_out()

        assert provider.current_user is None

    @pytest.mark.asyncio
    async def test_rejection_carries_provider_code(self, provider):
        provider._client = _client(lambda request: httpx.Response(
            400, json={"error": {"code": 400, "message": "EMAIL_EXISTS"}},
        ))

        with pytest.raises(IdentityError) as exc_info:
            await provider.sign_up("jane@example.com", "secret")

        assert exc_info.value.code == "EMAIL_EXISTS"
        assert provider.current_user is None

    @pytest.mark.asyncio
    async def test_rejection_without_json_body(self, provider):
        provider._client = _client(lambda request: httpx.Response(502, text="bad gateway"))

        with pytest.raises(IdentityError) as exc_info:
            await provider.sign_in("jane@example.com", "secret")

        assert exc_info.value.code == "HTTP_502"

    @pytest.mark.asyncio
    async def test_network_error_becomes_identity_error(self, provider):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider._client = _client(handler)

        with pytest.raises(IdentityError):
            await provider.lookup("token-u1")

    @pytest.mark.asyncio
    async def test_lookup_resolves_token(self, provider):
        provider._client = _client(lambda request: httpx.Response(
            200, json={"users": [{"localId": "u1", "email": "jane@example.com"}]},
        ))

        identity = await provider.lookup("token-u1")

        assert identity.uid == "u1"
        assert identity.id_token == "token-u1"
        assert provider.current_user is None

    @pytest.mark.asyncio
    async def test_lookup_unknown_token(self, provider):
        provider._client = _client(lambda request: httpx.Response(200, json={"users": []}))

        with pytest.raises(IdentityError) as exc_info:
            await provider.lookup("stale")

        assert exc_info.value.code == "USER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_not_connected_raises_error(self, provider):
        with pytest.raises(RuntimeError, match="Not connected"):
            await provider.sign_in("jane@example.com", "secret")

    def test_request_identity(self):
        identity = Identity("u1", "jane@example.com")

        assert RequestIdentity(identity).current_user is identity
        assert RequestIdentity().current_user is None


class TestHttpBlobStore:
    """Tests for profile image uploads."""

    @pytest.fixture
    def blobs(self):
        return HttpBlobStore(bucket="snap.appspot.com", api_url="https://blobs.example.com/v0")

    @pytest.mark.asyncio
    async def test_upload_returns_download_url(self, blobs):
        """Test the download URL is built from the returned token."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"name": "profile_images/u1.jpg", "downloadTokens": "abc,def"})

        blobs._client = _client(handler)

        result = await blobs.upload("profile_images/u1.jpg", b"\xff\xd8jpeg")

        assert result.path == "profile_images/u1.jpg"
        assert result.download_url == (
            "https://blobs.example.com/v0/b/snap.appspot.com/o/"
            "profile_images%2Fu1.jpg?alt=media&token=abc"
        )
        assert seen[0].url.params["name"] == "profile_images/u1.jpg"
        assert seen[0].headers["Content-Type"] == "image/jpeg"
        assert seen[0].content == b"\xff\xd8jpeg"

    @pytest.mark.asyncio
    async def test_upload_http_error(self, blobs):
        blobs._client = _client(lambda request: httpx.Response(403, text="forbidden"))

        with pytest.raises(BlobStoreError) as exc_info:
            await blobs.upload("profile_images/u1.jpg", b"data")

        assert exc_info.value.reason == "HTTP 403"

    @pytest.mark.asyncio
    async def test_upload_non_json_body(self, blobs):
        """Test a 200 with an unparseable body is an upload failure."""
        blobs._client = _client(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(BlobStoreError) as exc_info:
            await blobs.upload("profile_images/u1.jpg", b"data")

        assert exc_info.value.reason == "malformed upload response"

    @pytest.mark.asyncio
    async def test_upload_without_token(self, blobs):
        blobs._client = _client(lambda request: httpx.Response(200, json={"name": "x"}))

        with pytest.raises(BlobStoreError, match="no download token"):
            await blobs.upload("profile_images/u1.jpg", b"data")

    @pytest.mark.asyncio
    async def test_auth_header_sent_when_configured(self):
        blobs = HttpBlobStore(bucket="b", api_url="https://blobs.example.com/v0", auth_token="secret")
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"downloadTokens": "abc"})

        blobs._client = _client(handler)

        await blobs.upload("p.jpg", b"data")

        assert seen[0].headers["Authorization"] == "Bearer secret"
