"""Identity provider client.

Sign-up, sign-in and token lookup go through the Identity Toolkit REST API.
Credentials are never stored here; the provider owns them.

API endpoints used:
- POST {api_url}/accounts:signUp?key=...             - Create an account
- POST {api_url}/accounts:signInWithPassword?key=... - Sign in
- POST {api_url}/accounts:lookup?key=...             - Resolve an id token
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from .errors import IdentityError
from .models import Identity

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://identitytoolkit.googleapis.com/v1"


class IdentitySource(Protocol):
    """Anything that can answer "who is signed in right now"."""

    @property
    def current_user(self) -> Optional[Identity]: ...


@dataclass(frozen=True)
class RequestIdentity:
    """Identity source fixed for the lifetime of one HTTP request."""
    identity: Optional[Identity] = None

    @property
    def current_user(self) -> Optional[Identity]:
        return self.identity


class HttpIdentityProvider:
    """Identity provider client over HTTP.

    Keeps the most recently signed-in identity as ``current_user``, the
    same way a client SDK does.

    Usage:
        provider = HttpIdentityProvider(api_key="...")
        provider.connect()

        identity = await provider.sign_in("a@example.com", "secret")
        provider.current_user   # identity
        provider.sign_out()
        provider.current_user   # None

        await provider.close()
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
    ):
        """Initialize the client.

        Args:
            api_key: Web API key of the identity project
            api_url: Base URL of the Identity Toolkit API
            timeout: HTTP request timeout in seconds
        """
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None
        self._current: Optional[Identity] = None

    def connect(self) -> None:
        """Initialize HTTP client."""
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers={
                "User-Agent": "SnapShot-API/1.0",
                "Accept": "application/json",
            },
        )
        logger.info(f"Identity provider client initialized for {self.api_url}")

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def current_user(self) -> Optional[Identity]:
        return self._current

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self._client:
            raise RuntimeError("Not connected - call connect() first")

        url = f"{self.api_url}/accounts:{endpoint}"
        try:
            response = await self._client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.RequestError as e:
            logger.error(f"HTTP error calling identity provider {endpoint}: {e}")
            raise IdentityError(f"Identity provider unreachable: {e}") from e

        if response.status_code != 200:
            code = _error_code(response)
            logger.warning(f"Identity provider {endpoint} rejected request: {code}")
            raise IdentityError(f"Identity provider rejected {endpoint}", code=code)

        return response.json()

    async def sign_up(self, email: str, password: str, remember: bool = True) -> Identity:
        """Create an account.

        With ``remember`` the new identity becomes ``current_user``. Server
        code that handles many users passes remember=False.
        """
        data = await self._post(
            "signUp",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        identity = _identity_from(data)
        if remember:
            self._current = identity
        logger.info(f"Signed up user {identity.uid}")
        return identity

    async def sign_in(self, email: str, password: str, remember: bool = True) -> Identity:
        """Sign in with email and password."""
        data = await self._post(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        identity = _identity_from(data)
        if remember:
            self._current = identity
        logger.info(f"Signed in user {identity.uid}")
        return identity

    def sign_out(self) -> None:
        self._current = None

    async def lookup(self, id_token: str) -> Identity:
        """Resolve an id token to the identity it was issued for.

        Does not change ``current_user``.
        """
        data = await self._post("lookup", {"idToken": id_token})
        users = data.get("users") or []
        if not users:
            raise IdentityError("Token does not belong to any user", code="USER_NOT_FOUND")

        user = users[0]
        return Identity(uid=user["localId"], email=user.get("email", ""), id_token=id_token)


def _identity_from(data: dict[str, Any]) -> Identity:
    return Identity(
        uid=data["localId"],
        email=data.get("email", ""),
        id_token=data.get("idToken"),
    )


def _error_code(response: httpx.Response) -> str:
    """Extract the provider's error code, e.g. EMAIL_EXISTS."""
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return f"HTTP_{response.status_code}"
