"""Blob store client for profile images.

Uploads go through the Firebase Storage REST API. The download URL is
built from the object path and the download token returned by the upload.

API endpoints used:
- POST {api_url}/b/{bucket}/o?name={path}  - Upload object bytes
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx

from .errors import BlobStoreError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://firebasestorage.googleapis.com/v0"


@dataclass(frozen=True)
class UploadResult:
    path: str
    download_url: str


class HttpBlobStore:
    """Uploads bytes to a storage bucket over HTTP.

    Usage:
        blobs = HttpBlobStore(bucket="my-app.appspot.com")
        blobs.connect()
        result = await blobs.upload("profile_images/u1.jpg", data)
        result.download_url
    """

    def __init__(
        self,
        bucket: str,
        api_url: str = DEFAULT_API_URL,
        auth_token: str = "",
        timeout: float = 30.0,
    ):
        self.bucket = bucket
        self.api_url = api_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    def connect(self) -> None:
        """Initialize HTTP client."""
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": "SnapShot-API/1.0"},
        )
        logger.info(f"Blob store client initialized for bucket {self.bucket}")

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_headers(self, content_type: str) -> dict[str, str]:
        headers = {"Content-Type": content_type}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    def download_url(self, path: str, token: str) -> str:
        encoded = quote(path, safe="")
        return f"{self.api_url}/b/{self.bucket}/o/{encoded}?alt=media&token={token}"

    async def upload(self, path: str, data: bytes, content_type: str = "image/jpeg") -> UploadResult:
        """Upload bytes to ``path``.

        Raises:
            BlobStoreError: If the upload fails or returns no download token
        """
        if not self._client:
            raise RuntimeError("Not connected - call connect() first")

        url = f"{self.api_url}/b/{self.bucket}/o"
        try:
            response = await self._client.post(
                url,
                params={"name": path},
                content=data,
                headers=self._get_headers(content_type),
            )
        except httpx.RequestError as e:
            logger.error(f"HTTP error uploading {path}: {e}")
            raise BlobStoreError(path, str(e)) from e

        if response.status_code != 200:
            logger.error(f"Failed to upload {path}: {response.status_code} - {response.text}")
            raise BlobStoreError(path, f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            logger.error(f"Upload of {path} returned a non-JSON body: {response.text[:200]}")
            raise BlobStoreError(path, "malformed upload response") from e
        if not isinstance(body, dict):
            raise BlobStoreError(path, "malformed upload response")

        # several tokens may be returned comma-separated; any one of them works
        token = (body.get("downloadTokens") or "").split(",")[0]
        if not token:
            raise BlobStoreError(path, "no download token in upload response")

        logger.info(f"Uploaded {len(data)} bytes to {path}")
        return UploadResult(path=path, download_url=self.download_url(path, token))
