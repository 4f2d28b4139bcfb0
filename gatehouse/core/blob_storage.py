"""Blob storage client (Vercel Blob HTTP API).

Thin async wrapper used by the avatar pipeline: ``put`` uploads bytes under
a pathname with a random suffix and returns the public URL; ``delete``
removes blobs by URL. One shared client per process, like the database
engine.
"""

import logging

import httpx

from gatehouse.core.config import settings
from gatehouse.core.errors import InternalError

logger = logging.getLogger(__name__)

_API_VERSION = "7"
_BLOB_TIMEOUT = 30.0


class BlobStorageError(InternalError):
    """Blob store rejected or failed a request (500)."""

    def __init__(self, message: str = "Blob storage request failed") -> None:
        super().__init__(message=message)


class BlobStore:
    """Vercel Blob client.

    Args:
        token: Read/write token.
        api_url: API base URL.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        token: str,
        api_url: str = "https://blob.vercel-storage.com",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "x-api-version": _API_VERSION,
            },
            timeout=_BLOB_TIMEOUT,
            transport=transport,
        )

    async def put(
        self,
        pathname: str,
        data: bytes,
        *,
        content_type: str,
        add_random_suffix: bool = True,
    ) -> str:
        """Upload a public blob.

        Args:
            pathname: Blob name (e.g. "avatar.webp").
            data: Blob content.
            content_type: MIME type served with the blob.
            add_random_suffix: Append a random suffix to avoid collisions.

        Returns:
            Public URL of the stored blob.

        Raises:
            BlobStorageError: On transport errors or a non-2xx response.
        """
        headers = {"x-content-type": content_type}
        if add_random_suffix:
            headers["x-add-random-suffix"] = "1"
        try:
            resp = await self._client.put(
                f"/{pathname.lstrip('/')}", content=data, headers=headers
            )
            resp.raise_for_status()
            url: str = resp.json()["url"]
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.error(
                "Blob upload failed",
                extra={"pathname": pathname, "error": type(exc).__name__},
            )
            raise BlobStorageError("Failed to upload image to blob storage") from exc
        return url

    async def delete(self, *urls: str) -> None:
        """Delete blobs by URL.

        Raises:
            BlobStorageError: On transport errors or a non-2xx response.
        """
        if not urls:
            return
        try:
            resp = await self._client.post("/delete", json={"urls": list(urls)})
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise BlobStorageError("Failed to delete blob") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


def is_managed_blob_url(url: str | None) -> bool:
    """True if ``url`` points into this deployment's blob namespace."""
    if not url:
        return False
    return settings.blob_domain in url


_blob_store: BlobStore | None = None


def get_blob_store() -> BlobStore:
    """Return the process-wide blob store, creating it on first call."""
    global _blob_store
    if _blob_store is None:
        _blob_store = BlobStore(
            token=settings.blob_read_write_token.get_secret_value(),
            api_url=settings.blob_api_url,
        )
    return _blob_store


async def close_blob_store() -> None:
    """Close the shared client (application shutdown, tests)."""
    global _blob_store
    if _blob_store is not None:
        await _blob_store.aclose()
    _blob_store = None
