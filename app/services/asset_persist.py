"""
Asset Fetch-and-Persist Service
Downloads a provider-hosted asset and stores it under a content-addressed
key, with bounded retries.

Flow per attempt:
1. Stream the download with a timeout and a hard size cap
2. SHA-256 the bytes as they arrive
3. Upload to <namespace>/<sha256><ext>
4. Return the durable reference and digest

Re-persisting identical bytes lands on the same key, so a redelivered
completion or a re-enqueued job finds the object already stored and skips
the upload.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, Tuple
from urllib.parse import urlsplit

import httpx

from app.core.config import Settings, settings as default_settings
from app.services.storage import StorageService
from app.workers.base import WorkerException, RetryPolicy, retry_async

logger = logging.getLogger(__name__)

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "video/mp4": ".mp4",
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Retrying these statuses can succeed
_TRANSIENT_STATUSES = {408, 425, 429}


class AssetError(WorkerException):
    """Base class for fetch/persist failures."""


class FetchError(AssetError):
    """Download failed."""


class TransientFetchError(FetchError):
    """Timeout, connection problem, 5xx or truncated body."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, retryable=True, details=details)


class TerminalFetchError(FetchError):
    """Asset permanently unavailable (4xx, bad URL)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, retryable=False, details={"status_code": status_code})
        self.status_code = status_code


class AssetIntegrityError(AssetError):
    """Oversize asset or digest mismatch."""


class StorageError(AssetError):
    """Upload to durable storage failed."""


class TransientStorageError(StorageError):
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, retryable=True, details=details)


@dataclass(frozen=True)
class PersistedRef:
    """Where an asset was stored and what it hashed to."""
    url: str
    key: str
    digest: str
    size_bytes: int
    content_type: str


def content_addressed_key(namespace: str, digest: str, content_type: str) -> str:
    ext = CONTENT_TYPE_EXTENSIONS.get(content_type, ".bin")
    return f"{namespace.strip('/')}/{digest}{ext}"


def _normalize_content_type(header: Optional[str]) -> str:
    if not header:
        return DEFAULT_CONTENT_TYPE
    return header.split(";", 1)[0].strip().lower() or DEFAULT_CONTENT_TYPE


class AssetPersistService:
    """Fetches remote assets into StorageService."""

    def __init__(
        self,
        storage: StorageService,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or default_settings
        self.storage = storage
        self.http_client = http_client
        self.sleep = sleep
        self.max_bytes = self.settings.ASSET_MAX_BYTES
        self.timeout = self.settings.ASSET_FETCH_TIMEOUT_SECONDS
        self.policy = RetryPolicy.from_settings(self.settings)

    async def persist(
        self,
        source_url: str,
        namespace: str,
        expected_digest: Optional[str] = None,
        on_attempt: Optional[Callable[[int], None]] = None,
        max_attempts: Optional[int] = None,
    ) -> PersistedRef:
        """
        Fetch `source_url` and store it under `namespace`.

        `max_attempts` narrows the configured policy, e.g. to what is left of
        a job's budget after an earlier run died.

        Raises TerminalFetchError / AssetIntegrityError immediately when
        retrying cannot help, and RetriesExhaustedError once the retry
        budget is spent on transient failures.
        """

        async def _attempt(attempt: int) -> PersistedRef:
            return await self._persist_once(source_url, namespace, expected_digest)

        policy = self.policy
        if max_attempts is not None:
            policy = replace(policy, max_attempts=max(1, min(max_attempts, policy.max_attempts)))

        return await retry_async(
            _attempt,
            policy,
            on_attempt=on_attempt,
            sleep=self.sleep,
            label=f"persist {source_url}",
        )

    async def _persist_once(
        self,
        source_url: str,
        namespace: str,
        expected_digest: Optional[str],
    ) -> PersistedRef:
        data, digest, content_type = await self.fetch(source_url)

        if expected_digest and expected_digest.lower() != digest:
            raise AssetIntegrityError(
                f"Digest mismatch for {source_url}: expected {expected_digest}, got {digest}",
                retryable=True,
            )

        key = content_addressed_key(namespace, digest, content_type)
        url = await self._upload(data, key, content_type, digest)

        logger.info(f"[Persist] Stored {len(data)} bytes at {key}")
        return PersistedRef(
            url=url,
            key=key,
            digest=digest,
            size_bytes=len(data),
            content_type=content_type,
        )

    async def fetch(self, source_url: str) -> Tuple[bytes, str, str]:
        """Download `source_url`; returns (bytes, sha256 hex, content type)."""
        if not source_url or urlsplit(source_url).scheme not in ("http", "https"):
            raise TerminalFetchError(f"Invalid asset URL {source_url!r}: only http(s) is fetched")

        client = self.http_client or httpx.AsyncClient()
        owns_client = self.http_client is None

        try:
            async with client.stream(
                "GET", source_url, timeout=self.timeout, follow_redirects=True
            ) as response:
                self._raise_for_status(response, source_url)

                declared = self._declared_length(response)
                if declared is not None and declared > self.max_bytes:
                    raise AssetIntegrityError(
                        f"Asset declares {declared} bytes, limit is {self.max_bytes}",
                        retryable=False,
                        details={"declared_bytes": declared},
                    )

                hasher = hashlib.sha256()
                buffer = bytearray()
                async for chunk in response.aiter_bytes():
                    buffer.extend(chunk)
                    if len(buffer) > self.max_bytes:
                        raise AssetIntegrityError(
                            f"Asset exceeded {self.max_bytes} bytes while streaming",
                            retryable=False,
                        )
                    hasher.update(chunk)

                if declared is not None and len(buffer) != declared:
                    raise TransientFetchError(
                        f"Truncated download: got {len(buffer)} of {declared} bytes"
                    )

                content_type = _normalize_content_type(response.headers.get("content-type"))
                return bytes(buffer), hasher.hexdigest(), content_type

        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            raise TerminalFetchError(f"Invalid asset URL {source_url}: {e}") from e
        except httpx.TimeoutException as e:
            raise TransientFetchError(f"Timed out fetching {source_url}: {e}") from e
        except httpx.TransportError as e:
            raise TransientFetchError(f"Transport error fetching {source_url}: {e}") from e
        except (httpx.DecodingError, httpx.TooManyRedirects) as e:
            # Same URL, same body: retrying cannot help
            raise TerminalFetchError(f"Unusable response from {source_url}: {e}") from e
        except httpx.HTTPError as e:
            raise TransientFetchError(f"Request error fetching {source_url}: {e}") from e
        finally:
            if owns_client:
                await client.aclose()

    def _raise_for_status(self, response: httpx.Response, source_url: str) -> None:
        status = response.status_code
        if status < 400:
            return
        if status >= 500 or status in _TRANSIENT_STATUSES:
            raise TransientFetchError(
                f"Provider returned {status} for {source_url}",
                details={"status_code": status},
            )
        raise TerminalFetchError(f"Asset unavailable ({status}): {source_url}", status_code=status)

    @staticmethod
    def _declared_length(response: httpx.Response) -> Optional[int]:
        # Decoded length differs from Content-Length when the body is compressed
        encoding = response.headers.get("content-encoding", "identity").lower()
        raw = response.headers.get("content-length")
        if raw is None or encoding != "identity":
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    async def _upload(self, data: bytes, key: str, content_type: str, digest: str) -> str:
        try:
            if await self.storage.exists(key):
                # Content-addressed: an object under this key already holds these bytes
                logger.info(f"[Persist] {key} already stored; skipping upload")
                url = self.storage.object_url(key)
            else:
                url = await self.storage.upload_bytes(data, key, content_type)
        except Exception as e:
            raise TransientStorageError(f"Upload of {key} failed: {e}") from e

        if self.settings.VERIFY_UPLOADS:
            try:
                stored = await self.storage.get_file(key)
            except Exception as e:
                raise TransientStorageError(f"Read-back of {key} failed: {e}") from e
            if hashlib.sha256(stored).hexdigest() != digest:
                raise TransientStorageError(f"Stored object {key} does not match digest {digest}")

        return url


__all__ = [
    "AssetError",
    "FetchError",
    "TransientFetchError",
    "TerminalFetchError",
    "AssetIntegrityError",
    "StorageError",
    "TransientStorageError",
    "PersistedRef",
    "AssetPersistService",
    "content_addressed_key",
]
