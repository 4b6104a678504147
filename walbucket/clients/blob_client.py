"""HTTP client for the Walrus blob store."""

import uuid
from typing import Optional

import httpx

from common.constants import (
    BLOB_TIMEOUT_MAX_SECONDS,
    BLOB_TIMEOUT_STEPS,
    MAX_ABSOLUTE_BLOB_SIZE,
    MAX_SINGLE_BLOB_SIZE,
)
from common.logging_config import get_logger
from walbucket.config import WalbucketConfig
from walbucket.exceptions import NetworkError
from walbucket.utils import strip_hex_prefix

logger = get_logger(__name__)

# Status codes DELETE may return for blobs that are immutable or already gone
DELETE_TOLERATED_STATUSES = (404, 405)


def _size_mb(size: int) -> str:
    return f"{size / (1024 * 1024):.2f}"


class BlobClient:
    """
    Client for the blob store's publisher (writes) and aggregator (reads).

    Nothing is retried here; failures surface as NetworkError with the HTTP
    status when one is available.
    """

    def __init__(
        self,
        config: WalbucketConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize blob client.

        Args:
            config: SDK configuration
            transport: Optional httpx transport shared by both endpoints
        """
        self.config = config
        self.publisher = httpx.AsyncClient(
            base_url=config.walrus_publisher_url,
            timeout=BLOB_TIMEOUT_MAX_SECONDS,
            transport=transport,
        )
        self.aggregator = httpx.AsyncClient(
            base_url=config.walrus_aggregator_url,
            timeout=BLOB_TIMEOUT_MAX_SECONDS,
            transport=transport,
            headers={'Accept': 'application/octet-stream'},
        )
        logger.info(
            f"Initialized BlobClient [publisher={config.walrus_publisher_url}, "
            f"aggregator={config.walrus_aggregator_url}]"
        )

    async def close(self) -> None:
        await self.publisher.aclose()
        await self.aggregator.aclose()

    @staticmethod
    def calculate_timeout(size: int) -> float:
        """
        Calculate request timeout for a payload.

        Args:
            size: Payload size in bytes

        Returns:
            Timeout in seconds, stepped from 30s (< 1 MiB) to 900s (>= 100 MiB)
        """
        for upper_bound, timeout in BLOB_TIMEOUT_STEPS:
            if size < upper_bound:
                return timeout
        return BLOB_TIMEOUT_MAX_SECONDS

    @staticmethod
    def validate_size(size: int) -> None:
        """
        Raises:
            NetworkError: With status 413 if the payload is over the single-blob limit
        """
        if size > MAX_ABSOLUTE_BLOB_SIZE:
            raise NetworkError(
                f"File size ({size / (1024 ** 3):.2f} GB) exceeds the maximum blob size (13.3 GB). "
                f"Files this large must be split into multiple blobs.",
                status_code=413,
            )
        if size > MAX_SINGLE_BLOB_SIZE:
            raise NetworkError(
                f"File size ({_size_mb(size)} MB) exceeds maximum single blob size "
                f"({MAX_SINGLE_BLOB_SIZE // (1024 * 1024)} MB). Upload smaller files.",
                status_code=413,
            )

    def file_url(self, blob_id: str) -> str:
        """Public aggregator URL for a blob."""
        return f"{self.config.walrus_aggregator_url}/v1/blobs/{blob_id}"

    async def upload(self, data: bytes) -> str:
        """
        Store bytes as a new blob.

        Args:
            data: Payload

        Returns:
            Blob id, without any 0x prefix

        Raises:
            NetworkError: On oversize payloads, HTTP failures or a response without a blob id
        """
        size = len(data)
        self.validate_size(size)

        request_id = str(uuid.uuid4())
        logger.debug(f"Uploading blob: {_size_mb(size)} MB [request_id={request_id}]")

        try:
            response = await self.publisher.put(
                '/v1/blobs',
                params={'epochs': self.config.storage_epochs},
                content=data,
                headers={'Content-Type': 'application/octet-stream', 'X-Request-ID': request_id},
                timeout=self.calculate_timeout(size),
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"Blob upload failed: {e}", cause=e) from e

        if response.status_code == 413:
            raise NetworkError(
                f"Blob upload rejected by publisher ({_size_mb(size)} MB). "
                f"The publisher may enforce a lower size limit.",
                status_code=413,
            )
        if response.status_code >= 400:
            raise NetworkError(
                f"Blob upload failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise NetworkError('Blob store returned a non-JSON upload response', cause=e) from e

        blob_id = (
            ((body.get('newlyCreated') or {}).get('blobObject') or {}).get('blobId')
            or (body.get('alreadyCertified') or {}).get('blobId')
        )
        if not blob_id:
            raise NetworkError('No blob id returned from blob store', status_code=response.status_code)

        blob_id = strip_hex_prefix(blob_id)
        logger.info(f"Blob stored [blob_id={blob_id}, size={size}]")
        return blob_id

    async def retrieve(self, blob_id: str) -> bytes:
        """
        Fetch blob bytes. Ledger-object-shaped ids (0x...) use the by-object-id route.

        Raises:
            NetworkError: On HTTP failures
        """
        if blob_id.startswith('0x'):
            path = f'/v1/blobs/by-object-id/{blob_id}'
        else:
            path = f'/v1/blobs/{blob_id}'

        try:
            response = await self.aggregator.get(path)
        except httpx.HTTPError as e:
            raise NetworkError(f"Blob retrieve failed: {e}", cause=e) from e

        if response.status_code >= 400:
            raise NetworkError(
                f"Blob retrieve failed with HTTP {response.status_code} [blob_id={blob_id}]",
                status_code=response.status_code,
            )
        return response.content

    async def delete(self, blob_id: str) -> None:
        """
        Delete a blob. 404 and 405 count as success.

        Raises:
            NetworkError: On any other HTTP failure
        """
        try:
            response = await self.publisher.delete(f'/v1/blobs/{blob_id}')
        except httpx.HTTPError as e:
            raise NetworkError(f"Blob delete failed: {e}", cause=e) from e

        if response.status_code in DELETE_TOLERATED_STATUSES:
            logger.debug(f"Blob delete tolerated status {response.status_code} [blob_id={blob_id}]")
            return
        if response.status_code >= 400:
            raise NetworkError(
                f"Blob delete failed with HTTP {response.status_code} [blob_id={blob_id}]",
                status_code=response.status_code,
            )
