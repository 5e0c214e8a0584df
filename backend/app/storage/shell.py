"""
Asset storage I/O - provider downloads, Azure Blob uploads, signed URLs.
"""
import asyncio
import functools
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx
from azure.core.exceptions import AzureError
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)

from ..config.contracts import ProviderConfig, StorageConfig
from .contracts import MigrationFailed, MigrationResult, SigningError
from .core import (
    VIDEO_CONTENT_TYPE,
    build_blob_metadata,
    build_destination_key,
    is_durable_url,
    is_same_host,
    resolve_source_url,
    split_blob_url,
)


logger = logging.getLogger(__name__)


class AssetMigrator:
    """Copies ephemeral provider videos into the durable blob container."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        blob_service: BlobServiceClient,
        storage_config: StorageConfig,
        provider_config: ProviderConfig
    ):
        self.http = http_client
        self.blob_service = blob_service
        self.config = storage_config
        self.provider_config = provider_config

    @property
    def account_url(self) -> str:
        return self.blob_service.url

    def is_durable(self, url: Optional[str]) -> bool:
        return is_durable_url(url, self.account_url)

    async def migrate(
        self,
        source_url: str,
        job_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> MigrationResult:
        """
        Download a provider asset and upload it to durable storage.

        Failures are reported in the result; this method does not raise
        for network, quota or invalid-source errors.
        """
        try:
            data = await self._download(source_url)
            video_url = await self._upload(job_id, data, metadata)
        except MigrationFailed as e:
            logger.warning(f"Video migration failed for job {job_id}: {e}")
            return MigrationResult(success=False, original_url=source_url, error=str(e))

        logger.info(
            f"Migrated video for job {job_id} to {video_url}",
            extra={"job_id": job_id, "bytes": len(data)}
        )
        return MigrationResult(
            success=True,
            original_url=source_url,
            new_video_url=video_url,
            new_thumbnail_url=video_url,
            bytes_copied=len(data),
        )

    async def _download(self, source_url: str) -> bytes:
        try:
            url = resolve_source_url(source_url, self.provider_config.base_url)
            same_host = is_same_host(url, self.provider_config.base_url)
        except ValueError as e:
            raise MigrationFailed(f"Invalid source URL {source_url!r}: {e}") from e

        headers = {}
        if self.provider_config.api_key and same_host:
            headers["x-goog-api-key"] = self.provider_config.api_key

        try:
            response = await self.http.get(
                url,
                headers=headers,
                follow_redirects=True,
                timeout=self.provider_config.timeout_seconds * 4,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise MigrationFailed(f"Download failed: {e}") from e

        if not response.is_success:
            raise MigrationFailed(f"Download failed: {response.status_code} {response.reason_phrase}")
        if not response.content:
            raise MigrationFailed("Download returned an empty body")

        return response.content

    async def _upload(self, job_id: str, data: bytes, metadata: Optional[Dict[str, Any]]) -> str:
        blob_name = build_destination_key(job_id)
        blob_client = self.blob_service.get_blob_client(
            container=self.config.container_name,
            blob=blob_name
        )

        upload = functools.partial(
            blob_client.upload_blob,
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=VIDEO_CONTENT_TYPE),
            metadata=build_blob_metadata(job_id, metadata, datetime.now(timezone.utc)),
        )

        try:
            await asyncio.get_event_loop().run_in_executor(None, upload)
        except AzureError as e:
            raise MigrationFailed(f"Upload to {blob_name} failed: {e}") from e

        return blob_client.url

    def sign_url(self, url: str, ttl_seconds: Optional[int] = None) -> str:
        """
        Produce a time-limited read URL for a durable asset.

        Raises:
            SigningError: URL is outside the account or no account key is configured
        """
        parts = split_blob_url(url, self.account_url)
        if parts is None:
            raise SigningError(f"URL is not in the storage account: {url}")

        account_key = self.config.account_key or getattr(self.blob_service.credential, "account_key", None)
        if not account_key:
            raise SigningError("No storage account key configured for signing")

        container, blob_name = parts
        ttl = ttl_seconds or self.config.signed_url_ttl_seconds
        try:
            sas = generate_blob_sas(
                account_name=self.blob_service.account_name,
                container_name=container,
                blob_name=blob_name,
                account_key=account_key,
                permission=BlobSasPermissions(read=True),
                expiry=datetime.now(timezone.utc) + timedelta(seconds=ttl),
            )
        except (AzureError, ValueError, TypeError) as e:
            raise SigningError(f"Failed to sign {blob_name}: {e}") from e

        return f"{url.split('?', 1)[0]}?{sas}"


def create_blob_service(config: StorageConfig) -> Optional[BlobServiceClient]:
    """Build a BlobServiceClient from configuration, or None if unconfigured."""
    if config.connection_string:
        return BlobServiceClient.from_connection_string(config.connection_string)
    if config.account_url:
        credential = None
        if config.account_key:
            account_name = urlparse(config.account_url).netloc.split(".", 1)[0]
            credential = {"account_name": account_name, "account_key": config.account_key}
        return BlobServiceClient(account_url=config.account_url, credential=credential)
    return None
