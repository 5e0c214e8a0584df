"""
Test asset migration and signed URLs.
HTTP goes through httpx.MockTransport; blob uploads use a mocked client.
"""
import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import httpx
from azure.core.exceptions import ResourceExistsError, ServiceRequestError
from azure.storage.blob import BlobServiceClient

from ...config.contracts import ProviderConfig, ProviderMode, StorageConfig
from ..contracts import SigningError
from ..core import (
    build_blob_metadata,
    build_destination_key,
    is_durable_url,
    resolve_source_url,
    split_blob_url,
)
from ..shell import AssetMigrator, create_blob_service


ACCOUNT_URL = "https://adcraft.blob.core.windows.net/"
CONNECTION_STRING = (
    "DefaultEndpointsProtocol=https;AccountName=adcraft;"
    "AccountKey=dGVzdGtleXRlc3RrZXl0ZXN0a2V5;EndpointSuffix=core.windows.net"
)
PROVIDER = ProviderConfig(api_key="veo-key", base_url="https://veo.test/v1beta", mode=ProviderMode.VEO)
STORAGE = StorageConfig(connection_string=CONNECTION_STRING)
SOURCE_URL = "https://veo.test/v1beta/files/abc:download?alt=media"


def mock_blob_service():
    service = MagicMock(spec=BlobServiceClient)
    service.url = ACCOUNT_URL
    blob_client = MagicMock()
    blob_client.url = f"{ACCOUNT_URL}adcraft-videos/videos/job-1.mp4"
    service.get_blob_client.return_value = blob_client
    return service, blob_client


def migrator_with(handler, blob_service):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AssetMigrator(client, blob_service, STORAGE, PROVIDER)


class TestStorageCore:
    """Test pure storage helpers."""

    def test_destination_key(self):
        assert build_destination_key("job-1") == "videos/job-1.mp4"
        assert build_destination_key("a/b") == "videos/a_b.mp4"

    def test_blob_metadata_is_ascii_strings(self):
        metadata = build_blob_metadata(
            "job-1",
            {"product-name": "Café", "duration": 15, "quality": None, "1st": "x"},
            datetime(2026, 10, 18, tzinfo=timezone.utc),
        )
        assert metadata["job_id"] == "job-1"
        assert metadata["product_name"] == "Caf"
        assert metadata["duration"] == "15"
        assert metadata["m_1st"] == "x"
        assert "quality" not in metadata

    def test_resolve_relative_source(self):
        assert resolve_source_url("/files/abc", "https://veo.test/v1beta") == "https://veo.test/v1beta/files/abc"
        assert resolve_source_url(SOURCE_URL, "https://other") == SOURCE_URL

    def test_split_and_durable(self):
        url = f"{ACCOUNT_URL}adcraft-videos/videos/job-1.mp4"
        assert split_blob_url(url, ACCOUNT_URL) == ("adcraft-videos", "videos/job-1.mp4")
        assert is_durable_url(url, ACCOUNT_URL)
        assert not is_durable_url(SOURCE_URL, ACCOUNT_URL)
        assert not is_durable_url(None, ACCOUNT_URL)
        assert split_blob_url("https://[::1/x.mp4", ACCOUNT_URL) is None


class TestAssetMigrator:
    """Test migration outcomes."""

    async def test_successful_migration(self):
        seen = {}

        def handler(request):
            seen["key"] = request.headers.get("x-goog-api-key")
            return httpx.Response(200, content=b"\x00\x00\x00\x18ftypmp42")

        service, blob_client = mock_blob_service()
        result = await migrator_with(handler, service).migrate(SOURCE_URL, "job-1", {"prompt_chars": 42})

        assert result.success is True
        assert result.new_video_url == blob_client.url
        assert result.new_thumbnail_url == blob_client.url
        assert result.original_url == SOURCE_URL
        assert result.bytes_copied == 12
        assert seen["key"] == "veo-key"

        service.get_blob_client.assert_called_once_with(container="adcraft-videos", blob="videos/job-1.mp4")
        kwargs = blob_client.upload_blob.call_args.kwargs
        assert kwargs["overwrite"] is True
        assert kwargs["content_settings"].content_type == "video/mp4"
        assert kwargs["metadata"]["prompt_chars"] == "42"

    async def test_api_key_not_sent_to_other_hosts(self):
        seen = {}

        def handler(request):
            seen["key"] = request.headers.get("x-goog-api-key")
            return httpx.Response(200, content=b"video")

        service, _ = mock_blob_service()
        await migrator_with(handler, service).migrate("https://cdn.example/v.mp4", "job-1")

        assert seen["key"] is None

    async def test_download_error_reported(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        service, blob_client = mock_blob_service()
        result = await migrator_with(handler, service).migrate(SOURCE_URL, "job-1")

        assert result.success is False
        assert "Download failed" in result.error
        blob_client.upload_blob.assert_not_called()

    async def test_malformed_source_reported(self):
        service, blob_client = mock_blob_service()
        result = await migrator_with(lambda r: httpx.Response(200, content=b"video"), service).migrate(
            "https://[::1/x.mp4", "job-1"
        )

        assert result.success is False
        assert "Invalid source URL" in result.error
        blob_client.upload_blob.assert_not_called()

    async def test_expired_source_reported(self):
        service, _ = mock_blob_service()
        result = await migrator_with(lambda r: httpx.Response(404), service).migrate(SOURCE_URL, "job-1")

        assert result.success is False
        assert "404" in result.error

    async def test_empty_source_reported(self):
        service, _ = mock_blob_service()
        result = await migrator_with(lambda r: httpx.Response(200, content=b""), service).migrate(SOURCE_URL, "job-1")

        assert result.success is False
        assert "empty" in result.error

    async def test_upload_error_reported(self):
        service, blob_client = mock_blob_service()
        blob_client.upload_blob.side_effect = ServiceRequestError("quota exceeded")

        result = await migrator_with(lambda r: httpx.Response(200, content=b"video"), service).migrate(
            SOURCE_URL, "job-1"
        )

        assert result.success is False
        assert "quota exceeded" in result.error

    async def test_conflict_reported(self):
        service, blob_client = mock_blob_service()
        blob_client.upload_blob.side_effect = ResourceExistsError("lease held")

        result = await migrator_with(lambda r: httpx.Response(200, content=b"video"), service).migrate(
            SOURCE_URL, "job-1"
        )

        assert result.success is False


class TestSignedUrls:
    """Test SAS URL generation with a real shared-key client."""

    def _migrator(self):
        service = create_blob_service(STORAGE)
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        return AssetMigrator(client, service, STORAGE, PROVIDER)

    def test_sign_durable_url(self):
        migrator = self._migrator()
        url = f"{migrator.account_url.rstrip('/')}/adcraft-videos/videos/job-1.mp4"

        signed = migrator.sign_url(url, ttl_seconds=3600)

        parsed = urlparse(signed)
        query = parse_qs(parsed.query)
        assert parsed.path == "/adcraft-videos/videos/job-1.mp4"
        assert query["sp"] == ["r"]
        assert "sig" in query
        assert "se" in query

    def test_sign_foreign_url_fails(self):
        with pytest.raises(SigningError):
            self._migrator().sign_url(SOURCE_URL)

    def test_sign_without_key_fails(self):
        service = BlobServiceClient(account_url=ACCOUNT_URL)
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        migrator = AssetMigrator(client, service, StorageConfig(account_url=ACCOUNT_URL), PROVIDER)

        with pytest.raises(SigningError):
            migrator.sign_url(f"{ACCOUNT_URL}adcraft-videos/videos/job-1.mp4")

    def test_create_blob_service_unconfigured(self):
        assert create_blob_service(StorageConfig()) is None
