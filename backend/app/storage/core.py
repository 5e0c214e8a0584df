"""
Asset storage core logic - Pure functions only.
NEVER include I/O operations in this module.
"""
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urljoin, urlparse, unquote


VIDEO_CONTENT_TYPE = "video/mp4"
METADATA_KEY_PATTERN = re.compile(r"[^A-Za-z0-9_]")
MAX_METADATA_VALUE_LENGTH = 256


def build_destination_key(job_id: str) -> str:
    """Blob name for a job's video."""
    safe_id = re.sub(r"[^A-Za-z0-9._-]", "_", job_id)
    return f"videos/{safe_id}.mp4"


def build_blob_metadata(
    job_id: str,
    metadata: Optional[Dict[str, Any]],
    uploaded_at: datetime
) -> Dict[str, str]:
    """
    Blob metadata must be ASCII identifier keys with string values.
    """
    result = {"job_id": job_id, "uploaded_at": uploaded_at.astimezone(timezone.utc).isoformat()}
    for key, value in (metadata or {}).items():
        if value is None:
            continue
        clean_key = METADATA_KEY_PATTERN.sub("_", str(key))
        if not clean_key or clean_key[0].isdigit():
            clean_key = f"m_{clean_key}"
        text = str(value).encode("ascii", "ignore").decode("ascii")
        result[clean_key] = text[:MAX_METADATA_VALUE_LENGTH]
    return result


def resolve_source_url(source_url: str, provider_base_url: str) -> str:
    """Resolve provider-relative asset paths against the provider base URL."""
    if urlparse(source_url).scheme in ("http", "https"):
        return source_url
    return urljoin(provider_base_url.rstrip("/") + "/", source_url.lstrip("/"))


def is_same_host(url: str, other_url: str) -> bool:
    return urlparse(url).netloc.lower() == urlparse(other_url).netloc.lower()


def split_blob_url(url: str, account_url: str) -> Optional[Tuple[str, str]]:
    """
    Split a blob URL into (container, blob name) if it belongs to the
    storage account, otherwise None.
    """
    try:
        parsed = urlparse(url)
        same_host = is_same_host(url, account_url)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not same_host:
        return None
    path = unquote(parsed.path).lstrip("/")
    if "/" not in path:
        return None
    container, blob_name = path.split("/", 1)
    if not container or not blob_name:
        return None
    return container, blob_name


def is_durable_url(url: Optional[str], account_url: Optional[str]) -> bool:
    """True if the URL points into the durable storage account."""
    if not url or not account_url:
        return False
    return split_blob_url(url, account_url) is not None
