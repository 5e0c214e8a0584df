"""
Durable video storage: migration out of ephemeral provider URLs and
signed read URLs.
"""

from .contracts import MigrationResult, StorageError, MigrationFailed, SigningError
from .shell import AssetMigrator, create_blob_service

__all__ = [
    "MigrationResult",
    "StorageError",
    "MigrationFailed",
    "SigningError",
    "AssetMigrator",
    "create_blob_service",
]
