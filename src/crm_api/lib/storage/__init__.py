"""Upload storage abstraction.

Provides the ``FileStorage`` Protocol plus local-disk and S3 backends chosen
by ``Settings.import_storage_backend``.
"""

from typing import TYPE_CHECKING, Protocol

from crm_api.lib.storage.local import LocalFileStorage
from crm_api.lib.storage.s3 import S3FileStorage, create_s3_client

if TYPE_CHECKING:
    from crm_api.core.config import Settings


class FileStorage(Protocol):
    """Async save/load/delete of raw upload bytes."""

    backend: str

    async def save(self, content: bytes, filename: str) -> str:
        """Save file content and return the stored path.

        Args:
            content: Raw file bytes to store.
            filename: Original filename (used only for extension extraction).

        Returns:
            The relative storage path (e.g., "2026/02/abc123.csv").
        """
        ...

    async def load(self, stored_path: str) -> bytes:
        """Load file content from the stored path.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        ...

    async def delete(self, stored_path: str) -> None:
        """Delete a file from storage."""
        ...


def build_file_storage(settings: "Settings") -> FileStorage:
    """Create the backend selected by settings.

    Raises:
        ValueError: If S3 is selected without a bucket.
    """
    if settings.import_storage_backend == "s3":
        if not settings.s3_bucket:
            msg = "S3_BUCKET must be set when IMPORT_STORAGE_BACKEND is 's3'"
            raise ValueError(msg)
        client = create_s3_client(
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
        )
        return S3FileStorage(client, settings.s3_bucket, settings.s3_prefix)
    return LocalFileStorage(settings.import_upload_dir)


__all__ = ["FileStorage", "LocalFileStorage", "S3FileStorage", "build_file_storage", "create_s3_client"]
