"""S3-compatible object storage for raw CSV uploads.

boto3 is synchronous, so every call is pushed to a worker thread with
``asyncio.to_thread`` to keep the event loop free.
"""

import asyncio
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from loguru import logger

from crm_api.lib.storage.local import dated_key


def create_s3_client(
    *,
    endpoint_url: str | None,
    region: str,
    access_key_id: str | None,
    secret_access_key: str | None,
) -> Any:
    """Create a boto3 S3 client.

    Applies the checksum workaround needed by R2/MinIO with boto3 v1.36.0+.

    Returns:
        Configured boto3 S3 client.
    """
    config = Config(
        request_checksum_calculation="when_required",
        response_checksum_validation="when_required",
    )
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
        region_name=region,
        config=config,
    )


class S3FileStorage:
    """FileStorage backed by an S3 bucket.

    Args:
        client: boto3 S3 client.
        bucket: Bucket name.
        prefix: Key prefix for uploads.
    """

    backend = "s3"

    def __init__(self, client: Any, bucket: str, prefix: str = "imports") -> None:
        self._client = client
        self._bucket = bucket
        self._prefix = prefix.strip("/")

    def _key(self, stored_path: str) -> str:
        return f"{self._prefix}/{stored_path}" if self._prefix else stored_path

    async def save(self, content: bytes, filename: str) -> str:
        """Upload bytes and return the key relative to the prefix."""
        stored_path = dated_key(filename)
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self._bucket,
            Key=self._key(stored_path),
            Body=content,
            ContentType="text/csv",
        )
        logger.info(f"Uploaded {len(content)} bytes to s3://{self._bucket}/{self._key(stored_path)}")
        return stored_path

    async def load(self, stored_path: str) -> bytes:
        """Download an object.

        Raises:
            FileNotFoundError: If the object does not exist.
        """
        try:
            response = await asyncio.to_thread(
                self._client.get_object, Bucket=self._bucket, Key=self._key(stored_path)
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in ("NoSuchKey", "404"):
                msg = f"File not found: {stored_path}"
                raise FileNotFoundError(msg) from exc
            raise
        return await asyncio.to_thread(response["Body"].read)

    async def delete(self, stored_path: str) -> None:
        """Delete an object (S3 treats missing keys as already deleted)."""
        await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=self._key(stored_path))
