"""Unit tests for upload storage backends."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from crm_api.lib.storage import LocalFileStorage, S3FileStorage
from crm_api.lib.storage.local import dated_key, extract_extension


class TestKeys:
    def test_extract_extension(self) -> None:
        assert extract_extension("Contacts.CSV") == ".csv"
        assert extract_extension("noext") == ""

    def test_dated_key_shape(self) -> None:
        key = dated_key("contacts.csv")
        year, month, name = key.split("/")
        assert len(year) == 4
        assert len(month) == 2
        assert name.endswith(".csv")


class TestLocalFileStorage:
    """Tests for the local disk backend."""

    @pytest.mark.asyncio
    async def test_save_load_delete(self, tmp_path: Path) -> None:
        storage = LocalFileStorage(tmp_path)
        key = await storage.save(b"phone\n1\n", "contacts.csv")
        assert (tmp_path / key).exists()
        assert await storage.load(key) == b"phone\n1\n"

        await storage.delete(key)
        with pytest.raises(FileNotFoundError):
            await storage.load(key)

    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self, tmp_path: Path) -> None:
        storage = LocalFileStorage(tmp_path / "uploads")
        with pytest.raises(ValueError, match="Invalid storage path"):
            await storage.load("../../etc/passwd")


class TestS3FileStorage:
    """Tests for the S3 backend with a mocked boto3 client."""

    @pytest.mark.asyncio
    async def test_save_puts_object_under_prefix(self) -> None:
        client = MagicMock()
        storage = S3FileStorage(client, "uploads-bucket", "imports")

        key = await storage.save(b"data", "contacts.csv")

        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "uploads-bucket"
        assert kwargs["Key"] == f"imports/{key}"
        assert kwargs["Body"] == b"data"

    @pytest.mark.asyncio
    async def test_load_reads_body(self) -> None:
        client = MagicMock()
        client.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=b"data"))}
        storage = S3FileStorage(client, "uploads-bucket")

        assert await storage.load("2026/10/abc.csv") == b"data"
        client.get_object.assert_called_once_with(Bucket="uploads-bucket", Key="imports/2026/10/abc.csv")

    @pytest.mark.asyncio
    async def test_missing_key_raises_file_not_found(self) -> None:
        client = MagicMock()
        client.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
        storage = S3FileStorage(client, "uploads-bucket")

        with pytest.raises(FileNotFoundError):
            await storage.load("2026/10/missing.csv")
