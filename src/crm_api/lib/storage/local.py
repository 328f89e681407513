"""Local filesystem storage for raw CSV uploads.

Paths are structured as ``{base_dir}/{year}/{month}/{uuid}.{ext}`` to keep
directories manageable at scale.
"""

import uuid
from datetime import UTC, datetime
from pathlib import Path

import aiofiles


def extract_extension(filename: str) -> str:
    """Extract the lowercase file extension including the dot.

    Args:
        filename: The filename to extract from.

    Returns:
        The extension (e.g., ".csv") or empty string if none.
    """
    dot_idx = filename.rfind(".")
    if dot_idx == -1:
        return ""
    return filename[dot_idx:].lower()


def dated_key(filename: str) -> str:
    """Build a collision-free ``{year}/{month}/{uuid}{ext}`` key."""
    now = datetime.now(tz=UTC)
    return f"{now.year}/{now.month:02d}/{uuid.uuid4().hex}{extract_extension(filename)}"


class LocalFileStorage:
    """Local filesystem implementation of FileStorage.

    Args:
        base_dir: The root directory for file storage.
    """

    backend = "local"

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)

    def _resolve(self, stored_path: str) -> Path:
        full_path = (self._base_dir / stored_path).resolve()
        if not full_path.is_relative_to(self._base_dir.resolve()):
            msg = f"Invalid storage path: {stored_path}"
            raise ValueError(msg)
        return full_path

    async def save(self, content: bytes, filename: str) -> str:
        """Save file content to the local filesystem.

        Args:
            content: Raw file bytes.
            filename: Original filename (extension is preserved).

        Returns:
            Relative storage path (e.g., "2026/02/abc123.csv").
        """
        relative_path = dated_key(filename)
        full_path = self._base_dir / relative_path
        full_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(full_path, "wb") as f:
            await f.write(content)
        return relative_path

    async def load(self, stored_path: str) -> bytes:
        """Load file content from the local filesystem.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        full_path = self._resolve(stored_path)
        if not full_path.exists():
            msg = f"File not found: {stored_path}"
            raise FileNotFoundError(msg)
        async with aiofiles.open(full_path, "rb") as f:
            return await f.read()

    async def delete(self, stored_path: str) -> None:
        """Delete a file from the local filesystem.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        full_path = self._resolve(stored_path)
        if not full_path.exists():
            msg = f"File not found: {stored_path}"
            raise FileNotFoundError(msg)
        full_path.unlink()
