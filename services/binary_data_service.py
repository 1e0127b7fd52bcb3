"""Storage for binary attachments carried on workflow items.

Two representations exist side by side:
- inline: the base64 payload lives in BinaryData["data"]
- filesystem: bytes are written under the storage directory and
  BinaryData["id"] holds a "filesystem:<uuid>" reference
"""

import asyncio
import base64
import binascii
import logging
import mimetypes
import os
import uuid
from pathlib import Path

from config.settings import load_settings
from core.types_registry import BinaryData

logger = logging.getLogger(__name__)

FILESYSTEM_ID_PREFIX = "filesystem:"


class BinaryDataNotFoundError(Exception):
    """Raised when binary content cannot be located or decoded."""

    pass


def file_extension_for(file_name: str | None, mime_type: str) -> str:
    if file_name:
        suffix = Path(file_name).suffix
        if suffix:
            return suffix.lstrip(".").lower()
    guessed = mimetypes.guess_extension(mime_type or "")
    return guessed.lstrip(".") if guessed else ""


class BinaryDataStore:
    def __init__(self, mode: str = "default", storage_dir: str | os.PathLike[str] | None = None):
        if mode not in ("default", "filesystem"):
            raise ValueError(f"Unknown binary data mode: {mode}")
        self.mode = mode
        self.storage_dir = Path(storage_dir or os.path.join("data", "binary"))

    async def prepare_binary_data(
        self, content: bytes, file_name: str | None, mime_type: str
    ) -> BinaryData:
        binary: BinaryData = {
            "mime_type": mime_type,
            "file_size": len(content),
        }
        if file_name:
            binary["file_name"] = file_name
        extension = file_extension_for(file_name, mime_type)
        if extension:
            binary["file_extension"] = extension

        if self.mode == "filesystem":
            binary["id"] = await self.store(content)
            binary["data"] = ""
        else:
            binary["data"] = base64.b64encode(content).decode("ascii")
        return binary

    async def store(self, content: bytes) -> str:
        """Persist bytes and return their storage id."""
        key = uuid.uuid4().hex
        path = self.storage_dir / key
        await asyncio.to_thread(self._write, path, content)
        logger.debug(f"BinaryDataStore: stored {len(content)} bytes at {path}")
        return f"{FILESYSTEM_ID_PREFIX}{key}"

    @staticmethod
    def _write(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def _path_for(self, binary_id: str) -> Path:
        if not binary_id.startswith(FILESYSTEM_ID_PREFIX):
            raise BinaryDataNotFoundError(f"Unsupported binary id: {binary_id}")
        key = binary_id[len(FILESYSTEM_ID_PREFIX):]
        # ids are bare uuid hex strings, never paths
        if not key or not key.isalnum():
            raise BinaryDataNotFoundError(f"Malformed binary id: {binary_id}")
        return self.storage_dir / key

    async def read(self, binary_id: str) -> bytes:
        path = self._path_for(binary_id)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise BinaryDataNotFoundError(f"Binary data not found: {binary_id}") from e

    async def get_binary_bytes(self, binary: BinaryData) -> bytes:
        """Bytes of an attachment, from storage when it has an id, else from inline data."""
        binary_id = binary.get("id")
        if binary_id:
            return await self.read(binary_id)
        return decode_inline(binary)


def decode_inline(binary: BinaryData) -> bytes:
    data = binary.get("data")
    if not data:
        raise BinaryDataNotFoundError("Binary data has neither an id nor inline content")
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise BinaryDataNotFoundError(f"Invalid base64 binary data: {e}") from e


_store: BinaryDataStore | None = None


def get_binary_data_store() -> BinaryDataStore:
    """Process-wide store configured from settings."""
    global _store
    if _store is None:
        settings = load_settings()
        _store = BinaryDataStore(settings.binary_data_mode, settings.binary_data_dir)
    return _store


def reset_binary_data_store() -> None:
    global _store
    _store = None
