"""
Local filesystem storage.

Locators are keys relative to the storage root.
"""

import asyncio
import logging
from pathlib import Path

from narrator.config import Settings

logger = logging.getLogger(__name__)


class LocalStorage:
    """
    Storage protocol backed by a directory.

    Example:
        storage = LocalStorage(Path("/data/storage"))
        locator = await storage.put(b"...", "job1/audio/001.mp3")
        data = await storage.get(locator)
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalStorage":
        return cls(settings.storage_dir)

    def path_for(self, locator: str) -> Path:
        """
        Resolve a locator to a path under the root.

        Raises:
            ValueError: If the locator escapes the root
        """
        key = Path(locator)
        if key.is_absolute() or ".." in key.parts:
            raise ValueError(f"invalid storage locator: {locator}")
        return self.root / key

    async def put(self, data: bytes, name: str, content_type: str | None = None) -> str:
        """Write bytes under `name` and return it as the locator."""
        path = self.path_for(name)
        await asyncio.to_thread(self._write, path, data)
        logger.debug(f"Stored {len(data)} bytes at {name} ({content_type or 'unknown'})")
        return name

    async def get(self, locator: str) -> bytes:
        """
        Read bytes by locator.

        Raises:
            FileNotFoundError: If nothing is stored under the locator
        """
        path = self.path_for(locator)
        return await asyncio.to_thread(path.read_bytes)

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
