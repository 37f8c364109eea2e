"""
Local Filesystem Storage Implementation.
Stores attachment blobs under a base directory on the server.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any

import aiofiles

from .interface import StorageInterface

logger = logging.getLogger(__name__)


class LocalStorage(StorageInterface):
    """
    Local filesystem storage implementation.
    Metadata is kept in a `<blob>.meta` JSON file beside each blob.
    """

    def __init__(self, base_dir: str = "./data"):
        """
        Initialize local storage with a base directory.

        Args:
            base_dir: Base directory for all stored blobs
        """
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, path: str) -> Path:
        """Convert relative path to full absolute path within base directory."""
        full_path = (self.base_dir / path).resolve()

        # Security check: ensure path is within base_dir
        if full_path != self.base_dir and self.base_dir not in full_path.parents:
            raise ValueError(f"Invalid path: {path} - path traversal detected")

        return full_path

    @staticmethod
    def _meta_path(full_path: Path) -> Path:
        return full_path.with_suffix(full_path.suffix + '.meta')

    async def save(
        self,
        path: str,
        content: bytes,
        metadata: Optional[Dict[str, Any]] = None,
        overwrite: bool = True
    ) -> bool:
        """Save blob to local filesystem."""
        try:
            full_path = self._get_full_path(path)
            if not overwrite and full_path.exists():
                logger.warning(f"Refusing to overwrite existing blob {path}")
                return False
            full_path.parent.mkdir(parents=True, exist_ok=True)

            async with aiofiles.open(full_path, 'wb') as f:
                await f.write(content)

            if metadata:
                async with aiofiles.open(self._meta_path(full_path), 'w', encoding='utf-8') as f:
                    await f.write(json.dumps(metadata, indent=2, ensure_ascii=False))

            logger.debug(f"Saved blob {path} ({len(content)} bytes)")
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Error saving blob {path}: {e}")
            return False

    async def load(self, path: str) -> Optional[bytes]:
        """Load blob from local filesystem."""
        try:
            full_path = self._get_full_path(path)
            if not full_path.is_file():
                return None

            async with aiofiles.open(full_path, 'rb') as f:
                return await f.read()
        except (OSError, ValueError) as e:
            logger.error(f"Error loading blob {path}: {e}")
            return None

    async def get_metadata(self, path: str) -> Optional[Dict[str, Any]]:
        """Get blob metadata."""
        try:
            full_path = self._get_full_path(path)
            if not full_path.is_file():
                return None

            stat = full_path.stat()
            metadata = {
                'size': stat.st_size,
                'modified_at': datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
                'path': path
            }

            metadata_path = self._meta_path(full_path)
            if metadata_path.exists():
                async with aiofiles.open(metadata_path, 'r', encoding='utf-8') as f:
                    metadata.update(json.loads(await f.read()))

            return metadata
        except (OSError, ValueError) as e:
            logger.error(f"Error getting metadata for {path}: {e}")
            return None
