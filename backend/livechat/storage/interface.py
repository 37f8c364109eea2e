"""
Storage Interface - Abstract base class for blob storage implementations.
Attachments uploaded through the local gateway land here.
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any


class StorageInterface(ABC):
    """
    Abstract storage interface for binary blobs addressed by relative path.
    """

    @abstractmethod
    async def save(
        self,
        path: str,
        content: bytes,
        metadata: Optional[Dict[str, Any]] = None,
        overwrite: bool = True
    ) -> bool:
        """
        Save content to the specified path.

        Args:
            path: Relative path (e.g., "chat-files/<session_id>/k3j2_1700000000000.pdf")
            content: Raw file bytes
            metadata: Optional metadata stored next to the blob (content type, original name)
            overwrite: When False, an existing blob at the path is left untouched

        Returns:
            bool: True if the blob was written, False otherwise
        """
        pass

    @abstractmethod
    async def load(self, path: str) -> Optional[bytes]:
        """
        Load content from the specified path.

        Returns:
            Optional[bytes]: Blob content, or None if it doesn't exist
        """
        pass

    @abstractmethod
    async def get_metadata(self, path: str) -> Optional[Dict[str, Any]]:
        """
        Get metadata for a blob.

        Returns:
            Optional[Dict]: size, modified_at and any metadata given at save time
        """
        pass
