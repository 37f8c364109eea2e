"""Storage module - blob storage interface and local implementation."""

from .interface import StorageInterface
from .local_storage import LocalStorage

__all__ = ['StorageInterface', 'LocalStorage']
