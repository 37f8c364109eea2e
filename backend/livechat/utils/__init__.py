"""Utility module."""

from .auth import generate_password, get_password_hash

__all__ = ['generate_password', 'get_password_hash']
