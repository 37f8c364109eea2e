"""Core module - logging setup shared by the service and the chat core."""

from .logging_config import setup_logging, filter_sensitive_data

__all__ = ['setup_logging', 'filter_sensitive_data']
