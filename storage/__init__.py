"""
Durable storage module.

Provides the repository abstraction used by the ingestion pipeline and
its SQLAlchemy implementation.
"""

from storage.repository import DeviceNotFoundError, DeviceRepository, RepositoryError
from storage.sql_repository import SqlDeviceRepository

__all__ = [
    "DeviceRepository",
    "RepositoryError",
    "DeviceNotFoundError",
    "SqlDeviceRepository",
]
