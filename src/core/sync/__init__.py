"""Catalog Synchronization Module."""

from src.core.sync.base import CatalogSyncClient
from src.core.sync.movies import MovieSyncClient
from src.core.sync.series import SeriesSyncClient

__all__ = ["CatalogSyncClient", "MovieSyncClient", "SeriesSyncClient"]
