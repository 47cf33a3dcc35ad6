"""
Persistence backends for the state document.

The whole state lives in one serialized JSON document under one key.
Backends only move opaque text in and out; parsing and validation happen
in the codec.

Design Decisions:
- Abstract storage interface for multiple backends
- Local files are replaced atomically (write temp, then rename) so a
  reader sees either the previous or the next complete document
- Database backend keeps one row per key (see infrastructure.database)
"""

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from medverify.config import Settings, get_settings

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"[A-Za-z0-9_.-]+")


def _check_key(key: str) -> str:
    if not _KEY_PATTERN.fullmatch(key):
        raise ValueError(f"Invalid storage key: {key!r}")
    return key


class DocumentBackend(ABC):
    """Abstract interface for state document storage backends."""

    @abstractmethod
    async def read(self, key: str) -> str | None:
        """Return the stored document, or None if nothing is stored."""
        pass

    @abstractmethod
    async def write(self, key: str, raw: str) -> None:
        """Store a complete document, replacing any previous one."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a document. Returns True if deleted."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass


class MemoryBackend(DocumentBackend):
    """Process-local storage, for tests and throwaway demos."""

    def __init__(self) -> None:
        self._documents: dict[str, str] = {}

    async def read(self, key: str) -> str | None:
        return self._documents.get(key)

    async def write(self, key: str, raw: str) -> None:
        self._documents[key] = raw

    async def delete(self, key: str) -> bool:
        return self._documents.pop(key, None) is not None


class LocalFileBackend(DocumentBackend):
    """
    Local filesystem storage.

    Each key maps to one file:
    storage_path/
        medverify_state_vr1.json
    """

    def __init__(self, base_path: Path | None = None) -> None:
        """
        Initialize local storage.

        Args:
            base_path: Base directory for storage. Uses config if None.
        """
        settings = get_settings()
        self.base_path = base_path or settings.storage_path
        self.base_path.mkdir(parents=True, exist_ok=True)
        logger.info(f"Local storage initialized at {self.base_path}")

    def _path(self, key: str) -> Path:
        return self.base_path / f"{_check_key(key)}.json"

    async def read(self, key: str) -> str | None:
        file_path = self._path(key)
        if not file_path.exists():
            return None
        return file_path.read_text(encoding="utf-8")

    async def write(self, key: str, raw: str) -> None:
        """Write atomically (write to temp, then rename)."""
        file_path = self._path(key)
        temp_path = file_path.with_suffix(".tmp")
        try:
            temp_path.write_text(raw, encoding="utf-8")
            temp_path.replace(file_path)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise

    async def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink()
            return True
        except FileNotFoundError:
            return False


def create_backend(settings: Settings | None = None) -> DocumentBackend:
    """
    Build the backend selected by ``settings.storage_backend``.

    Args:
        settings: Application settings. Uses cached settings if None.
    """
    settings = settings or get_settings()
    if settings.storage_backend == "memory":
        return MemoryBackend()
    if settings.storage_backend == "database":
        from medverify.infrastructure.database import DatabaseBackend

        return DatabaseBackend(settings.database_url, echo=settings.debug)
    return LocalFileBackend(settings.storage_path)
