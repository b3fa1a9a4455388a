"""
Durable key/value storage for history snapshots.

Each key maps to one serialized snapshot string, the way browser local
storage holds one value per key. All storage operations are logged for
observability.
"""

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from medpredict.config.config import Settings
from medpredict.config.logging_config import get_logger
from medpredict.exceptions import PersistenceReadError, PersistenceWriteError

logger = get_logger(__name__)


class SnapshotStorage(ABC):
    """Named snapshot storage used by the history store."""

    @abstractmethod
    def read(self, key: str) -> str | None:
        """
        Read the snapshot stored under a key.

        Returns:
            The stored text, or None if nothing is stored under the key.

        Raises:
            PersistenceReadError: If the medium cannot be read.
        """

    @abstractmethod
    def write(self, key: str, data: str) -> None:
        """
        Replace the snapshot stored under a key.

        Raises:
            PersistenceWriteError: If the medium cannot be written.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the snapshot stored under a key, if any."""

    def check(self) -> bool:
        """Report whether the medium is currently usable."""
        return True


class MemorySnapshotStorage(SnapshotStorage):
    """Dict-backed storage for ephemeral sessions."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def read(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def write(self, key: str, data: str) -> None:
        with self._lock:
            self._data[key] = data

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class FileSnapshotStorage(SnapshotStorage):
    """
    Storage keeping one ``<key>.json`` file per key in a directory.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash never leaves a half-written snapshot behind.
    """

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def read(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Snapshot read failed", path=str(path), error=str(e))
            raise PersistenceReadError(f"Could not read snapshot {path}: {e}") from e

    def write(self, key: str, data: str) -> None:
        path = self._path(key)
        tmp_name = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.directory,
                prefix=f".{key}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            logger.error("Snapshot write failed", path=str(path), error=str(e))
            raise PersistenceWriteError(f"Could not write snapshot {path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
        logger.debug("Snapshot written", path=str(path), size=len(data))

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceWriteError(f"Could not delete snapshot {path}: {e}") from e
        logger.info("Snapshot deleted", path=str(path))

    def check(self) -> bool:
        # Missing directories are created on write; the nearest existing
        # ancestor decides whether that can succeed.
        candidate = self.directory.resolve()
        while not candidate.exists():
            if candidate.parent == candidate:
                return False
            candidate = candidate.parent
        return candidate.is_dir() and os.access(candidate, os.W_OK)


def create_snapshot_storage(settings: Settings) -> SnapshotStorage:
    """
    Build the snapshot storage selected by the settings.

    Args:
        settings: Application settings.

    Returns:
        A file-backed or in-memory storage.
    """
    if settings.storage_backend == "memory":
        logger.info("Using in-memory snapshot storage")
        return MemorySnapshotStorage()
    logger.info("Using file snapshot storage", directory=str(settings.storage_dir))
    return FileSnapshotStorage(settings.storage_dir)
