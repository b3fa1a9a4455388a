import pytest

from medpredict.exceptions import PersistenceWriteError
from medpredict.services.history_store import HistoryStore
from medpredict.storage.snapshot_storage import FileSnapshotStorage, MemorySnapshotStorage


class FailingWriteStorage(MemorySnapshotStorage):
    """Storage whose writes always fail, like a full disk."""

    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    def write(self, key: str, data: str) -> None:
        self.attempts += 1
        raise PersistenceWriteError("quota exceeded")

    def check(self) -> bool:
        return False


@pytest.fixture
def memory_storage():
    return MemorySnapshotStorage()


@pytest.fixture
def file_storage(tmp_path):
    return FileSnapshotStorage(tmp_path / "snapshots")


@pytest.fixture
def failing_storage():
    return FailingWriteStorage()


@pytest.fixture
def store(memory_storage):
    history_store = HistoryStore(memory_storage)
    history_store.restore()
    return history_store
