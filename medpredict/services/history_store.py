"""
Prediction history store.

Keeps the authoritative, newest-first log of prediction records in memory
and mirrors every change to a single named snapshot in durable storage.
Mutations are serialized by a lock and the snapshot is written while the
lock is held, so an older state can never overwrite a newer one.
"""

import copy
import math
import threading
from collections.abc import Mapping
from enum import Enum
from numbers import Real
from typing import Any
from uuid import UUID, uuid4

from pydantic import ValidationError

from medpredict.config.logging_config import get_logger
from medpredict.exceptions import (
    CorruptSnapshotError,
    InvalidParametersError,
    InvalidProbabilityError,
    PersistenceReadError,
    PersistenceWriteError,
)
from medpredict.models.models import (
    DiseaseCategory,
    HistorySnapshot,
    HistoryState,
    PredictionRecord,
    parse_category,
    utcnow,
)
from medpredict.storage.snapshot_storage import SnapshotStorage

logger = get_logger(__name__)

DEFAULT_STORAGE_KEY = "prediction-storage"
SNAPSHOT_VERSION = 0


class StoreState(str, Enum):
    """Externally visible lifecycle states of the store."""
    UNINITIALIZED = "uninitialized"
    READY = "ready"


def encode_snapshot(history: tuple[PredictionRecord, ...] | list[PredictionRecord]) -> str:
    """Serialize a history into the snapshot envelope."""
    snapshot = HistorySnapshot(
        state=HistoryState(history=list(history)),
        version=SNAPSHOT_VERSION,
    )
    return snapshot.model_dump_json()


def decode_snapshot(data: str) -> list[PredictionRecord]:
    """
    Parse a snapshot envelope back into a history.

    Raises:
        CorruptSnapshotError: If the text is not a valid snapshot.
    """
    try:
        snapshot = HistorySnapshot.model_validate_json(data)
    except ValidationError as e:
        raise CorruptSnapshotError(f"Invalid history snapshot: {e.error_count()} error(s)") from e
    return snapshot.state.history


def _validate_probability(probability: Any) -> float:
    if isinstance(probability, bool) or not isinstance(probability, Real):
        raise InvalidProbabilityError(probability)
    value = float(probability)
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise InvalidProbabilityError(probability)
    return value


def _detached(record: PredictionRecord) -> PredictionRecord:
    # Parameters are a mutable dict; callers only ever see copies.
    return record.model_copy(deep=True)


def _validate_parameters(parameters: Any) -> dict[str, Any]:
    if parameters is None or not isinstance(parameters, Mapping):
        raise InvalidParametersError(
            f"Parameters must be a mapping, got {type(parameters).__name__}"
        )
    for key in parameters:
        if not isinstance(key, str):
            raise InvalidParametersError(f"Parameter names must be strings, got {key!r}")
    return copy.deepcopy(dict(parameters))


class HistoryStore:
    """
    Append-only, persisted log of prediction outcomes.

    The store starts uninitialized and becomes ready on ``restore()`` or on
    the first operation, whichever comes first.
    """

    def __init__(self, storage: SnapshotStorage, storage_key: str = DEFAULT_STORAGE_KEY):
        self.storage = storage
        self.storage_key = storage_key
        self._history: list[PredictionRecord] = []
        self._ids: set[UUID] = set()
        self._state = StoreState.UNINITIALIZED
        self._lock = threading.RLock()

    @property
    def state(self) -> StoreState:
        """Current lifecycle state."""
        return self._state

    @property
    def history(self) -> tuple[PredictionRecord, ...]:
        """The full history, newest first."""
        with self._lock:
            self._ensure_ready()
            return tuple(_detached(record) for record in self._history)

    def __len__(self) -> int:
        with self._lock:
            self._ensure_ready()
            return len(self._history)

    def restore(self) -> tuple[PredictionRecord, ...]:
        """
        Load the last persisted snapshot into memory.

        A missing snapshot yields an empty history. An unreadable or corrupt
        snapshot is logged and also yields an empty history, so startup is
        never blocked by bad stored data.

        Returns:
            The restored history, newest first.
        """
        with self._lock:
            self._history = self._load()
            self._ids = {record.id for record in self._history}
            self._state = StoreState.READY
            logger.info(
                "Prediction history restored",
                storage_key=self.storage_key,
                records=len(self._history),
            )
            return tuple(_detached(record) for record in self._history)

    def add(
        self,
        category: DiseaseCategory | str,
        at_risk: bool,
        probability: float,
        parameters: Mapping[str, Any],
    ) -> PredictionRecord:
        """
        Record a new prediction at the head of the history.

        Args:
            category: Disease category of the prediction.
            at_risk: Outcome flag.
            probability: Risk probability, a finite number in [0, 1].
            parameters: Form inputs, stored as given.

        Returns:
            The created record.

        Raises:
            InvalidCategoryError: If the category is unknown.
            InvalidProbabilityError: If the probability is out of range.
            InvalidParametersError: If parameters are not a string-keyed mapping.
            PersistenceWriteError: If the snapshot could not be written. The
                record is kept in memory and attached to the error.
        """
        disease = parse_category(category)
        value = _validate_probability(probability)
        params = _validate_parameters(parameters)

        with self._lock:
            self._ensure_ready()
            record_id = uuid4()
            while record_id in self._ids:
                record_id = uuid4()

            created_at = utcnow()
            if self._history and created_at < self._history[0].created_at:
                created_at = self._history[0].created_at

            try:
                record = PredictionRecord(
                    id=record_id,
                    category=disease,
                    at_risk=bool(at_risk),
                    probability=value,
                    created_at=created_at,
                    parameters=params,
                )
            except ValidationError as e:
                raise InvalidParametersError(f"Parameters are not serializable: {e}") from e

            self._history.insert(0, record)
            self._ids.add(record.id)
            logger.info(
                "Prediction recorded",
                record_id=str(record.id),
                category=disease.value,
                at_risk=record.at_risk,
                probability=record.probability,
            )
            self._persist(record)
            return _detached(record)

    def clear(self) -> int:
        """
        Remove every record and persist the empty history.

        Clearing an empty history succeeds and still writes the snapshot.

        Returns:
            The number of records removed.

        Raises:
            PersistenceWriteError: If the empty snapshot could not be written.
        """
        with self._lock:
            self._ensure_ready()
            removed = len(self._history)
            self._history = []
            # uuid4 ids do not repeat, so tracking ids of removed records is unnecessary.
            self._ids = set()
            logger.info("Prediction history cleared", removed=removed)
            self._persist(None)
            return removed

    def get_by_category(self, category: DiseaseCategory | str) -> tuple[PredictionRecord, ...]:
        """
        Records of one category, newest first.

        Returns:
            A tuple of matching records; empty when nothing matches.

        Raises:
            InvalidCategoryError: If the category is unknown.
        """
        disease = parse_category(category)
        with self._lock:
            self._ensure_ready()
            return tuple(
                _detached(record) for record in self._history if record.category == disease
            )

    def _ensure_ready(self) -> None:
        if self._state is StoreState.UNINITIALIZED:
            self.restore()

    def _load(self) -> list[PredictionRecord]:
        try:
            data = self.storage.read(self.storage_key)
        except PersistenceReadError as e:
            logger.warning(
                "Prediction history unreadable, starting empty",
                storage_key=self.storage_key,
                error=str(e),
            )
            return []
        if data is None:
            return []
        try:
            history = decode_snapshot(data)
        except CorruptSnapshotError as e:
            logger.warning(
                "Prediction history snapshot corrupt, discarding",
                storage_key=self.storage_key,
                error=str(e),
            )
            return []

        # A snapshot edited by hand may repeat ids; keep the newest copy.
        seen: set[UUID] = set()
        unique = []
        for record in history:
            if record.id in seen:
                logger.warning("Duplicate record id in snapshot", record_id=str(record.id))
                continue
            seen.add(record.id)
            unique.append(record)
        return unique

    def _persist(self, record: PredictionRecord | None) -> None:
        try:
            self.storage.write(self.storage_key, encode_snapshot(self._history))
        except PersistenceWriteError as e:
            logger.error(
                "Prediction history not persisted",
                storage_key=self.storage_key,
                records=len(self._history),
                error=str(e),
            )
            detached = _detached(record) if record is not None else None
            raise PersistenceWriteError(str(e), record=detached) from e
