import json
import math
import threading
from uuid import uuid4

import pytest
from pydantic import ValidationError

from medpredict.exceptions import (
    InvalidCategoryError,
    InvalidParametersError,
    InvalidProbabilityError,
    PersistenceReadError,
    PersistenceWriteError,
)
from medpredict.models.models import DiseaseCategory
from medpredict.services.history_store import (
    DEFAULT_STORAGE_KEY,
    HistoryStore,
    StoreState,
    decode_snapshot,
)
from medpredict.storage.snapshot_storage import MemorySnapshotStorage


def test_single_heart_record(store):
    record = store.add("heart", True, 0.73, {"age": 54, "cholesterol": 240})

    assert len(store.history) == 1
    head = store.history[0]
    assert head == record
    assert head.category is DiseaseCategory.HEART
    assert head.probability == 0.73
    assert head.at_risk is True
    assert head.parameters == {"age": 54, "cholesterol": 240}
    assert store.get_by_category("diabetes") == ()
    assert len(store.get_by_category("heart")) == 1


def test_newest_first_and_category_filter(store):
    heart_1 = store.add("heart", False, 0.3, {"age": 40})
    diabetes = store.add("diabetes", True, 0.8, {"glucose": 180})
    heart_2 = store.add(DiseaseCategory.HEART, True, 0.6, {"age": 70})

    assert store.history == (heart_2, diabetes, heart_1)
    assert store.get_by_category("heart") == (heart_2, heart_1)
    assert store.get_by_category(DiseaseCategory.DIABETES) == (diabetes,)
    assert store.get_by_category("kidney") == ()


def test_created_at_is_non_decreasing(store):
    for i in range(20):
        store.add("liver", False, 0.2, {"i": i})

    stamps = [record.created_at for record in reversed(store.history)]
    assert stamps == sorted(stamps)
    assert all(stamp.tzinfo is not None for stamp in stamps)


def test_ids_are_unique_across_clears(store):
    seen = set()
    for _ in range(10):
        seen.add(store.add("kidney", False, 0.1, {}).id)
    store.clear()
    for _ in range(10):
        seen.add(store.add("kidney", True, 0.9, {}).id)

    assert len(seen) == 20
    assert len(store) == 10


def test_clear_is_idempotent(store, memory_storage):
    store.add("heart", True, 0.7, {})
    store.add("liver", False, 0.2, {})

    store.clear()
    store.clear()

    assert store.history == ()
    for category in DiseaseCategory:
        assert store.get_by_category(category) == ()
    assert decode_snapshot(memory_storage.read(DEFAULT_STORAGE_KEY)) == []


@pytest.mark.parametrize("category", ["lung", "", "HEART", None, 3])
def test_add_rejects_unknown_category(store, memory_storage, category):
    with pytest.raises(InvalidCategoryError):
        store.add(category, True, 0.5, {})
    assert store.history == ()
    assert memory_storage.read(DEFAULT_STORAGE_KEY) is None


@pytest.mark.parametrize("probability", [-0.01, 1.01, math.nan, math.inf, "0.5", True, None])
def test_add_rejects_bad_probability(store, probability):
    with pytest.raises(InvalidProbabilityError):
        store.add("heart", True, probability, {})
    assert store.history == ()


@pytest.mark.parametrize("probability", [0.0, 0.05, 0.95, 1.0, 1])
def test_add_accepts_full_probability_range(store, probability):
    record = store.add("diabetes", False, probability, {})
    assert record.probability == float(probability)


@pytest.mark.parametrize("parameters", [None, [("age", 1)], "age=1", {1: "x"}])
def test_add_rejects_bad_parameters(store, parameters):
    with pytest.raises(InvalidParametersError):
        store.add("heart", True, 0.5, parameters)
    assert store.history == ()


def test_get_by_category_rejects_unknown_category(store):
    with pytest.raises(InvalidCategoryError):
        store.get_by_category("lung")


def test_views_do_not_alias_history(store):
    store.add("heart", True, 0.7, {"age": 60})
    view = store.get_by_category("heart")
    full = store.history

    assert isinstance(view, tuple)
    assert isinstance(full, tuple)
    with pytest.raises(ValidationError):
        view[0].id = uuid4()

    store.add("heart", False, 0.2, {"age": 30})
    assert len(view) == 1
    assert len(store.get_by_category("heart")) == 2


def test_parameters_are_copied_on_add(store):
    params = {"age": 54}
    record = store.add("heart", True, 0.7, params)
    params["age"] = 99
    assert record.parameters == {"age": 54}


def test_nested_parameters_are_copied_on_add(store):
    params = {"panel": {"alt": 30}}
    store.add("liver", False, 0.2, params)
    params["panel"]["alt"] = 999
    assert store.history[0].parameters == {"panel": {"alt": 30}}


def test_returned_records_cannot_rewrite_history(store, memory_storage):
    added = store.add("heart", True, 0.7, {"age": 54, "panel": {"ldl": 130}})
    added.parameters["age"] = 1

    view = store.get_by_category("heart")
    view[0].parameters["age"] = 999
    view[0].parameters["injected"] = "x"
    store.history[0].parameters["panel"]["ldl"] = 0
    store.restore()[0].parameters.clear()

    assert store.history[0].parameters == {"age": 54, "panel": {"ldl": 130}}
    assert store.get_by_category("heart")[0].parameters == {"age": 54, "panel": {"ldl": 130}}

    store.add("diabetes", False, 0.3, {})
    stored = decode_snapshot(memory_storage.read(DEFAULT_STORAGE_KEY))
    assert stored[1].parameters == {"age": 54, "panel": {"ldl": 130}}


def test_clear_returns_removed_count(store):
    store.add("heart", True, 0.7, {})
    store.add("kidney", False, 0.2, {})

    assert store.clear() == 2
    assert store.clear() == 0


def test_round_trip_through_storage(memory_storage):
    first = HistoryStore(memory_storage)
    first.restore()
    first.add("heart", True, 0.73, {"age": 54, "cholesterol": 240})
    first.add(
        "liver",
        False,
        0.25,
        {
            "bilirubinTotal": 1.2,
            "notes": "fasting",
            "smoker": False,
            "panel": {"alt": 30, "ast": {"value": 28, "unit": "U/L"}},
            "history": [1, "two", 3.5],
        },
    )
    first.add("kidney", False, 0.1, {})

    second = HistoryStore(memory_storage)
    restored = second.restore()

    assert restored == first.history
    assert second.get_by_category("liver")[0].parameters["panel"]["ast"]["unit"] == "U/L"
    assert second.get_by_category("liver")[0].parameters["smoker"] is False


def test_round_trip_through_file_storage(file_storage):
    first = HistoryStore(file_storage, storage_key="history")
    first.add("diabetes", True, 0.81, {"glucose": 190, "bmi": 31.5})

    second = HistoryStore(file_storage, storage_key="history")
    assert second.restore() == first.history


def test_snapshot_envelope_layout(store, memory_storage):
    record = store.add("heart", True, 0.73, {"age": 54})
    payload = json.loads(memory_storage.read(DEFAULT_STORAGE_KEY))

    assert payload["version"] == 0
    stored = payload["state"]["history"][0]
    assert stored["id"] == str(record.id)
    assert stored["category"] == "heart"
    assert stored["at_risk"] is True
    assert stored["probability"] == 0.73
    assert stored["parameters"] == {"age": 54}


def test_restore_ignores_unknown_fields_and_defaults_missing():
    storage = MemorySnapshotStorage()
    storage.write(
        DEFAULT_STORAGE_KEY,
        json.dumps(
            {
                "state": {
                    "history": [
                        {
                            "id": "0b7e6f0e-3a1c-4f7e-9a55-5c3f0d2b9d11",
                            "category": "kidney",
                            "at_risk": False,
                            "probability": 0.14,
                            "created_at": "2026-01-05T10:00:00Z",
                            "doctor_note": "added by a newer version",
                        }
                    ],
                    "filters": ["heart"],
                },
                "version": 0,
                "written_by": "medpredict 2.0",
            }
        ),
    )

    store = HistoryStore(storage)
    history = store.restore()

    assert len(history) == 1
    assert history[0].category is DiseaseCategory.KIDNEY
    assert history[0].parameters == {}


@pytest.mark.parametrize(
    "payload",
    [
        "{not json",
        "[]",
        json.dumps({"state": {"history": [{"id": "x"}]}}),
        json.dumps({"state": {"history": [{
            "id": "0b7e6f0e-3a1c-4f7e-9a55-5c3f0d2b9d11",
            "category": "lung",
            "at_risk": False,
            "probability": 0.14,
            "created_at": "2026-01-05T10:00:00Z",
        }]}}),
    ],
)
def test_corrupt_snapshot_restores_empty(payload):
    storage = MemorySnapshotStorage()
    storage.write(DEFAULT_STORAGE_KEY, payload)

    store = HistoryStore(storage)
    assert store.restore() == ()
    assert store.state is StoreState.READY

    store.add("heart", True, 0.7, {})
    assert len(store) == 1


def test_unreadable_storage_restores_empty():
    class UnreadableStorage(MemorySnapshotStorage):
        def read(self, key):
            raise PersistenceReadError("permission denied")

    store = HistoryStore(UnreadableStorage())
    assert store.restore() == ()


def test_duplicate_ids_in_snapshot_are_dropped(store, memory_storage):
    record = store.add("heart", True, 0.7, {})
    data = json.loads(memory_storage.read(DEFAULT_STORAGE_KEY))
    data["state"]["history"].append(data["state"]["history"][0])
    memory_storage.write(DEFAULT_STORAGE_KEY, json.dumps(data))

    restored = HistoryStore(memory_storage).restore()
    assert restored == (record,)


def test_lazy_restore_on_first_access(memory_storage):
    HistoryStore(memory_storage).add("heart", True, 0.7, {"age": 50})

    store = HistoryStore(memory_storage)
    assert store.state is StoreState.UNINITIALIZED
    assert len(store.get_by_category("heart")) == 1
    assert store.state is StoreState.READY


def test_write_failure_keeps_record_in_memory(failing_storage):
    store = HistoryStore(failing_storage)

    with pytest.raises(PersistenceWriteError) as exc_info:
        store.add("heart", True, 0.73, {"age": 54})

    assert exc_info.value.record is not None
    assert store.history == (exc_info.value.record,)
    assert failing_storage.attempts == 1


def test_clear_write_failure_still_clears(failing_storage):
    store = HistoryStore(failing_storage)
    with pytest.raises(PersistenceWriteError):
        store.add("heart", True, 0.73, {})

    with pytest.raises(PersistenceWriteError) as exc_info:
        store.clear()

    assert exc_info.value.record is None
    assert store.history == ()


def test_concurrent_adds_are_serialized(store, memory_storage):
    categories = list(DiseaseCategory)
    per_thread = 25

    def worker(n):
        for i in range(per_thread):
            store.add(categories[n % len(categories)], i % 2 == 0, 0.5, {"thread": n, "i": i})

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    history = store.history
    assert len(history) == 8 * per_thread
    assert len({record.id for record in history}) == len(history)
    assert decode_snapshot(memory_storage.read(DEFAULT_STORAGE_KEY)) == list(history)

    # Each thread's records appear newest first
    for n in range(8):
        mine = [r.parameters["i"] for r in history if r.parameters["thread"] == n]
        assert mine == sorted(mine, reverse=True)
