import pytest

import db
from sat_mirror.storage import JsonFileStorage, MemoryStorage, ModuleStorageKeys, SessionStateStorage, safe_name


def test_module_storage_keys():
    keys = ModuleStorageKeys("u1", 7, 3)
    assert keys.snapshot == "sat-u1-test-7-module-3"
    assert keys.timer == "sat-u1-test-7-module-3-timer"
    assert keys.last_question == "sat-u1-test-7-module-3-last-question"


def test_memory_storage_round_trips_json():
    storage = MemoryStorage()
    storage.set("a", {"x": (1, 2)})
    assert storage.get("a") == {"x": [1, 2]}
    storage.remove("a")
    storage.remove("a")
    assert storage.get("a") is None


def test_session_state_storage_namespaces_values():
    state = {}
    storage = SessionStateStorage(state)
    storage.set("k", [1])
    assert state["sat_mirror"] == {"k": [1]}
    assert storage.get("k") == [1]
    storage.remove("k")
    assert storage.get("k") is None


def test_json_file_storage_survives_new_instance(tmp_path):
    JsonFileStorage(tmp_path).set("sat-u/1-test-7", {"startTime": 1, "endTime": 2})
    reopened = JsonFileStorage(tmp_path)
    assert reopened.get("sat-u/1-test-7") == {"startTime": 1, "endTime": 2}
    reopened.remove("sat-u/1-test-7")
    reopened.remove("sat-u/1-test-7")
    assert reopened.get("sat-u/1-test-7") is None


def test_json_file_storage_ignores_corrupt_entry(tmp_path):
    storage = JsonFileStorage(tmp_path)
    storage.set("k", 1)
    (tmp_path / "k.json").write_text("{not json", encoding="utf-8")
    assert storage.get("k") is None


@pytest.mark.parametrize("user_id", ["../../escaped", "/tmp/escaped", "a/../../escaped", "student 1"])
def test_device_storage_stays_under_the_storage_dir(monkeypatch, tmp_path, user_id):
    root = tmp_path / "store"
    monkeypatch.setattr(db, "STORAGE_DIR", root)

    storage = db.get_device_storage(user_id)
    storage.set("k", 1)
    assert storage.directory.parent == root.resolve()
    assert [p.name for p in root.resolve().rglob("*.json")] == ["k.json"]
    assert not (tmp_path / "escaped").exists()


@pytest.mark.parametrize("user_id", ["", ".", "..", "..."])
def test_device_storage_rejects_empty_user_ids(monkeypatch, tmp_path, user_id):
    monkeypatch.setattr(db, "STORAGE_DIR", tmp_path / "store")
    with pytest.raises(ValueError):
        db.get_device_storage(user_id)


def test_safe_name_is_a_single_path_segment():
    assert safe_name("sat-u/1-test-7") == "sat-u_1-test-7"
    assert safe_name("../x") == ".._x"
    assert safe_name("Student_1.a-b") == "Student_1.a-b"
