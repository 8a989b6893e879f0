import json
from datetime import datetime, timezone
from pathlib import Path

from camscribe import storage
from camscribe.storage import SnapshotStore


def test_atomic_write_json(tmp_path):
    path = tmp_path / "sample.json"
    storage.atomic_write_json(path, [{"entity_id": "camera.front_door"}])
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data[0]["entity_id"] == "camera.front_door"


def test_snapshot_filename_is_fixed_width_and_colon_free():
    dt = datetime(2025, 1, 2, 3, 4, 5, 6, tzinfo=timezone.utc)
    name = storage.snapshot_filename("camera.front_door", dt)
    assert name == "snapshot_front_door_2025-01-02T03-04-05-000006Z.jpg"
    assert ":" not in name
    record = storage.parse_snapshot_path(Path(name))
    assert record.camera_id == "camera.front_door"
    assert record.captured_at == dt


def test_list_records_newest_first(tmp_path):
    store = SnapshotStore(tmp_path)
    first = store.save("camera.front_door", b"a", datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc))
    second = store.save("camera.front_door", b"b", datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc))
    records = store.list_records("camera.front_door")
    assert [r.path for r in records] == [second.path, first.path]
    assert store.latest("camera.front_door") == second


def test_list_records_matches_camera_exactly(tmp_path):
    store = SnapshotStore(tmp_path)
    store.save("camera.front", b"a")
    store.save("camera.front_door", b"b")
    (tmp_path / "entity-states.json").write_text("[]", encoding="utf-8")
    (tmp_path / "snapshot_front_not-a-timestamp.jpg").write_bytes(b"x")

    assert [r.camera_id for r in store.list_records("camera.front")] == ["camera.front"]
    assert [r.camera_id for r in store.list_records("camera.front_door")] == ["camera.front_door"]


def test_save_keeps_capture_times_increasing(tmp_path):
    store = SnapshotStore(tmp_path)
    stamp = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    first = store.save("camera.garage", b"a", stamp)
    second = store.save("camera.garage", b"b", stamp)
    assert second.captured_at > first.captured_at
    assert second.path != first.path
    assert len(store.list_records("camera.garage")) == 2


def test_save_creates_output_dir(tmp_path):
    store = SnapshotStore(tmp_path / "missing" / "dir")
    record = store.save("camera.garage", b"frame")
    assert record.path.read_bytes() == b"frame"
    assert not list(record.path.parent.glob("*.tmp"))
