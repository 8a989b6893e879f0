import json
import os
import re
import tempfile
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

SNAPSHOT_PREFIX = "snapshot_"
SNAPSHOT_SUFFIX = ".jpg"
# Fixed width, zero padded, UTC and colon free: lexical order matches capture order.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S-%fZ"
_SNAPSHOT_NAME_RE = re.compile(
    r"^snapshot_(?P<name>.+)_(?P<ts>\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}Z)\.jpg$"
)


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def atomic_write_json(path: Path, data: Any) -> None:
    ensure_dir(path.parent)
    tmp_file = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=str(path.parent),
            delete=False,
        ) as tmp_file:
            json.dump(data, tmp_file, ensure_ascii=False, indent=2)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
        os.replace(tmp_file.name, path)
    finally:
        if tmp_file is not None and os.path.exists(tmp_file.name):
            try:
                os.remove(tmp_file.name)
            except OSError:
                pass


def atomic_write_bytes(path: Path, data: bytes) -> None:
    ensure_dir(path.parent)
    temp_path = path.with_suffix(".tmp")
    try:
        temp_path.write_bytes(data)
        temp_path.replace(path)
    finally:
        if temp_path.exists():
            temp_path.unlink(missing_ok=True)


def camera_object_id(camera_id: str) -> str:
    """``camera.front_door`` -> ``front_door``."""
    if camera_id.startswith("camera."):
        return camera_id[len("camera."):]
    return camera_id


def format_capture_time(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def snapshot_filename(camera_id: str, captured_at: datetime) -> str:
    return f"{SNAPSHOT_PREFIX}{camera_object_id(camera_id)}_{format_capture_time(captured_at)}{SNAPSHOT_SUFFIX}"


@dataclass(frozen=True)
class SnapshotRecord:
    camera_id: str
    captured_at: datetime
    path: Path


def parse_snapshot_path(path: Path) -> Optional[SnapshotRecord]:
    match = _SNAPSHOT_NAME_RE.match(path.name)
    if not match:
        return None
    try:
        captured_at = datetime.strptime(match.group("ts"), TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    return SnapshotRecord(
        camera_id=f"camera.{match.group('name')}",
        captured_at=captured_at,
        path=path,
    )


class SnapshotStore:
    """Per-camera image files in a single flat output directory."""

    def __init__(self, root: Path):
        self.root = root

    def list_records(self, camera_id: str) -> list[SnapshotRecord]:
        """Records for one camera, newest capture first."""
        if not self.root.exists():
            return []
        wanted = camera_object_id(camera_id)
        prefix = f"{SNAPSHOT_PREFIX}{wanted}_"
        records = []
        for path in self.root.glob(f"{prefix}*{SNAPSHOT_SUFFIX}"):
            if not path.is_file():
                continue
            record = parse_snapshot_path(path)
            if record is None or camera_object_id(record.camera_id) != wanted:
                continue
            records.append(replace(record, camera_id=camera_id))
        records.sort(key=lambda r: r.captured_at, reverse=True)
        return records

    def latest(self, camera_id: str) -> Optional[SnapshotRecord]:
        records = self.list_records(camera_id)
        return records[0] if records else None

    def save(self, camera_id: str, data: bytes, captured_at: Optional[datetime] = None) -> SnapshotRecord:
        ensure_dir(self.root)
        captured_at = (captured_at or datetime.now(timezone.utc)).astimezone(timezone.utc)
        newest = self.latest(camera_id)
        if newest is not None and captured_at <= newest.captured_at:
            captured_at = newest.captured_at + timedelta(microseconds=1)
        path = self.root / snapshot_filename(camera_id, captured_at)
        atomic_write_bytes(path, data)
        logger.debug("Stored {path} ({size} bytes)", path=str(path), size=len(data))
        return SnapshotRecord(camera_id=camera_id, captured_at=captured_at, path=path)

    def delete(self, record: SnapshotRecord) -> None:
        record.path.unlink()
