import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from loguru import logger

from .storage import SnapshotRecord, SnapshotStore

_READ_CHUNK = 1024 * 1024


def fingerprint(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(_READ_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


@dataclass(frozen=True)
class DuplicateCheck:
    is_duplicate: bool
    newest: Optional[SnapshotRecord]
    pruned: Optional[SnapshotRecord] = None


class DuplicateDetector:
    """Compares the two newest captures of a camera and prunes the older one on a match.

    Digest equality is taken as image equality; there is no byte-wise fallback.
    """

    def __init__(self, store: SnapshotStore):
        self.store = store

    def check(self, camera_id: str) -> DuplicateCheck:
        records = self.store.list_records(camera_id)
        if not records:
            return DuplicateCheck(is_duplicate=False, newest=None)
        newest = records[0]
        if len(records) < 2:
            return DuplicateCheck(is_duplicate=False, newest=newest)

        previous = records[1]
        try:
            same = fingerprint(newest.path) == fingerprint(previous.path)
        except OSError as exc:
            logger.warning(
                "Could not fingerprint snapshots for {camera}: {error}",
                camera=camera_id,
                error=str(exc),
            )
            return DuplicateCheck(is_duplicate=False, newest=newest)
        if not same:
            return DuplicateCheck(is_duplicate=False, newest=newest)

        try:
            self.store.delete(previous)
        except OSError as exc:
            logger.error(
                "Failed to delete previous identical snapshot for {camera}: {error}",
                camera=camera_id,
                error=str(exc),
            )
            return DuplicateCheck(is_duplicate=True, newest=newest)
        return DuplicateCheck(is_duplicate=True, newest=newest, pruned=previous)
