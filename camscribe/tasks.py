from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from loguru import logger

from .capture import CaptureError, SnapshotCapture
from .config import CycleConfig, Settings
from .dedup import DuplicateDetector
from .describer import DescriptionError, VisionDescriber
from .homeassistant import EntityState, HomeAssistantClient, find_entity
from .monitoring import Metrics
from .notifier import NotificationRelay
from .storage import SnapshotStore


class CameraOutcome(str, Enum):
    UNKNOWN_CAMERA = "unknown_camera"
    RETRIEVE_FAILED = "retrieve_failed"
    DUPLICATE = "duplicate"
    DESCRIBE_FAILED = "describe_failed"
    DESCRIBED = "described"
    NOTIFIED = "notified"
    NOTIFY_FAILED = "notify_failed"
    ERROR = "error"


FAILED_OUTCOMES = {
    CameraOutcome.RETRIEVE_FAILED,
    CameraOutcome.DESCRIBE_FAILED,
    CameraOutcome.NOTIFY_FAILED,
    CameraOutcome.ERROR,
}

DESCRIBED_OUTCOMES = {
    CameraOutcome.DESCRIBED,
    CameraOutcome.NOTIFIED,
    CameraOutcome.NOTIFY_FAILED,
}


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class ScanCycle:
    """One pass over the selected cameras: capture, dedup, describe, notify.

    Cameras are handled one after another. Whatever happens to one camera, the
    next one still runs, and nothing is raised out of :meth:`run`.
    """

    def __init__(
        self,
        settings: Settings,
        cycle: CycleConfig,
        entities: Iterable[EntityState],
        capture: SnapshotCapture,
        detector: DuplicateDetector,
        describer: VisionDescriber,
        relay: Optional[NotificationRelay],
        metrics: Metrics,
    ):
        self.settings = settings
        self.cycle = cycle
        self.entities = tuple(entities)
        self.capture = capture
        self.detector = detector
        self.describer = describer
        self.relay = relay
        self.metrics = metrics

    def run(self) -> dict[str, CameraOutcome]:
        outcomes = {}
        for camera_id in self.cycle.cameras:
            try:
                outcome = self.process_camera(camera_id)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected error for {camera}: {error}", camera=camera_id, error=str(exc))
                outcome = CameraOutcome.ERROR
            self.metrics.record_camera_outcome(
                camera_id,
                outcome.value,
                failed=outcome in FAILED_OUTCOMES,
                timestamp_iso=now_utc_iso(),
                described=outcome in DESCRIBED_OUTCOMES,
            )
            outcomes[camera_id] = outcome
        self.metrics.record_cycle(now_utc_iso())
        return outcomes

    def process_camera(self, camera_id: str) -> CameraOutcome:
        entity = find_entity(self.entities, camera_id)
        if entity is None:
            logger.error("Entity {camera} not found.", camera=camera_id)
            return CameraOutcome.UNKNOWN_CAMERA

        self.capture.trigger(entity)

        try:
            record = self.capture.retrieve(entity)
        except CaptureError as exc:
            logger.error("Failed to retrieve photo for {camera}: {error}", camera=camera_id, error=str(exc))
            return CameraOutcome.RETRIEVE_FAILED

        check = self.detector.check(camera_id)
        if check.is_duplicate:
            if check.pruned is not None:
                self.metrics.duplicates_pruned_total += 1
                logger.info(
                    "No new updates for {camera}: latest snapshot is identical to previous ({path} deleted).",
                    camera=camera_id,
                    path=check.pruned.path.name,
                )
            else:
                logger.info("No new updates for {camera}: latest snapshot is identical to previous.", camera=camera_id)
            return CameraOutcome.DUPLICATE

        newest = check.newest or record
        try:
            result = self.describer.describe(newest, self.cycle.prompt)
        except DescriptionError as exc:
            logger.error("Vision API error for {camera}: {error}", camera=camera_id, error=str(exc))
            return CameraOutcome.DESCRIBE_FAILED
        logger.info(
            "Description for {camera} ({latency} ms):\n{text}",
            camera=camera_id,
            latency=result.latency_ms,
            text=result.text,
        )

        if self.relay is None or not self.cycle.notifications_active:
            return CameraOutcome.DESCRIBED
        sent = self.relay.send(self.cycle.notify_target, camera_id, result.text)
        return CameraOutcome.NOTIFIED if sent else CameraOutcome.NOTIFY_FAILED


def build_scan_cycle(
    settings: Settings,
    cycle: CycleConfig,
    entities: Iterable[EntityState],
    client: HomeAssistantClient,
    metrics: Metrics,
    describer: Optional[VisionDescriber] = None,
) -> ScanCycle:
    store = SnapshotStore(settings.output_dir)
    relay = NotificationRelay(client, metrics, settings.notify_max_chars) if cycle.notifications_active else None
    return ScanCycle(
        settings=settings,
        cycle=cycle,
        entities=entities,
        capture=SnapshotCapture(settings, client, store, metrics),
        detector=DuplicateDetector(store),
        describer=describer or VisionDescriber(settings, metrics),
        relay=relay,
        metrics=metrics,
    )
