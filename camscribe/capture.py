from loguru import logger

from .config import Settings
from .homeassistant import EntityState, HomeAssistantClient, HomeAssistantError
from .monitoring import Metrics
from .storage import SnapshotRecord, SnapshotStore


class CaptureError(RuntimeError):
    pass


class SnapshotCapture:
    """Triggers a fresh camera snapshot on the server and pulls the current frame."""

    def __init__(
        self,
        settings: Settings,
        client: HomeAssistantClient,
        store: SnapshotStore,
        metrics: Metrics,
    ):
        self.settings = settings
        self.client = client
        self.store = store
        self.metrics = metrics

    def trigger(self, entity: EntityState) -> bool:
        """Ask the server to write a new frame. Failure is logged, never raised."""
        try:
            self.client.trigger_snapshot(entity.entity_id, self.settings.server_snapshot_filename)
        except HomeAssistantError as exc:
            logger.warning(
                "Failed to trigger snapshot for {camera}: {error}",
                camera=entity.entity_id,
                error=str(exc),
            )
            return False
        logger.success("Snapshot triggered for {camera}", camera=entity.entity_id)
        return True

    def retrieve(self, entity: EntityState) -> SnapshotRecord:
        picture = entity.entity_picture
        if not picture:
            raise CaptureError(f"{entity.entity_id} has no entity_picture attribute")
        # entity_picture carries an access token in its query string
        logger.info("Attempting to download {url}", url=f"{self.settings.ha_url}{picture.split('?', 1)[0]}")
        try:
            data = self.client.download_picture(picture)
        except HomeAssistantError as exc:
            raise CaptureError(f"failed to download image: {exc}") from exc
        if not data:
            raise CaptureError(f"empty image returned for {entity.entity_id}")
        try:
            record = self.store.save(entity.entity_id, data)
        except OSError as exc:
            raise CaptureError(f"failed to save image: {exc}") from exc
        self.metrics.snapshots_captured_total += 1
        logger.success("Image saved to {path}", path=str(record.path))
        return record
