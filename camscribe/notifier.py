from loguru import logger

from .homeassistant import HomeAssistantClient, HomeAssistantError, notify_service_for
from .monitoring import Metrics

NO_DESCRIPTION = "No description returned."


def chunk_message(text: str, max_len: int) -> list[str]:
    if max_len <= 0:
        raise ValueError("max_len must be > 0")
    return [text[i:i + max_len] for i in range(0, len(text), max_len)]


def build_payload(camera_id: str, chunk: str, part: int, multipart: bool) -> dict:
    title = f"Camera update: {camera_id}"
    if multipart:
        title += f" (part {part})"
    return {
        "message": chunk,
        "title": title,
        "data": {
            "channel": "alert",
            "importance": "max",
            "ttl": 0,
            "priority": "high",
            "notification": {
                "style": "bigtext",
                "bigText": chunk,
            },
        },
    }


class NotificationRelay:
    def __init__(self, client: HomeAssistantClient, metrics: Metrics, max_chars: int):
        self.client = client
        self.metrics = metrics
        self.max_chars = max_chars

    def send(self, target: str, camera_id: str, text: str) -> int:
        """Deliver ``text`` in order, one notification per chunk.

        Stops at the first failed chunk. Returns the number of chunks delivered.
        """
        message = text or NO_DESCRIPTION
        service = notify_service_for(target)
        chunks = chunk_message(message, self.max_chars)
        multipart = len(chunks) > 1
        sent = 0
        for index, chunk in enumerate(chunks, start=1):
            label = f" (part {index})" if multipart else ""
            try:
                self.client.send_notification(service, build_payload(camera_id, chunk, index, multipart))
            except HomeAssistantError as exc:
                logger.error(
                    "Failed to send notification for {camera}{label}: {error}",
                    camera=camera_id,
                    label=label,
                    error=str(exc),
                )
                break
            sent += 1
            self.metrics.notifications_sent_total += 1
            logger.success("Notification sent to {target}{label}.", target=target, label=label)
        return sent
