import math

import pytest

from camscribe.homeassistant import HomeAssistantError
from camscribe.monitoring import Metrics
from camscribe.notifier import NO_DESCRIPTION, NotificationRelay, chunk_message


class FakeClient:
    def __init__(self, fail_on_call=None):
        self.calls = []
        self.fail_on_call = fail_on_call

    def send_notification(self, service, payload):
        if self.fail_on_call is not None and len(self.calls) + 1 == self.fail_on_call:
            self.calls.append((service, payload))
            raise HomeAssistantError("503 Service Unavailable")
        self.calls.append((service, payload))


@pytest.mark.parametrize("length,max_len", [(0, 240), (1, 240), (240, 240), (241, 240), (500, 240), (17, 4)])
def test_chunking_law(length, max_len):
    text = "".join(chr(ord("a") + i % 26) for i in range(length))
    chunks = chunk_message(text, max_len)
    assert len(chunks) == math.ceil(length / max_len)
    assert all(len(chunk) <= max_len for chunk in chunks)
    assert "".join(chunks) == text


def test_chunk_size_must_be_positive():
    with pytest.raises(ValueError):
        chunk_message("abc", 0)


def test_long_description_sends_three_parts():
    client = FakeClient()
    relay = NotificationRelay(client, Metrics(), max_chars=240)
    text = "x" * 500

    sent = relay.send("device_tracker.pixel_9", "camera.front_door", text)

    assert sent == 3
    assert len(client.calls) == 3
    titles = [payload["title"] for _, payload in client.calls]
    assert titles == [
        "Camera update: camera.front_door (part 1)",
        "Camera update: camera.front_door (part 2)",
        "Camera update: camera.front_door (part 3)",
    ]
    assert {service for service, _ in client.calls} == {"mobile_app_pixel_9"}
    assert "".join(payload["message"] for _, payload in client.calls) == text


def test_short_description_has_plain_title_and_payload_shape():
    client = FakeClient()
    metrics = Metrics()
    relay = NotificationRelay(client, metrics, max_chars=240)

    relay.send("device_tracker.pixel_9", "camera.garage", "A car is parked.")

    service, payload = client.calls[0]
    assert service == "mobile_app_pixel_9"
    assert payload["title"] == "Camera update: camera.garage"
    assert payload["message"] == "A car is parked."
    assert payload["data"] == {
        "channel": "alert",
        "importance": "max",
        "ttl": 0,
        "priority": "high",
        "notification": {"style": "bigtext", "bigText": "A car is parked."},
    }
    assert metrics.notifications_sent_total == 1


def test_empty_description_uses_placeholder():
    client = FakeClient()
    NotificationRelay(client, Metrics(), max_chars=240).send("device_tracker.p", "camera.garage", "")
    assert client.calls[0][1]["message"] == NO_DESCRIPTION


def test_failed_chunk_stops_remaining_parts():
    client = FakeClient(fail_on_call=2)
    metrics = Metrics()
    relay = NotificationRelay(client, metrics, max_chars=10)

    sent = relay.send("device_tracker.p", "camera.garage", "y" * 35)

    assert sent == 1
    assert len(client.calls) == 2
    assert metrics.notifications_sent_total == 1
