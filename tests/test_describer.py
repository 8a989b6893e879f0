import base64
import json
from dataclasses import replace
from datetime import datetime, timezone

import httpx
import pytest
from PIL import Image

from camscribe import prompts
from camscribe.describer import DescriptionError, VisionDescriber, encode_image
from camscribe.monitoring import Metrics
from camscribe.storage import SnapshotStore


def _record(tmp_path, payload: bytes = b"not-really-a-jpeg"):
    store = SnapshotStore(tmp_path)
    return store.save("camera.front_door", payload, datetime(2025, 1, 1, tzinfo=timezone.utc))


def _describer(settings, handler, metrics=None):
    return VisionDescriber(settings, metrics or Metrics(), transport=httpx.MockTransport(handler))


def test_encode_image_detects_png(tmp_path):
    path = tmp_path / "frame.jpg"
    Image.new("RGB", (4, 4), color=(10, 20, 30)).save(path, format="PNG")
    mime, data = encode_image(path)
    assert mime == "image/png"
    assert base64.b64decode(data) == path.read_bytes()


def test_encode_image_falls_back_to_jpeg(tmp_path):
    path = tmp_path / "frame.jpg"
    path.write_bytes(b"garbage")
    mime, _ = encode_image(path)
    assert mime == "image/jpeg"


def test_describe_request_shape(settings, tmp_path):
    record = _record(tmp_path)
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "  A courier at the door.  "}}]})

    metrics = Metrics()
    result = _describer(settings, handler, metrics).describe(record, "Who is there?")

    assert result.text == "A courier at the door."
    assert result.camera_id == "camera.front_door"
    assert result.record == record
    assert metrics.descriptions_total == 1
    assert metrics.api_calls["openai"].success == 1

    request = seen[0]
    assert str(request.url) == "https://api.openai.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["model"] == "gpt-4o"
    system, user = body["messages"]
    assert system == {"role": "system", "content": prompts.SYSTEM_PROMPT}
    assert user["content"][0] == {"type": "text", "text": "Who is there?"}
    expected = base64.b64encode(b"not-really-a-jpeg").decode("ascii")
    assert user["content"][1]["image_url"]["url"] == f"data:image/jpeg;base64,{expected}"


@pytest.mark.parametrize(
    "body",
    [
        {"choices": [{"message": {"content": None}}]},
        {"choices": []},
        {"choices": [None]},
        {"choices": [{"message": "hi"}]},
        {"choices": "nope"},
        ["not", "an", "object"],
    ],
)
def test_describe_unusable_content_returns_empty_text(settings, tmp_path, body):
    record = _record(tmp_path)
    metrics = Metrics()

    def handler(request):
        return httpx.Response(200, json=body)

    result = _describer(settings, handler, metrics).describe(record, "prompt")
    assert result.text == ""
    assert metrics.descriptions_total == 1


def test_describe_invalid_base_url_raises(settings, tmp_path):
    record = _record(tmp_path)
    settings = replace(settings, openai_base_url="https://api.openai.test/\x00v1")

    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(DescriptionError):
        _describer(settings, handler).describe(record, "prompt")


def test_describe_http_error_raises(settings, tmp_path):
    record = _record(tmp_path)
    metrics = Metrics()

    def handler(request):
        return httpx.Response(429, json={"error": {"message": "rate limited"}})

    with pytest.raises(DescriptionError):
        _describer(settings, handler, metrics).describe(record, "prompt")
    assert metrics.api_calls["openai"].failure == 1
    assert metrics.descriptions_total == 0


def test_describe_missing_file_raises(settings, tmp_path):
    record = _record(tmp_path)
    record.path.unlink()

    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(DescriptionError):
        _describer(settings, handler).describe(record, "prompt")
