import base64
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
from loguru import logger

from . import prompts
from .config import Settings
from .image_validator import detect_mime
from .monitoring import Metrics
from .storage import SnapshotRecord

PROVIDER = "openai"
DEFAULT_MIME = "image/jpeg"


class DescriptionError(RuntimeError):
    pass


@dataclass(frozen=True)
class DescriptionResult:
    camera_id: str
    text: str
    record: SnapshotRecord
    latency_ms: float = 0.0


def encode_image(path: Path) -> tuple[str, str]:
    mime = detect_mime(path)
    if mime is None:
        logger.warning("Could not identify image format of {path}, sending as JPEG", path=str(path))
        mime = DEFAULT_MIME
    with open(path, "rb") as handle:
        data = base64.b64encode(handle.read()).decode("ascii")
    return mime, data


def _extract_text(payload: dict) -> str:
    choices = payload.get("choices") if isinstance(payload, dict) else None
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, list):
        content = " ".join(part.get("text", "") for part in content if isinstance(part, dict))
    if not isinstance(content, str):
        return ""
    return content.strip()


class VisionDescriber:
    """Single-shot image description through an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        settings: Settings,
        metrics: Metrics,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.settings = settings
        self.metrics = metrics
        self._transport = transport

    def describe(self, record: SnapshotRecord, prompt: str) -> DescriptionResult:
        try:
            mime, data = encode_image(record.path)
        except OSError as exc:
            raise DescriptionError(f"failed to read image file {record.path}: {exc}") from exc

        payload = {
            "model": self.settings.openai_model,
            "messages": prompts.description_messages(prompt, mime, data),
        }
        headers = {"Authorization": f"Bearer {self.settings.openai_api_key}"}
        start = time.time()
        try:
            with httpx.Client(timeout=self.settings.describe_timeout_sec, transport=self._transport) as client:
                resp = client.post(
                    f"{self.settings.openai_base_url}/chat/completions",
                    json=payload,
                    headers=headers,
                )
                resp.raise_for_status()
                result = resp.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            latency = (time.time() - start) * 1000
            self.metrics.record_api_call(PROVIDER, False, latency)
            raise DescriptionError(f"{PROVIDER} request failed: {exc}") from exc

        latency = (time.time() - start) * 1000
        self.metrics.record_api_call(PROVIDER, True, latency)
        text = _extract_text(result)
        if not text:
            logger.warning("{provider} returned no content for {camera}", provider=PROVIDER, camera=record.camera_id)
        self.metrics.descriptions_total += 1
        return DescriptionResult(
            camera_id=record.camera_id,
            text=text,
            record=record,
            latency_ms=round(latency, 2),
        )
