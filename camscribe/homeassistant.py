from __future__ import annotations

import time
from typing import Any, Iterable, Optional

import httpx
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from .config import Settings
from .monitoring import Metrics

PROVIDER = "homeassistant"


class HomeAssistantError(RuntimeError):
    pass


class EntityState(BaseModel):
    entity_id: str
    state: Optional[str] = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    last_changed: Optional[str] = None
    last_reported: Optional[str] = None
    last_updated: Optional[str] = None

    @property
    def domain(self) -> str:
        return self.entity_id.split(".", 1)[0]

    @property
    def entity_picture(self) -> Optional[str]:
        value = self.attributes.get("entity_picture")
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None


def parse_states(raw: Any) -> list[EntityState]:
    if not isinstance(raw, list):
        raise HomeAssistantError(f"unexpected /api/states payload: {type(raw).__name__}")
    states = []
    for item in raw:
        try:
            states.append(EntityState.model_validate(item))
        except ValidationError as exc:
            logger.warning("Skipping malformed entity state: {error}", error=str(exc))
    return states


def camera_entities(states: Iterable[EntityState]) -> list[EntityState]:
    return [state for state in states if state.domain == "camera"]


def find_entity(states: Iterable[EntityState], entity_id: str) -> Optional[EntityState]:
    for state in states:
        if state.entity_id == entity_id:
            return state
    return None


def device_trackers(states: Iterable[EntityState]) -> list[str]:
    """Device trackers attached to ``person.*`` entities, in discovery order."""
    found: list[str] = []
    for state in states:
        if state.domain != "person":
            continue
        trackers = state.attributes.get("device_trackers") or []
        if isinstance(trackers, str):
            trackers = [trackers]
        for tracker in trackers:
            if isinstance(tracker, str) and tracker and tracker not in found:
                found.append(tracker)
    return found


def notify_service_for(target: str) -> str:
    """``device_tracker.my_phone`` -> ``mobile_app_my_phone``."""
    name = target
    if name.startswith("device_tracker."):
        name = name[len("device_tracker."):]
    return f"mobile_app_{name}"


class HomeAssistantClient:
    def __init__(
        self,
        settings: Settings,
        metrics: Optional[Metrics] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.settings = settings
        self.metrics = metrics
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.settings.ha_url,
            headers={"Authorization": f"Bearer {self.settings.ha_token}"},
            timeout=self.settings.http_timeout_sec,
            transport=self._transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        start = time.time()
        try:
            with self._client() as client:
                resp = client.request(method, path, **kwargs)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._record(False, start)
            raise HomeAssistantError(
                f"{method} {path} returned {exc.response.status_code} {exc.response.reason_phrase}"
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            self._record(False, start)
            raise HomeAssistantError(f"{method} {path} failed: {exc}") from exc
        self._record(True, start)
        return resp

    def _record(self, success: bool, start: float) -> None:
        if self.metrics is not None:
            self.metrics.record_api_call(PROVIDER, success, (time.time() - start) * 1000)

    def check_connection(self) -> bool:
        try:
            self._request("GET", "/api/")
        except HomeAssistantError as exc:
            logger.error("Error connecting to Home Assistant: {error}", error=str(exc))
            return False
        logger.success("Home Assistant is available.")
        return True

    def fetch_states(self) -> list[dict]:
        resp = self._request("GET", "/api/states")
        try:
            data = resp.json()
        except ValueError as exc:
            raise HomeAssistantError(f"invalid JSON from /api/states: {exc}") from exc
        if not isinstance(data, list):
            raise HomeAssistantError(f"unexpected /api/states payload: {type(data).__name__}")
        return data

    def trigger_snapshot(self, entity_id: str, filename: str) -> None:
        self._request(
            "POST",
            "/api/services/camera/snapshot",
            json={"entity_id": entity_id, "filename": filename},
        )

    def download_picture(self, picture_path: str) -> bytes:
        resp = self._request("GET", picture_path)
        return resp.content

    def send_notification(self, service: str, payload: dict) -> None:
        self._request("POST", f"/api/services/notify/{service}", json=payload)
