import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pytz
from dotenv import load_dotenv

from . import prompts

DEFAULT_OPENAI_MODEL = "gpt-4o"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
INTERVAL_CHOICES = (1, 5, 10)


def _parse_int(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    ha_url: str
    ha_token: str
    snapshot_path: str
    openai_api_key: str
    openai_model: str
    openai_base_url: str
    output_dir: Path
    timezone: str
    tz: pytz.BaseTzInfo
    log_level: str
    http_timeout_sec: int
    describe_timeout_sec: int
    notify_max_chars: int
    status_port: int

    @property
    def logs_dir(self) -> Path:
        return self.output_dir / "logs"

    @property
    def entity_states_path(self) -> Path:
        return self.output_dir / "entity-states.json"

    @property
    def server_snapshot_filename(self) -> str:
        relative = self.snapshot_path
        if relative.startswith("/local/"):
            relative = relative[len("/local/"):]
        return f"/config/www/{relative.lstrip('/')}"


@dataclass(frozen=True)
class CycleConfig:
    cameras: tuple[str, ...]
    interval_min: int
    prompt: str = prompts.DEFAULT_PROMPT
    notify: bool = False
    notify_target: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.cameras:
            raise ValueError("at least one camera must be selected")
        if self.interval_min <= 0:
            raise ValueError("interval must be > 0 minutes")

    @property
    def notifications_active(self) -> bool:
        return self.notify and bool(self.notify_target)


def resolve_prompt(value: Optional[str]) -> str:
    if value and value.strip():
        return value.strip()
    return prompts.DEFAULT_PROMPT


def load_settings() -> Settings:
    load_dotenv(override=False)

    timezone = os.getenv("TIMEZONE", "UTC")
    try:
        tz = pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError as exc:
        raise ValueError(f"TIMEZONE is not a known timezone: {timezone}") from exc

    settings = Settings(
        ha_url=os.getenv("HOME_ASSISTANT_URL", "").strip().rstrip("/"),
        ha_token=os.getenv("HOME_ASSISTANT_TOKEN", "").strip(),
        snapshot_path=os.getenv("SNAPSHOT_PATH", "").strip(),
        openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
        openai_model=os.getenv("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
        openai_base_url=os.getenv("OPENAI_BASE_URL", DEFAULT_OPENAI_BASE_URL).rstrip("/"),
        output_dir=Path(os.getenv("OUTPUT_DIR", "./output")),
        timezone=timezone,
        tz=tz,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        http_timeout_sec=_parse_int(os.getenv("HTTP_TIMEOUT_SEC"), 30),
        describe_timeout_sec=_parse_int(os.getenv("DESCRIBE_TIMEOUT_SEC"), 60),
        notify_max_chars=_parse_int(os.getenv("NOTIFY_MAX_CHARS"), 240),
        status_port=_parse_int(os.getenv("STATUS_PORT"), 0),
    )

    _validate_settings(settings)
    _ensure_dirs(settings)
    return settings


def _validate_settings(settings: Settings) -> None:
    errors = []
    if not settings.ha_url:
        errors.append("HOME_ASSISTANT_URL is required")
    if not settings.ha_token:
        errors.append("HOME_ASSISTANT_TOKEN is required")
    if not settings.snapshot_path:
        errors.append("SNAPSHOT_PATH is required")
    if not settings.openai_api_key:
        errors.append("OPENAI_API_KEY is required")
    if settings.http_timeout_sec <= 0:
        errors.append("HTTP_TIMEOUT_SEC must be > 0")
    if settings.describe_timeout_sec <= 0:
        errors.append("DESCRIBE_TIMEOUT_SEC must be > 0")
    if settings.notify_max_chars <= 0:
        errors.append("NOTIFY_MAX_CHARS must be > 0")
    if settings.status_port < 0 or settings.status_port > 65535:
        errors.append("STATUS_PORT must be 0-65535")
    if errors:
        raise ValueError("; ".join(errors))


def _ensure_dirs(settings: Settings) -> None:
    for directory in [settings.output_dir, settings.logs_dir]:
        directory.mkdir(parents=True, exist_ok=True)
