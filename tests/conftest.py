from pathlib import Path

import pytest
import pytz

from camscribe.config import Settings


def make_settings(output_dir: Path, **overrides) -> Settings:
    values = dict(
        ha_url="http://ha.test:8123",
        ha_token="ha-token",
        snapshot_path="/local/snapshot.jpg",
        openai_api_key="sk-test",
        openai_model="gpt-4o",
        openai_base_url="https://api.openai.test/v1",
        output_dir=output_dir,
        timezone="UTC",
        tz=pytz.UTC,
        log_level="INFO",
        http_timeout_sec=5,
        describe_timeout_sec=5,
        notify_max_chars=240,
        status_port=0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path / "output")
