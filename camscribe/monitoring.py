import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from loguru import logger

MIN_FREE_DISK_MB = 100


@dataclass
class ApiCallStats:
    success: int = 0
    failure: int = 0
    latency_total_ms: float = 0.0

    @property
    def avg_latency_ms(self) -> float:
        calls = self.success + self.failure
        return self.latency_total_ms / calls if calls else 0.0


@dataclass
class CameraStatus:
    """What happened to one camera on its most recent pass."""

    last_outcome: Optional[str] = None
    last_seen: Optional[str] = None
    last_described: Optional[str] = None
    failing: bool = False
    failures: int = 0
    runs: int = 0


@dataclass
class Metrics:
    start_time: float = field(default_factory=time.time)
    cycles_total: int = 0
    last_cycle_time: Optional[str] = None
    snapshots_captured_total: int = 0
    duplicates_pruned_total: int = 0
    descriptions_total: int = 0
    notifications_sent_total: int = 0
    cameras: Dict[str, CameraStatus] = field(default_factory=dict)
    api_calls: Dict[str, ApiCallStats] = field(
        default_factory=lambda: {"homeassistant": ApiCallStats(), "openai": ApiCallStats()}
    )

    def record_cycle(self, timestamp_iso: str) -> None:
        self.cycles_total += 1
        self.last_cycle_time = timestamp_iso

    def record_camera_outcome(
        self,
        camera_id: str,
        outcome: str,
        failed: bool,
        timestamp_iso: str,
        described: bool = False,
    ) -> None:
        status = self.cameras.setdefault(camera_id, CameraStatus())
        status.runs += 1
        status.last_outcome = outcome
        status.last_seen = timestamp_iso
        status.failing = failed
        if failed:
            status.failures += 1
        if described:
            status.last_described = timestamp_iso

    def failing_cameras(self) -> List[str]:
        return sorted(camera_id for camera_id, status in self.cameras.items() if status.failing)

    def record_api_call(self, provider: str, success: bool, latency_ms: float) -> None:
        stats = self.api_calls.setdefault(provider, ApiCallStats())
        if success:
            stats.success += 1
        else:
            stats.failure += 1
        stats.latency_total_ms += latency_ms

    def to_metrics_json(self, disk_used_mb: float, disk_free_mb: float) -> dict:
        cameras = {
            camera_id: {
                "last_outcome": status.last_outcome,
                "last_seen": status.last_seen,
                "last_described": status.last_described,
                "runs": status.runs,
                "failures": status.failures,
            }
            for camera_id, status in sorted(self.cameras.items())
        }
        return {
            "uptime_seconds": int(time.time() - self.start_time),
            "last_cycle": self.last_cycle_time,
            "cycles_total": self.cycles_total,
            "pipeline": {
                "snapshots_captured": self.snapshots_captured_total,
                "duplicates_pruned": self.duplicates_pruned_total,
                "descriptions": self.descriptions_total,
                "notifications_sent": self.notifications_sent_total,
            },
            "cameras": cameras,
            "api_calls": {
                provider: {
                    "success": stats.success,
                    "failure": stats.failure,
                    "avg_latency_ms": round(stats.avg_latency_ms, 2),
                }
                for provider, stats in self.api_calls.items()
            },
            "storage": {
                "disk_used_mb": round(disk_used_mb, 2),
                "disk_free_mb": round(disk_free_mb, 2),
            },
        }


def configure_logging(log_path, log_level: str) -> None:
    logger.remove()
    logger.add(sys.stdout, level=log_level, enqueue=True)
    logger.add(
        log_path,
        level=log_level,
        rotation="5 MB",
        retention="7 days",
        enqueue=True,
    )


def health_status(
    last_cycle_time: Optional[str],
    disk_free_mb: float,
    interval_min: int,
    failing_cameras: Optional[List[str]] = None,
) -> str:
    """``unhealthy`` when the output disk is nearly full.

    ``degraded`` before the first cycle, when the last cycle is more than two
    intervals old, or while any camera failed on its most recent pass.
    """
    if disk_free_mb < MIN_FREE_DISK_MB:
        return "unhealthy"
    if last_cycle_time is None or failing_cameras:
        return "degraded"
    if time.time() - _iso_to_epoch(last_cycle_time) > interval_min * 120:
        return "degraded"
    return "healthy"


def _iso_to_epoch(timestamp: str) -> float:
    try:
        return datetime.fromisoformat(timestamp.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0
