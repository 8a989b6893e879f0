import shutil
import threading

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .config import Settings
from .monitoring import Metrics, health_status


def create_status_app(settings: Settings, metrics: Metrics, interval_min: int) -> FastAPI:
    app = FastAPI(title="camscribe")

    @app.get("/api/health")
    def api_health():
        usage = shutil.disk_usage(settings.output_dir)
        disk_free_mb = usage.free / (1024 * 1024)
        failing = metrics.failing_cameras()
        status = health_status(metrics.last_cycle_time, disk_free_mb, interval_min, failing)
        return JSONResponse(
            {
                "status": status,
                "last_cycle_time": metrics.last_cycle_time,
                "cycles_total": metrics.cycles_total,
                "failing_cameras": failing,
                "disk_free_mb": round(disk_free_mb, 2),
            },
            status_code=200 if status in {"healthy", "degraded"} else 503,
        )

    @app.get("/api/metrics")
    def api_metrics():
        usage = shutil.disk_usage(settings.output_dir)
        disk_used_mb = usage.used / (1024 * 1024)
        disk_free_mb = usage.free / (1024 * 1024)
        return JSONResponse(metrics.to_metrics_json(disk_used_mb, disk_free_mb))

    return app


def serve_status(app: FastAPI, port: int, host: str = "0.0.0.0") -> threading.Thread:
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, name="status-api", daemon=True)
    thread.start()
    return thread
