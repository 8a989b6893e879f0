import sys
from datetime import datetime
from typing import Callable, Optional

import click
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from .config import INTERVAL_CHOICES, CycleConfig, Settings, load_settings, resolve_prompt
from .homeassistant import (
    EntityState,
    HomeAssistantClient,
    HomeAssistantError,
    camera_entities,
    device_trackers,
    parse_states,
)
from .monitoring import Metrics, configure_logging
from .status import create_status_app, serve_status
from .storage import atomic_write_json
from .tasks import build_scan_cycle

MANUAL_TARGET = "manual"


def build_scheduler(job: Callable[[], object], settings: Settings, interval_min: int) -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone=settings.tz)
    # One cycle at a time: a tick that lands while a cycle is still running is dropped.
    scheduler.add_job(
        job,
        IntervalTrigger(minutes=interval_min, timezone=settings.tz),
        id="scan_cycle",
        next_run_time=datetime.now(settings.tz),
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


def run_forever(scheduler: BlockingScheduler) -> None:
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Stopping camera checks")
        if scheduler.running:
            scheduler.shutdown(wait=False)


def _pick_numbered(title: str, options: list[str]) -> str:
    click.echo(title)
    for index, option in enumerate(options, start=1):
        click.echo(f"  {index}) {option}")
    choice = click.prompt("Choice", type=click.IntRange(1, len(options)), default=1)
    return options[choice - 1]


def select_cameras(cameras: list[EntityState]) -> tuple[str, ...]:
    ids = [camera.entity_id for camera in cameras]
    click.echo("Select one or more camera entities:")
    for index, entity_id in enumerate(ids, start=1):
        click.echo(f"  {index}) {entity_id}")
    while True:
        raw = click.prompt("Cameras (comma separated numbers)", default="1")
        try:
            picks = [int(part) for part in raw.replace(" ", "").split(",") if part]
        except ValueError:
            picks = []
        if picks and all(1 <= pick <= len(ids) for pick in picks):
            return tuple(dict.fromkeys(ids[pick - 1] for pick in picks))
        click.echo("Please select at least one camera.")


def select_interval() -> int:
    value = click.prompt(
        "How often do you want to check the camera(s)? (minutes)",
        type=click.Choice([str(choice) for choice in INTERVAL_CHOICES]),
        default=str(INTERVAL_CHOICES[0]),
    )
    return int(value)


def ask_prompt() -> str:
    value = click.prompt(
        "Enter the prompt you want to use for image description (leave blank for default)",
        default="",
        show_default=False,
    )
    return resolve_prompt(value)


def select_device_tracker(trackers: list[str]) -> Optional[str]:
    if not trackers:
        logger.error("No device trackers found in entity states. Notifications will not be sent.")
        return None
    choice = _pick_numbered(
        "Select a device to send notifications to:",
        trackers + [MANUAL_TARGET],
    )
    if choice != MANUAL_TARGET:
        return choice
    while True:
        value = click.prompt("Enter the device_tracker entity name (e.g., device_tracker.my_phone)")
        if value.startswith("device_tracker."):
            return value
        click.echo("Device name must start with device_tracker.")


@click.command()
@click.option("--camera", "cameras", multiple=True, help="Camera entity id; repeat for several.")
@click.option("--interval", type=click.IntRange(min=1), default=None, help="Minutes between cycles.")
@click.option("--prompt", "user_prompt", default=None, help="Description prompt; blank uses the default.")
@click.option("--notify/--no-notify", default=None, help="Send mobile app notifications.")
@click.option("--target", default=None, help="device_tracker entity to notify.")
@click.option("--status-port", type=click.IntRange(0, 65535), default=None, help="Serve /api/health here.")
@click.option("--once", is_flag=True, help="Run a single cycle and exit.")
def cli(cameras, interval, user_prompt, notify, target, status_port, once):
    """Describe Home Assistant camera snapshots with a vision model."""
    try:
        settings = load_settings()
    except ValueError as exc:
        logger.error(
            "Missing or invalid configuration: {error}. Add a .env file with the required settings.",
            error=str(exc),
        )
        sys.exit(1)
    configure_logging(settings.logs_dir / "camscribe.log", settings.log_level)

    metrics = Metrics()
    client = HomeAssistantClient(settings, metrics)
    client.check_connection()

    try:
        raw_states = client.fetch_states()
    except HomeAssistantError as exc:
        logger.error("Could not load entity states: {error}", error=str(exc))
        sys.exit(1)
    atomic_write_json(settings.entity_states_path, raw_states)
    states = parse_states(raw_states)

    available = camera_entities(states)
    if not available:
        logger.error("No camera entities found.")
        sys.exit(1)

    if cameras:
        known = {camera.entity_id for camera in available}
        unknown = [camera for camera in cameras if camera not in known]
        if unknown:
            raise click.BadParameter(f"unknown camera(s): {', '.join(unknown)}", param_hint="--camera")
        selected = tuple(dict.fromkeys(cameras))
    else:
        selected = select_cameras(available)

    interval = interval or select_interval()
    prompt_text = resolve_prompt(user_prompt) if user_prompt is not None else ask_prompt()
    if notify is None:
        notify = click.confirm("Do you want to send device notifications?", default=False)
    notify_target = None
    if notify:
        notify_target = target or select_device_tracker(device_trackers(states))

    cycle = CycleConfig(
        cameras=selected,
        interval_min=interval,
        prompt=prompt_text,
        notify=notify,
        notify_target=notify_target,
    )
    scan = build_scan_cycle(settings, cycle, available, client, metrics)

    port = status_port if status_port is not None else settings.status_port
    if port:
        serve_status(create_status_app(settings, metrics, cycle.interval_min), port)
        logger.info("Status API listening on port {port}", port=port)

    if once:
        outcomes = scan.run()
        for camera_id, outcome in outcomes.items():
            logger.info("{camera}: {outcome}", camera=camera_id, outcome=outcome.value)
        return

    logger.info(
        "Starting camera check every {interval} minute(s). Press Ctrl+C to stop.",
        interval=cycle.interval_min,
    )
    run_forever(build_scheduler(scan.run, settings, cycle.interval_min))


if __name__ == "__main__":
    cli()
