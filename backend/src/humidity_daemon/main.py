import signal
import threading
from types import FrameType

from aws_lambda_powertools import Logger

from common.config import load_settings
from common.exceptions import ConfigError
from common.monitor import HumidityMonitor, build_monitor, log_startup

logger = Logger()


def run_forever(monitor: HumidityMonitor, interval_secs: float, stop: threading.Event) -> int:
    """Poll every interval until stop is set. Returns the number of polls run."""
    polls = 0
    while not stop.is_set():
        try:
            monitor.run_once()
        except Exception:  # noqa: BLE001
            logger.exception("Poll failed; trying again next interval")
        polls += 1
        stop.wait(interval_secs)
    return polls


def main() -> int:
    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error("Configuration errors", errors=exc.errors)
        return 1

    logger.setLevel(settings.log_level.value)
    logger.info("Starting humidity daemon")
    log_startup(settings)

    monitor = build_monitor(settings)
    if not monitor.test_connection():
        logger.error("Failed to connect to Nest API. Please check your configuration.")
        return 1

    stop = threading.Event()

    def _stop(signum: int, _frame: FrameType | None) -> None:
        logger.info("Stopping humidity daemon", signal=signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    logger.info(f"Daemon started. Monitoring every {settings.check_interval_minutes} minutes.")
    run_forever(monitor, settings.check_interval_minutes * 60, stop)
    logger.info("Daemon stopped.")
    return 0
