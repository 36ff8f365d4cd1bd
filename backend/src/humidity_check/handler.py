import functools
from typing import Any

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.data_classes import EventBridgeEvent, event_source

from common.config import load_settings
from common.monitor import HumidityMonitor, build_monitor, log_startup

logger = Logger()


@functools.cache
def get_monitor() -> HumidityMonitor:
    # ConfigError is left to propagate so a misconfigured function fails loudly
    settings = load_settings()
    logger.setLevel(settings.log_level.value)
    log_startup(settings)
    return build_monitor(settings)


@event_source(data_class=EventBridgeEvent)
@logger.inject_lambda_context
def lambda_handler(event: EventBridgeEvent, context: Any) -> dict[str, Any]:
    monitor = get_monitor()
    remaining = getattr(context, "get_remaining_time_in_millis", None)
    summary = monitor.run_once(remaining_time_ms=remaining)
    return {"ok": summary.error is None, **summary.model_dump(exclude_none=True)}
