import functools
import json
from typing import Any

from aws_lambda_powertools import Logger

from common.config import load_settings
from common.exceptions import ConfigError, StoreError
from common.monitor import HumidityMonitor, build_monitor, log_startup

logger = Logger()

TRUTHY = frozenset({"1", "true", "yes", "on"})


def _response(status_code: int, body: dict[str, Any]) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }


@functools.cache
def get_monitor() -> HumidityMonitor:
    settings = load_settings()
    logger.setLevel(settings.log_level.value)
    log_startup(settings)
    return build_monitor(settings)


def _request_options(event: dict[str, Any]) -> dict[str, Any]:
    """Merge query string parameters and a JSON object body; the body wins."""
    options: dict[str, Any] = dict(event.get("queryStringParameters") or {})
    raw = event.get("body")
    if raw:
        try:
            body = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring request body that is not JSON")
        else:
            if isinstance(body, dict):
                options.update(body)
    return options


def _is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY


@logger.inject_lambda_context
def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    try:
        monitor = get_monitor()
    except ConfigError as exc:
        logger.error("Configuration errors", errors=exc.errors)
        return _response(500, {"error": "invalid_configuration", "detail": exc.errors})

    options = _request_options(event)

    if _is_truthy(options.get("reset", False)):
        try:
            deleted = monitor.reset_all()
        except StoreError as exc:
            logger.exception("Reset failed")
            return _response(502, {"error": "store_unavailable", "detail": str(exc)})
        return _response(200, {"ok": True, "reset": deleted})

    device_id = options.get("acknowledge")
    if device_id:
        acknowledged = monitor.acknowledge(str(device_id))
        return _response(200, {"ok": acknowledged, "acknowledged": str(device_id)})

    remaining = getattr(context, "get_remaining_time_in_millis", None)
    summary = monitor.run_once(remaining_time_ms=remaining)
    if summary.error is not None:
        return _response(502, {"error": "connection_failed", "detail": summary.error})
    return _response(200, {"ok": True, **summary.model_dump(exclude_none=True)})
