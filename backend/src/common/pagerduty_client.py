from typing import Any

import requests  # type: ignore[import-untyped]

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities import parameters

from .config import Severity
from .exceptions import GatewayError
from .models import AlertDetails
from .reconciler import dedup_key_for

logger = Logger()


class PagerDutyClient:
    """Sends trigger, resolve and acknowledge events to PagerDuty Events API v2.

    The integration routing key is read from Secrets Manager when sending.
    """

    EVENTS_URL = "https://events.pagerduty.com/v2/enqueue"
    SOURCE = "humidity-daemon"

    def __init__(self, routing_key_secret_name: str, severity: Severity = "error", timeout: float = 10.0) -> None:
        self.routing_key_secret_name = routing_key_secret_name
        self.severity = severity
        self.timeout = timeout

    def _routing_key(self) -> str:
        try:
            key = parameters.get_secret(self.routing_key_secret_name)
        except Exception as exc:  # noqa: BLE001
            raise GatewayError(f"Could not load PagerDuty routing key: {exc}") from exc
        if not key:
            raise GatewayError("PagerDuty routing key is empty")
        return str(key)

    def _send(self, event_action: str, dedup_key: str, payload: dict[str, Any]) -> dict[str, Any]:
        body = {
            "routing_key": self._routing_key(),
            "event_action": event_action,
            "dedup_key": dedup_key,
            "payload": payload,
        }
        try:
            resp = requests.post(self.EVENTS_URL, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise GatewayError(f"PagerDuty {event_action} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise GatewayError(f"PagerDuty {event_action} failed: {resp.status_code}", status=resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            raise GatewayError(f"PagerDuty {event_action} returned invalid JSON", status=resp.status_code) from exc
        if not isinstance(data, dict):
            raise GatewayError(f"PagerDuty {event_action} returned unexpected body", status=resp.status_code)
        if data.get("status") != "success":
            raise GatewayError(f"PagerDuty API error: {data.get('status')}", status=resp.status_code)
        return data

    def trigger(self, summary: str, source_key: str, details: AlertDetails, dedup_key: str | None = None) -> str:
        """Open (or re-notify) an incident; returns the dedup key PagerDuty used."""
        dedup_key = dedup_key or dedup_key_for(source_key)
        payload = {
            "summary": summary,
            "source": source_key,
            "severity": self.severity,
            "component": self.SOURCE,
            "group": "nest-monitoring",
            "class": "humidity",
            "custom_details": details.model_dump(mode="json", exclude_none=True),
        }
        data = self._send("trigger", dedup_key, payload)
        used_key = str(data.get("dedup_key") or dedup_key)
        logger.info("PagerDuty alert triggered", dedupKey=used_key)
        return used_key

    def resolve(self, dedup_key: str, summary: str) -> None:
        payload = {"summary": summary, "source": self.SOURCE, "severity": "info"}
        self._send("resolve", dedup_key, payload)
        logger.info("PagerDuty alert resolved", dedupKey=dedup_key)

    def acknowledge(self, dedup_key: str) -> None:
        payload = {"summary": "Alert acknowledged", "source": self.SOURCE, "severity": "info"}
        self._send("acknowledge", dedup_key, payload)
        logger.info("PagerDuty alert acknowledged", dedupKey=dedup_key)
