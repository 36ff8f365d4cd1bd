from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Final, Protocol

from aws_lambda_powertools import Logger
from pydantic import BaseModel

from .alert_store import AlertStore
from .config import Settings
from .ddb import get_dynamodb
from .exceptions import GatewayError, StoreError
from .models import AlertDetails, AlertRecord, Reading
from .nest_client import NestClient
from .pagerduty_client import PagerDutyClient
from .reconciler import Action, AlertPolicy, Decision, ResolveEffect, TriggerEffect, alert_summary, reconcile

logger = Logger()

# Stop picking up new devices when the invocation has less time than this left
MIN_REMAINING_MS: Final[int] = 5_000


class ReadingSource(Protocol):
    def fetch_readings(self) -> list[Reading]: ...


class PagingGateway(Protocol):
    def trigger(self, summary: str, source_key: str, details: AlertDetails, dedup_key: str | None = None) -> str: ...

    def resolve(self, dedup_key: str, summary: str) -> None: ...

    def acknowledge(self, dedup_key: str) -> None: ...


class Outcome(StrEnum):
    TRIGGERED = "triggered"
    RESOLVED = "resolved"
    SUPPRESSED = "suppressed"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class PollSummary(BaseModel):
    readings: int = 0
    triggered: int = 0
    resolved: int = 0
    suppressed: int = 0
    unchanged: int = 0
    failed: int = 0
    skipped: int = 0
    error: str | None = None

    def count(self, outcome: Outcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def notify_fallback(message: str, **fields: Any) -> None:
    """Local notification used when the paging service cannot be reached."""
    logger.warning(f"[FALLBACK] {message}", **fields)


class HumidityMonitor:
    """Runs one poll cycle: fetch readings, reconcile each device, apply the result.

    Devices are independent. Any failure for one device is logged and the
    cycle moves on; nothing is retried before the next tick.
    """

    def __init__(
        self,
        source: ReadingSource,
        store: AlertStore,
        gateway: PagingGateway,
        policy: AlertPolicy,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.source = source
        self.store = store
        self.gateway = gateway
        self.policy = policy
        self.clock = clock

    def run_once(self, remaining_time_ms: Callable[[], int] | None = None) -> PollSummary:
        summary = PollSummary()
        logger.info("Checking humidity levels")
        try:
            readings = self.source.fetch_readings()
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to fetch humidity readings")
            summary.error = str(exc)
            return summary

        summary.readings = len(readings)
        if not readings:
            logger.info("No thermostats with humidity data found")
            return summary

        for index, reading in enumerate(readings):
            if remaining_time_ms is not None and remaining_time_ms() < MIN_REMAINING_MS:
                summary.skipped = len(readings) - index
                logger.warning("Out of time; remaining devices wait for the next poll", skipped=summary.skipped)
                break
            try:
                outcome = self.process_reading(reading)
            except Exception:  # noqa: BLE001
                logger.exception("Unexpected error processing reading", deviceId=reading.deviceId)
                outcome = Outcome.FAILED
            summary.count(outcome)

        logger.info("Poll complete", **summary.model_dump(exclude_none=True))
        return summary

    def process_reading(self, reading: Reading) -> Outcome:
        device_id = reading.deviceId
        logger.info("Humidity reading", deviceId=device_id, value=reading.value)
        try:
            stored = self.store.get(device_id)
        except StoreError:
            logger.exception("Could not load alert record; deferring to next poll", deviceId=device_id)
            return Outcome.FAILED

        decision = reconcile(reading, stored, self.policy, self.clock())

        if decision.action is Action.SUPPRESS:
            logger.info("Skipping alert (cooldown active)", deviceId=device_id, value=reading.value)
            return Outcome.SUPPRESSED
        if decision.action is Action.NONE:
            if not self.policy.notifications_enabled and reading.value > self.policy.threshold:
                logger.info(f"[DISABLED] {alert_summary(reading, self.policy.threshold)}", deviceId=device_id)
            return Outcome.UNCHANGED
        return self._apply(reading, decision)

    def _apply(self, reading: Reading, decision: Decision) -> Outcome:
        device_id = reading.deviceId
        record = decision.record
        for effect in decision.effects:
            try:
                if isinstance(effect, TriggerEffect):
                    dedup_key = self.gateway.trigger(
                        effect.summary, effect.source_key, effect.details, dedup_key=effect.dedup_key
                    )
                    if record is not None:
                        record = record.model_copy(update={"dedupKey": dedup_key})
                elif isinstance(effect, ResolveEffect):
                    self.gateway.resolve(effect.dedup_key, effect.summary)
            except GatewayError as exc:
                logger.error(
                    f"Failed to {decision.action.value} alert", deviceId=device_id, status=exc.status, error=str(exc)
                )
                if isinstance(effect, TriggerEffect):
                    notify_fallback(effect.summary, deviceId=device_id)
                return Outcome.FAILED

        if record is None:
            return Outcome.UNCHANGED
        try:
            self._persist(decision.action, record)
        except StoreError:
            logger.exception(
                f"Alert {decision.action.value} sent but record was not saved", deviceId=device_id
            )
            return Outcome.FAILED

        if decision.action is Action.TRIGGER:
            logger.info("Alert sent", deviceId=device_id, value=reading.value, dedupKey=record.dedupKey)
            return Outcome.TRIGGERED
        logger.info("Alert resolved", deviceId=device_id, value=reading.value, dedupKey=record.dedupKey)
        return Outcome.RESOLVED

    def _persist(self, action: Action, record: AlertRecord) -> None:
        if action is Action.TRIGGER:
            self.store.put(record)
        else:
            self.store.update(record.deviceId, isActive=record.isActive, humidityLevel=record.humidityLevel)

    def reset_all(self) -> int:
        """Delete every active record without contacting the paging service.

        Returns the number of records deleted. Listing failures raise StoreError.
        """
        deleted = 0
        for record in self.store.list_active():
            try:
                self.store.delete(record.deviceId)
            except StoreError:
                logger.exception("Failed to delete alert record", deviceId=record.deviceId)
                continue
            deleted += 1
        logger.info("Alert records reset", deleted=deleted)
        return deleted

    def acknowledge(self, device_id: str) -> bool:
        """Acknowledge the device's open incident, if it has one."""
        try:
            record = self.store.get(device_id)
        except StoreError:
            logger.exception("Could not load alert record", deviceId=device_id)
            return False
        if record is None or not record.isActive:
            logger.info("No active alert to acknowledge", deviceId=device_id)
            return False
        try:
            self.gateway.acknowledge(record.dedupKey)
        except GatewayError as exc:
            logger.error("Failed to acknowledge alert", deviceId=device_id, status=exc.status, error=str(exc))
            return False
        return True

    def test_connection(self) -> bool:
        """Try one read from the reading source. Alert state is never touched."""
        try:
            readings = self.source.fetch_readings()
        except Exception:  # noqa: BLE001
            logger.exception("Connection test failed")
            return False
        logger.info(f"Connected successfully. Found {len(readings)} thermostats with humidity data.")
        return True


def build_monitor(settings: Settings) -> HumidityMonitor:
    source = NestClient(
        project_id=settings.nest_project_id,
        client_id_param_name=settings.nest_client_id_param_name,
        client_secret_name=settings.nest_client_secret_name,
        refresh_secret_name=settings.nest_refresh_secret_name,
        timeout=settings.http_timeout_secs,
    )
    store = AlertStore(get_dynamodb(), settings.alerts_table)
    gateway = PagerDutyClient(
        routing_key_secret_name=settings.pagerduty_routing_key_secret_name,
        severity=settings.pagerduty_severity,
        timeout=settings.http_timeout_secs,
    )
    return HumidityMonitor(source, store, gateway, AlertPolicy.from_settings(settings))


def log_startup(settings: Settings) -> None:
    logger.info(
        "Humidity monitor configured",
        threshold=settings.humidity_threshold,
        check_interval_minutes=settings.check_interval_minutes,
        notifications="enabled" if settings.enable_notifications else "disabled",
    )
