"""Alert lifecycle decisions for a single humidity reading.

``reconcile`` maps (reading, stored record) to the next record and the paging
calls needed to get there. It performs no I/O: the caller executes the
effects and persists ``Decision.record`` only once every effect succeeded, so
a failed paging call leaves the stored state untouched and the next poll
retries from the same baseline.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Final

from pydantic import BaseModel

from .config import Settings
from .models import AlertDetails, AlertRecord, Reading

ALERT_COOLDOWN: Final[timedelta] = timedelta(minutes=30)
DEDUP_KEY_PREFIX: Final[str] = "humidity-alert-"


class Action(StrEnum):
    TRIGGER = "trigger"
    RESOLVE = "resolve"
    SUPPRESS = "suppress"
    NONE = "none"


class AlertPolicy(BaseModel):
    threshold: float
    notifications_enabled: bool
    cooldown: timedelta = ALERT_COOLDOWN

    @classmethod
    def from_settings(cls, settings: Settings) -> "AlertPolicy":
        return cls(
            threshold=settings.humidity_threshold,
            notifications_enabled=settings.enable_notifications,
        )


class TriggerEffect(BaseModel):
    summary: str
    source_key: str
    dedup_key: str
    details: AlertDetails


class ResolveEffect(BaseModel):
    dedup_key: str
    summary: str


SideEffect = TriggerEffect | ResolveEffect


@dataclass(frozen=True, slots=True)
class Decision:
    action: Action
    record: AlertRecord | None = None
    effects: list[SideEffect] = field(default_factory=list)


def dedup_key_for(device_id: str) -> str:
    """One open incident per device, so the key only depends on the device."""
    return f"{DEDUP_KEY_PREFIX}{device_id}"


def _fmt(value: float) -> str:
    return f"{value:g}"


def alert_summary(reading: Reading, threshold: float) -> str:
    return f"HIGH HUMIDITY ALERT: {_fmt(reading.value)}% (threshold: {_fmt(threshold)}%)"


def resolve_summary(reading: Reading, threshold: float) -> str:
    return f"Humidity back to normal: {_fmt(reading.value)}% (threshold: {_fmt(threshold)}%)"


def in_cooldown(stored: AlertRecord | None, now: datetime, cooldown: timedelta = ALERT_COOLDOWN) -> bool:
    if stored is None:
        return False
    return now - stored.lastAlertTime < cooldown


def _trigger(reading: Reading, stored: AlertRecord | None, policy: AlertPolicy, now: datetime) -> Decision:
    dedup_key = dedup_key_for(reading.deviceId)
    details = AlertDetails(
        deviceId=reading.deviceId,
        humidityLevel=reading.value,
        threshold=policy.threshold,
        timestamp=now,
        observedAt=reading.observedAt,
        lastAlertTime=stored.lastAlertTime if stored else None,
    )
    record = AlertRecord(
        deviceId=reading.deviceId,
        dedupKey=dedup_key,
        lastAlertTime=now,
        isActive=True,
        humidityLevel=reading.value,
        threshold=policy.threshold,
        createdAt=stored.createdAt if stored else now,
        updatedAt=now,
    )
    effect = TriggerEffect(
        summary=alert_summary(reading, policy.threshold),
        source_key=reading.deviceId,
        dedup_key=dedup_key,
        details=details,
    )
    return Decision(action=Action.TRIGGER, record=record, effects=[effect])


def _resolve(reading: Reading, stored: AlertRecord, policy: AlertPolicy, now: datetime) -> Decision:
    record = stored.model_copy(update={"isActive": False, "humidityLevel": reading.value, "updatedAt": now})
    effect = ResolveEffect(dedup_key=stored.dedupKey, summary=resolve_summary(reading, policy.threshold))
    return Decision(action=Action.RESOLVE, record=record, effects=[effect])


def reconcile(reading: Reading, stored: AlertRecord | None, policy: AlertPolicy, now: datetime) -> Decision:
    """Decide what to do with one reading given the device's stored record.

    ``now`` is wall-clock time; cooldown never looks at the reading timestamp
    so a stalled data source cannot stretch or shrink it.
    """
    if not policy.notifications_enabled:
        return Decision(action=Action.NONE)

    if reading.value > policy.threshold:
        if in_cooldown(stored, now, policy.cooldown):
            return Decision(action=Action.SUPPRESS)
        return _trigger(reading, stored, policy, now)

    if stored is not None and stored.isActive:
        return _resolve(reading, stored, policy, now)
    return Decision(action=Action.NONE)
