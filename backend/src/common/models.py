from datetime import datetime

from pydantic import BaseModel


class Reading(BaseModel):
    deviceId: str
    value: float
    observedAt: datetime


class AlertRecord(BaseModel):
    deviceId: str
    dedupKey: str
    lastAlertTime: datetime
    isActive: bool
    humidityLevel: float
    threshold: float
    createdAt: datetime
    updatedAt: datetime


class AlertDetails(BaseModel):
    """custom_details sent with a paging event."""

    deviceId: str
    humidityLevel: float
    threshold: float
    timestamp: datetime
    observedAt: datetime | None = None
    lastAlertTime: datetime | None = None
