import os
from enum import StrEnum
from typing import Final, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import ConfigError

Severity = Literal["info", "warning", "error", "critical"]


class LogLevel(StrEnum):
    CRITICAL = "CRITICAL"
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"
    DEBUG = "DEBUG"


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    alerts_table: str = Field(default="humidity-alerts", min_length=1, validation_alias="ALERTS_TABLE")

    nest_project_id: str = Field(min_length=1, validation_alias="NEST_PROJECT_ID")
    nest_client_id_param_name: str = Field(default="nest/client/id", validation_alias="NEST_CLIENT_ID_PARAM_NAME")
    nest_client_secret_name: str = Field(default="nest/client/secret", validation_alias="NEST_CLIENT_SECRET_NAME")
    nest_refresh_secret_name: str = Field(default="nest/refresh/token", validation_alias="NEST_REFRESH_SECRET_NAME")

    humidity_threshold: float = Field(default=60, ge=0, le=100, validation_alias="HUMIDITY_THRESHOLD")
    check_interval_minutes: int = Field(default=5, ge=1, validation_alias="CHECK_INTERVAL_MINUTES")
    enable_notifications: bool = Field(default=False, validation_alias="ENABLE_NOTIFICATIONS")

    pagerduty_routing_key_secret_name: str = Field(default="", validation_alias="PAGERDUTY_ROUTING_KEY_SECRET_NAME")
    pagerduty_severity: Severity = Field(default="error", validation_alias="PAGERDUTY_SEVERITY")

    http_timeout_secs: float = Field(default=10.0, gt=0, validation_alias="HTTP_TIMEOUT_SECS")
    log_level: LogLevel = Field(default=LogLevel.INFO, validation_alias="LOG_LEVEL")

    @model_validator(mode="after")
    def _routing_key_when_enabled(self) -> "Settings":
        if self.enable_notifications and not self.pagerduty_routing_key_secret_name:
            raise ValueError("PAGERDUTY_ROUTING_KEY_SECRET_NAME is required when notifications are enabled")
        return self


ENV_KEYS: Final[tuple[str, ...]] = (
    "ALERTS_TABLE",
    "NEST_PROJECT_ID",
    "NEST_CLIENT_ID_PARAM_NAME",
    "NEST_CLIENT_SECRET_NAME",
    "NEST_REFRESH_SECRET_NAME",
    "HUMIDITY_THRESHOLD",
    "CHECK_INTERVAL_MINUTES",
    "ENABLE_NOTIFICATIONS",
    "PAGERDUTY_ROUTING_KEY_SECRET_NAME",
    "PAGERDUTY_SEVERITY",
    "HTTP_TIMEOUT_SECS",
    "LOG_LEVEL",
)


def _describe(error: dict[str, object]) -> str:
    loc = error.get("loc") or ()
    field = ".".join(str(part) for part in loc)  # type: ignore[union-attr]
    message = str(error.get("msg", "invalid value"))
    # Model-level validators report with an empty loc and a "Value error, " prefix
    message = message.removeprefix("Value error, ")
    if not field:
        return message
    if error.get("type") == "missing":
        return f"{field} is required"
    return f"{field}: {message}"


def load_settings() -> Settings:
    """Read settings from the environment (and .env when present).

    Raises ConfigError listing every problem found.
    """
    load_dotenv()
    data: dict[str, str] = {}
    for key in ENV_KEYS:
        if key in os.environ:
            data[key] = os.environ[key]

    # Empty strings for optional settings mean "use the default"
    optional = (
        "HUMIDITY_THRESHOLD",
        "CHECK_INTERVAL_MINUTES",
        "ENABLE_NOTIFICATIONS",
        "PAGERDUTY_SEVERITY",
        "HTTP_TIMEOUT_SECS",
        "LOG_LEVEL",
    )
    for key in optional:
        if key in data and not data[key].strip():
            del data[key]
    if "LOG_LEVEL" in data:
        data["LOG_LEVEL"] = data["LOG_LEVEL"].upper()

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError([_describe(dict(err)) for err in e.errors()]) from e
