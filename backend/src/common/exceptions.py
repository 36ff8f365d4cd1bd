class MonitorError(Exception):
    """Base class for humidity monitor errors."""


class ConfigError(MonitorError):
    """Missing or invalid settings. Only raised while starting up."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("Invalid configuration: " + "; ".join(self.errors))


class AuthError(MonitorError):
    """Telemetry credentials could not be refreshed."""


class FetchError(MonitorError):
    """Telemetry readings could not be fetched."""


class StoreError(MonitorError):
    """Alert record could not be read or written."""


class GatewayError(MonitorError):
    """Paging call failed; status is the remote HTTP status when there was one."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)
