import time
from datetime import UTC, datetime
from typing import Any, cast

import requests  # type: ignore[import-untyped]

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities import parameters

from .exceptions import AuthError, FetchError
from .models import Reading

logger = Logger()

HUMIDITY_TRAIT = "sdm.devices.traits.Humidity"


class NestClient:
    """Reads thermostat humidity from the Nest Smart Device Management API.

    Client id comes from SSM Parameter Store; client secret and refresh token
    from Secrets Manager. The access token is cached on the instance, so a
    warm Lambda container only refreshes it when it is about to expire.
    """

    TOKEN_URL = "https://oauth2.googleapis.com/token"
    BASE_URL = "https://smartdevicemanagement.googleapis.com/v1"
    # Refresh this long before the token actually expires
    EXPIRY_MARGIN_SECS = 60

    def __init__(
        self,
        project_id: str,
        client_id_param_name: str,
        client_secret_name: str,
        refresh_secret_name: str,
        timeout: float = 10.0,
    ) -> None:
        self.project_id = project_id
        self.client_id_param_name = client_id_param_name
        self.client_secret_name = client_secret_name
        self.refresh_secret_name = refresh_secret_name
        self.timeout = timeout
        self._access_token: str | None = None
        self._token_expiry = 0.0

    def _get_client_credentials(self) -> tuple[str, str, str]:
        try:
            client_id = parameters.get_parameter(self.client_id_param_name)
            client_secret = parameters.get_secret(self.client_secret_name)
            refresh_token = parameters.get_secret(self.refresh_secret_name)
        except Exception as exc:  # noqa: BLE001
            raise AuthError(f"Could not load Nest credentials: {exc}") from exc
        if not (client_id and client_secret and refresh_token):
            raise AuthError("Nest credentials are incomplete")
        return str(client_id), str(client_secret), str(refresh_token)

    def refresh_access_token(self) -> str:
        client_id, client_secret, refresh_token = self._get_client_credentials()
        data = {
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            resp = requests.post(self.TOKEN_URL, data=data, timeout=self.timeout)
        except requests.RequestException as exc:
            raise AuthError(f"Nest token refresh failed: {exc}") from exc
        if resp.status_code >= 400:
            raise AuthError(f"Nest token refresh failed: {resp.status_code}")

        try:
            payload: dict[str, Any] = resp.json()
        except ValueError as exc:
            raise AuthError("Nest token refresh returned invalid JSON") from exc
        access_token = str(payload.get("access_token", ""))
        if not access_token:
            raise AuthError("Nest token refresh missing access_token")

        new_refresh = payload.get("refresh_token")
        if new_refresh and new_refresh != refresh_token:
            parameters.set_secret(self.refresh_secret_name, str(new_refresh))
            logger.info("Stored rotated Nest refresh token")

        self._access_token = access_token
        self._token_expiry = time.time() + float(payload.get("expires_in", 3600))
        return access_token

    def _ensure_valid_token(self) -> str:
        if self._access_token is None or time.time() >= self._token_expiry - self.EXPIRY_MARGIN_SECS:
            return self.refresh_access_token()
        return self._access_token

    def _list_devices(self, access_token: str) -> list[dict[str, Any]]:
        url = f"{self.BASE_URL}/enterprises/{self.project_id}/devices"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        try:
            resp = requests.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise FetchError(f"Nest device list failed: {exc}") from exc
        if resp.status_code == 401:
            # Token revoked server-side; force a refresh next time
            self._access_token = None
        if resp.status_code >= 400:
            raise FetchError(f"Nest device list failed: {resp.status_code}")
        try:
            payload = cast(dict[str, Any], resp.json())
        except ValueError as exc:
            raise FetchError("Nest device list returned invalid JSON") from exc
        return list(payload.get("devices") or [])

    def fetch_readings(self) -> list[Reading]:
        """Return one reading per device that reports humidity."""
        access_token = self._ensure_valid_token()
        devices = self._list_devices(access_token)

        observed_at = datetime.now(UTC)
        readings: list[Reading] = []
        for device in devices:
            trait = (device.get("traits") or {}).get(HUMIDITY_TRAIT)
            if not trait or trait.get("ambientHumidityPercent") is None:
                continue
            name = str(device.get("name") or "")
            # "enterprises/<project>/devices/<id>" -> "<id>"
            device_id = name.rsplit("/", 1)[-1]
            if not device_id:
                logger.warning("Skipping humidity device without a name", device_type=device.get("type"))
                continue
            readings.append(
                Reading(
                    deviceId=device_id,
                    value=float(trait["ambientHumidityPercent"]),
                    observedAt=observed_at,
                )
            )
        return readings
