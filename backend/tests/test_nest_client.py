import os
from typing import Any
from unittest.mock import patch

import boto3
import pytest
import requests

from common.exceptions import AuthError, FetchError
from common.nest_client import NestClient


def _client() -> NestClient:
    return NestClient(
        project_id="test-project",
        client_id_param_name=os.environ["NEST_CLIENT_ID_PARAM_NAME"],
        client_secret_name=os.environ["NEST_CLIENT_SECRET_NAME"],
        refresh_secret_name=os.environ["NEST_REFRESH_SECRET_NAME"],
        timeout=3,
    )


class _Resp:
    def __init__(self, status_code: int, payload: Any) -> None:
        self.status_code = status_code
        self._payload = payload
        self.headers: dict[str, str] = {}

    def json(self) -> Any:
        return self._payload


def _token_response(access: str = "AT", expires_in: int = 3600) -> _Resp:
    return _Resp(200, {"access_token": access, "expires_in": expires_in, "token_type": "Bearer"})


def _devices_response() -> _Resp:
    return _Resp(
        200,
        {
            "devices": [
                {
                    "name": "enterprises/test-project/devices/THERMO1",
                    "type": "sdm.devices.types.THERMOSTAT",
                    "traits": {
                        "sdm.devices.traits.Humidity": {"ambientHumidityPercent": 71},
                        "sdm.devices.traits.Temperature": {"ambientTemperatureCelsius": 21.5},
                    },
                },
                {
                    "name": "enterprises/test-project/devices/CAM1",
                    "type": "sdm.devices.types.CAMERA",
                    "traits": {},
                },
                {
                    "type": "sdm.devices.types.THERMOSTAT",
                    "traits": {"sdm.devices.traits.Humidity": {"ambientHumidityPercent": 50}},
                },
            ]
        },
    )


def test_fetch_readings_keeps_humidity_devices() -> None:
    with (
        patch("common.nest_client.requests.post", return_value=_token_response()) as post,
        patch("common.nest_client.requests.get", return_value=_devices_response()) as get,
    ):
        readings = _client().fetch_readings()

    assert [(r.deviceId, r.value) for r in readings] == [("THERMO1", 71.0)]
    assert readings[0].observedAt.tzinfo is not None

    form = post.call_args.kwargs["data"]
    assert form["grant_type"] == "refresh_token"
    assert form["client_id"] == "TEST_CLIENT_ID"
    assert form["client_secret"] == "SECRET"
    assert post.call_args.kwargs["timeout"] == 3

    assert get.call_args.args[0].endswith("/enterprises/test-project/devices")
    assert get.call_args.kwargs["headers"]["Authorization"] == "Bearer AT"


def test_access_token_is_cached_until_near_expiry() -> None:
    client = _client()
    with (
        patch("common.nest_client.requests.post", return_value=_token_response()) as post,
        patch("common.nest_client.requests.get", return_value=_devices_response()),
    ):
        client.fetch_readings()
        client.fetch_readings()
    assert post.call_count == 1

    # Tokens inside the expiry margin are refreshed every time
    short = _client()
    with (
        patch("common.nest_client.requests.post", return_value=_token_response(expires_in=30)) as post,
        patch("common.nest_client.requests.get", return_value=_devices_response()),
    ):
        short.fetch_readings()
        short.fetch_readings()
    assert post.call_count == 2


def test_token_refresh_failure_raises_auth_error() -> None:
    with patch("common.nest_client.requests.post", return_value=_Resp(400, {"error": "invalid_grant"})):
        with pytest.raises(AuthError):
            _client().fetch_readings()


def test_token_response_without_access_token_raises_auth_error() -> None:
    with patch("common.nest_client.requests.post", return_value=_Resp(200, {})):
        with pytest.raises(AuthError):
            _client().fetch_readings()


def test_device_list_failure_raises_fetch_error() -> None:
    with (
        patch("common.nest_client.requests.post", return_value=_token_response()),
        patch("common.nest_client.requests.get", return_value=_Resp(503, {})),
    ):
        with pytest.raises(FetchError):
            _client().fetch_readings()


def test_device_list_timeout_raises_fetch_error() -> None:
    with (
        patch("common.nest_client.requests.post", return_value=_token_response()),
        patch("common.nest_client.requests.get", side_effect=requests.Timeout("slow")),
    ):
        with pytest.raises(FetchError):
            _client().fetch_readings()


def test_unauthorized_device_list_drops_cached_token() -> None:
    client = _client()
    with (
        patch("common.nest_client.requests.post", return_value=_token_response()) as post,
        patch("common.nest_client.requests.get", side_effect=[_Resp(401, {}), _devices_response()]),
    ):
        with pytest.raises(FetchError):
            client.fetch_readings()
        client.fetch_readings()
    assert post.call_count == 2


def test_empty_device_list_yields_no_readings() -> None:
    with (
        patch("common.nest_client.requests.post", return_value=_token_response()),
        patch("common.nest_client.requests.get", return_value=_Resp(200, {})),
    ):
        assert _client().fetch_readings() == []


def test_rotated_refresh_token_is_stored() -> None:
    rotated = _Resp(200, {"access_token": "AT", "expires_in": 3600, "refresh_token": "REFRESH1"})
    secrets = boto3.client("secretsmanager")
    try:
        with patch("common.nest_client.requests.post", return_value=rotated):
            _client().refresh_access_token()

        stored = secrets.get_secret_value(SecretId=os.environ["NEST_REFRESH_SECRET_NAME"])
        assert stored["SecretString"] == "REFRESH1"
    finally:
        secrets.put_secret_value(SecretId=os.environ["NEST_REFRESH_SECRET_NAME"], SecretString="REFRESH0")
