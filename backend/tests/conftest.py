import contextlib
import os
from collections.abc import Iterator

import boto3
import pytest
from moto import mock_aws

# Ensure AWS SDK has a region and fake credentials for moto
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_SESSION_TOKEN", "testing")
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "humidity-monitor")

# Environment variables read by common.config.load_settings
os.environ.setdefault("ALERTS_TABLE", "humidity-alerts")
os.environ.setdefault("NEST_PROJECT_ID", "test-project")
os.environ.setdefault("NEST_CLIENT_ID_PARAM_NAME", "nest/client/id")
os.environ.setdefault("NEST_CLIENT_SECRET_NAME", "nest/client/secret")
os.environ.setdefault("NEST_REFRESH_SECRET_NAME", "nest/refresh/token")
os.environ.setdefault("PAGERDUTY_ROUTING_KEY_SECRET_NAME", "pagerduty/routing/key")
os.environ.setdefault("HUMIDITY_THRESHOLD", "60")
os.environ.setdefault("ENABLE_NOTIFICATIONS", "true")


@pytest.fixture(scope="session", autouse=True)
def aws_moto() -> Iterator[None]:
    with mock_aws():
        # DynamoDB alert table, one item per device
        ddb = boto3.client("dynamodb")
        ddb.create_table(
            TableName=os.environ["ALERTS_TABLE"],
            AttributeDefinitions=[{"AttributeName": "deviceId", "AttributeType": "S"}],
            KeySchema=[{"AttributeName": "deviceId", "KeyType": "HASH"}],
            BillingMode="PAY_PER_REQUEST",
        )

        # SSM parameter for Nest client id
        ssm = boto3.client("ssm")
        ssm.put_parameter(
            Name=os.environ["NEST_CLIENT_ID_PARAM_NAME"],
            Type="String",
            Value="TEST_CLIENT_ID",
            Overwrite=True,
        )

        secrets = boto3.client("secretsmanager")
        for name, value in [
            (os.environ["NEST_CLIENT_SECRET_NAME"], "SECRET"),
            (os.environ["NEST_REFRESH_SECRET_NAME"], "REFRESH0"),
            (os.environ["PAGERDUTY_ROUTING_KEY_SECRET_NAME"], "ROUTING_KEY"),
        ]:
            with contextlib.suppress(secrets.exceptions.ResourceExistsException):  # type: ignore[attr-defined]
                secrets.create_secret(Name=name, SecretString=value)

        yield


@pytest.fixture(autouse=True)
def clean_alerts(aws_moto: None) -> Iterator[None]:  # type: ignore[unused-ignore]
    yield
    table = boto3.resource("dynamodb").Table(os.environ["ALERTS_TABLE"])
    for item in table.scan().get("Items", []):
        table.delete_item(Key={"deviceId": item["deviceId"]})


@pytest.fixture
def alert_store(aws_moto: None):  # type: ignore[no-untyped-def]
    from common.alert_store import AlertStore
    from common.ddb import get_dynamodb

    return AlertStore(get_dynamodb(), os.environ["ALERTS_TABLE"])
