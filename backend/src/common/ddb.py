from collections.abc import Mapping
from decimal import Decimal
from typing import Any

import boto3


def get_dynamodb() -> Any:
    """Return DynamoDB resource to be used by the alert store."""
    return boto3.resource("dynamodb")


def decimalize(value: Any) -> Any:
    """Recursively convert floats to Decimal for DynamoDB compatibility."""
    if isinstance(value, float):
        # Use string constructor to avoid binary float artifacts
        return Decimal(str(value))
    if isinstance(value, Mapping):
        return {k: decimalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(decimalize(v) for v in value)
    return value


def undecimalize(value: Any) -> Any:
    """Convert DynamoDB Decimal values back to float."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Mapping):
        return {k: undecimalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [undecimalize(v) for v in value]
    return value
