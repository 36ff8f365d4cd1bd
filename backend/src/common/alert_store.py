from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

from aws_lambda_powertools import Logger
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from .ddb import decimalize, undecimalize
from .exceptions import StoreError
from .models import AlertRecord

logger = Logger()

_UPDATABLE_FIELDS = frozenset(AlertRecord.model_fields) - {"deviceId", "createdAt"}


def _to_item(record: AlertRecord) -> dict[str, Any]:
    # mode="json" renders datetimes as ISO-8601 strings
    return decimalize(record.model_dump(mode="json"))


def _from_item(item: dict[str, Any]) -> AlertRecord:
    try:
        return AlertRecord.model_validate(undecimalize(item))
    except ValidationError as exc:
        raise StoreError(f"Malformed alert record for {item.get('deviceId')!r}") from exc


class AlertStore:
    """Per-device alert records kept in one DynamoDB table keyed by deviceId."""

    def __init__(self, ddb: Any, table_name: str) -> None:
        self.table = ddb.Table(table_name)

    def get(self, device_id: str) -> AlertRecord | None:
        try:
            resp = self.table.get_item(Key={"deviceId": device_id}, ConsistentRead=True)
        except (ClientError, BotoCoreError) as exc:
            raise StoreError(f"Failed to read alert record for {device_id}") from exc
        item = resp.get("Item")
        if item is None:
            return None
        return _from_item(item)

    def put(self, record: AlertRecord) -> None:
        """Create or replace the device's record, stamping updatedAt."""
        record = record.model_copy(update={"updatedAt": datetime.now(UTC)})
        try:
            self.table.put_item(Item=_to_item(record))
        except (ClientError, BotoCoreError) as exc:
            raise StoreError(f"Failed to write alert record for {record.deviceId}") from exc

    def update(self, device_id: str, **fields: Any) -> None:
        """Set some fields of an existing record. Fails if there is no record."""
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        fields = {**fields, "updatedAt": datetime.now(UTC)}
        values = {
            name: value.isoformat() if isinstance(value, datetime) else value for name, value in fields.items()
        }
        names = {f"#f{i}": name for i, name in enumerate(values)}
        expression = "SET " + ", ".join(f"{placeholder} = :v{i}" for i, placeholder in enumerate(names))
        try:
            self.table.update_item(
                Key={"deviceId": device_id},
                UpdateExpression=expression,
                ConditionExpression="attribute_exists(#id)",
                ExpressionAttributeNames={**names, "#id": "deviceId"},
                ExpressionAttributeValues=decimalize({f":v{i}": v for i, v in enumerate(values.values())}),
            )
        except (ClientError, BotoCoreError) as exc:
            raise StoreError(f"Failed to update alert record for {device_id}") from exc

    def delete(self, device_id: str) -> None:
        try:
            self.table.delete_item(Key={"deviceId": device_id})
        except (ClientError, BotoCoreError) as exc:
            raise StoreError(f"Failed to delete alert record for {device_id}") from exc

    def _scan_active(self) -> Iterator[dict[str, Any]]:
        kwargs: dict[str, Any] = {"FilterExpression": Attr("isActive").eq(True)}
        while True:
            resp = self.table.scan(**kwargs)
            yield from resp.get("Items", [])
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return
            kwargs["ExclusiveStartKey"] = last_key

    def list_active(self) -> list[AlertRecord]:
        try:
            items = list(self._scan_active())
        except (ClientError, BotoCoreError) as exc:
            raise StoreError("Failed to list active alert records") from exc
        records: list[AlertRecord] = []
        for item in items:
            try:
                records.append(_from_item(item))
            except StoreError:
                logger.warning("Skipping malformed alert record", deviceId=item.get("deviceId"))
        return records
