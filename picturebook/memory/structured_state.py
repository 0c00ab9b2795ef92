"""Structured state storage interfaces and the DynamoDB backend"""

import asyncio
import json
from decimal import Decimal
from functools import reduce
from typing import Dict, Any, Optional, List
from abc import ABC, abstractmethod
import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError


class StructuredState(ABC):
    """Abstract interface for structured state storage"""

    @abstractmethod
    async def write(self, table_name: str, item: Dict[str, Any]) -> bool:
        """Write an item to the table"""
        pass

    @abstractmethod
    async def read(self, table_name: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Read an item from the table"""
        pass

    @abstractmethod
    async def query(
        self,
        table_name: str,
        key_condition: Dict[str, Any],
        **kwargs
    ) -> List[Dict[str, Any]]:
        """Query items whose attributes equal every value in key_condition"""
        pass

    @abstractmethod
    async def update(
        self,
        table_name: str,
        key: Dict[str, Any],
        updates: Dict[str, Any]
    ) -> bool:
        """Update an item in the table; False if it does not exist"""
        pass

    @abstractmethod
    async def delete(self, table_name: str, key: Dict[str, Any]) -> bool:
        """Delete an item from the table"""
        pass


def _to_dynamo(value: Any) -> Any:
    """JSON-normalise a value, turning floats into Decimal for boto3"""
    return json.loads(json.dumps(value, default=str), parse_float=Decimal)


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


class DynamoDBState(StructuredState):
    """DynamoDB implementation of structured state"""

    def __init__(
        self,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        table_prefix: str = ""
    ):
        """
        Initialize DynamoDB resource

        Args:
            region: AWS region
            endpoint_url: DynamoDB endpoint (None for production, localstack URL for testing)
            table_prefix: Prefix for table names
        """
        self.region = region
        self.endpoint_url = endpoint_url
        self.table_prefix = table_prefix

        self.resource = boto3.resource(
            "dynamodb",
            region_name=region,
            endpoint_url=endpoint_url
        )

    def _table(self, table_name: str):
        full_name = f"{self.table_prefix}{table_name}" if self.table_prefix else table_name
        return self.resource.Table(full_name)

    async def write(self, table_name: str, item: Dict[str, Any]) -> bool:
        """Write an item to DynamoDB"""
        table = self._table(table_name)
        try:
            await asyncio.to_thread(table.put_item, Item=_to_dynamo(item))
            return True
        except ClientError as e:
            raise RuntimeError(f"DynamoDB write error: {str(e)}") from e

    async def read(self, table_name: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Read an item from DynamoDB"""
        table = self._table(table_name)
        try:
            response = await asyncio.to_thread(table.get_item, Key=_to_dynamo(key))
        except ClientError as e:
            raise RuntimeError(f"DynamoDB read error: {str(e)}") from e

        item = response.get("Item")
        return _from_dynamo(item) if item is not None else None

    async def query(
        self,
        table_name: str,
        key_condition: Dict[str, Any],
        **kwargs
    ) -> List[Dict[str, Any]]:
        """Scan with an equality filter (story tables are small)"""
        table = self._table(table_name)
        scan_kwargs: Dict[str, Any] = {}
        if key_condition:
            scan_kwargs["FilterExpression"] = reduce(
                lambda acc, cond: acc & cond,
                [Attr(k).eq(_to_dynamo(v)) for k, v in key_condition.items()]
            )

        items: List[Dict[str, Any]] = []
        try:
            while True:
                response = await asyncio.to_thread(table.scan, **scan_kwargs)
                items.extend(_from_dynamo(item) for item in response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except ClientError as e:
            raise RuntimeError(f"DynamoDB query error: {str(e)}") from e

        return items

    async def update(
        self,
        table_name: str,
        key: Dict[str, Any],
        updates: Dict[str, Any]
    ) -> bool:
        """Update an item in DynamoDB"""
        if not updates:
            return True

        table = self._table(table_name)
        names = {f"#f{i}": field for i, field in enumerate(updates)}
        values = {f":v{i}": _to_dynamo(value) for i, value in enumerate(updates.values())}
        update_expr = "SET " + ", ".join(f"#f{i} = :v{i}" for i in range(len(updates)))

        try:
            await asyncio.to_thread(
                table.update_item,
                Key=_to_dynamo(key),
                UpdateExpression=update_expr,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConditionExpression=Attr(next(iter(key))).exists(),
            )
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return False
            raise RuntimeError(f"DynamoDB update error: {str(e)}") from e

    async def delete(self, table_name: str, key: Dict[str, Any]) -> bool:
        """Delete an item from DynamoDB"""
        table = self._table(table_name)
        try:
            await asyncio.to_thread(table.delete_item, Key=_to_dynamo(key))
            return True
        except ClientError as e:
            raise RuntimeError(f"DynamoDB delete error: {str(e)}") from e
