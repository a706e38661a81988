"""DynamoDB-backed record store for status and rate-limit records.

DynamoDB Schema:
    Table: auto-pr-bot-status (STATUS_TABLE_NAME)
    Partition Key: requestId (String)
    TTL attribute: expiresAt (Number, unix seconds)
    Global Secondary Index: IpAddressIndex
        Partition Key: ipAddress (String)
        Sort Key: timestamp (Number)

Status records and rate-limit records share the table. Rate-limit records
use an "rl#" key prefix so they never collide with status record keys, and
only rate-limit records carry ipAddress, so the index stays sparse.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError


logger = logging.getLogger(__name__)


ADDRESS_INDEX_NAME = "IpAddressIndex"

THROTTLING_ERROR_CODES = (
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
)


class StoreError(Exception):
    """Raised when a store operation fails.

    Attributes:
        message: Human-readable error description.
        error_code: DynamoDB error code, if the failure came from the service.
    """

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class StoreThrottlingError(StoreError):
    """Raised when DynamoDB throttling persists after retries."""


class DynamoDBStore:
    """Key-value access to the status table.

    Items are plain Python dicts; conversion to and from DynamoDB attribute
    values is handled here. Throttled calls are retried with exponential
    backoff; every other failure is raised as StoreError.
    """

    MAX_RETRIES = 3
    INITIAL_BACKOFF = 0.1
    MAX_BACKOFF = 2.0

    def __init__(
        self,
        table_name: str,
        dynamodb_client=None,
        region_name: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the store.

        Args:
            table_name: Name of the DynamoDB table
            dynamodb_client: Optional boto3 DynamoDB client (for testing)
            region_name: AWS region used when creating the default client
            sleep: Sleep function used between throttling retries
        """
        self.table_name = table_name
        self._dynamodb = dynamodb_client or boto3.client(
            "dynamodb", region_name=region_name
        )
        self._sleep = sleep
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    def _serialize(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return {
            key: self._serializer.serialize(value)
            for key, value in item.items()
            if value is not None
        }

    def _deserialize(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return {
            key: self._deserializer.deserialize(value)
            for key, value in item.items()
        }

    def _retry_with_backoff(self, operation: Callable[[], Any]) -> Any:
        """
        Execute a DynamoDB operation, retrying on throttling.

        Raises:
            StoreThrottlingError: If throttling persists after retries
            StoreError: On any other DynamoDB or connection failure
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                return operation()
            except ClientError as e:
                error = e.response.get("Error", {})
                error_code = error.get("Code", "")

                if error_code in THROTTLING_ERROR_CODES:
                    if attempt < self.MAX_RETRIES - 1:
                        delay = min(
                            self.INITIAL_BACKOFF * (2 ** attempt), self.MAX_BACKOFF
                        )
                        self._sleep(delay)
                        continue
                    raise StoreThrottlingError(
                        f"DynamoDB throttling after {self.MAX_RETRIES} attempts",
                        error_code=error_code,
                    ) from e

                raise StoreError(
                    f"DynamoDB error: {error_code} - {error.get('Message', str(e))}",
                    error_code=error_code,
                ) from e
            except BotoCoreError as e:
                raise StoreError(f"DynamoDB connection error: {e}") from e

        raise StoreThrottlingError(
            f"DynamoDB throttling after {self.MAX_RETRIES} attempts"
        )

    def put_item(self, item: Dict[str, Any]) -> None:
        """Write an item, replacing any existing item with the same key."""
        serialized = self._serialize(item)
        self._retry_with_backoff(
            lambda: self._dynamodb.put_item(
                TableName=self.table_name,
                Item=serialized,
            )
        )

    def get_item(self, request_id: str) -> Optional[Dict[str, Any]]:
        """Read an item by primary key, or None if it does not exist."""
        response = self._retry_with_backoff(
            lambda: self._dynamodb.get_item(
                TableName=self.table_name,
                Key={"requestId": {"S": request_id}},
                ConsistentRead=True,
            )
        )
        item = response.get("Item")
        if not item:
            return None
        return self._deserialize(item)

    def query_by_address(
        self, ip_address: str, since_timestamp: int
    ) -> List[Dict[str, Any]]:
        """Return every record for an address with timestamp >= since.

        Follows LastEvaluatedKey pagination so large windows are counted
        completely.
        """
        items: List[Dict[str, Any]] = []
        query_kwargs: Dict[str, Any] = {
            "TableName": self.table_name,
            "IndexName": ADDRESS_INDEX_NAME,
            "KeyConditionExpression": "ipAddress = :ip AND #ts >= :since",
            "ExpressionAttributeNames": {"#ts": "timestamp"},
            "ExpressionAttributeValues": {
                ":ip": {"S": ip_address},
                ":since": {"N": str(since_timestamp)},
            },
        }

        while True:
            kwargs = dict(query_kwargs)
            response = self._retry_with_backoff(
                lambda: self._dynamodb.query(**kwargs)
            )
            items.extend(
                self._deserialize(item) for item in response.get("Items", [])
            )
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            query_kwargs["ExclusiveStartKey"] = last_key
