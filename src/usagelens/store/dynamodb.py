import asyncio
from typing import Any

import boto3
import structlog
from boto3.dynamodb.conditions import Attr

from usagelens.exceptions import ConfigurationError
from usagelens.models import ScanPage

logger = structlog.get_logger()


class DynamoDBUsageStore:
    """
    DynamoDBUsageStore implements the UsageStore protocol on a DynamoDB
    table using the native parallel scan (Segment / TotalSegments).

    boto3 is synchronous, so each page request runs in a worker thread
    and the event loop stays free for the other segments. No Limit is
    passed: every call returns the largest page DynamoDB allows.
    """

    def __init__(
        self,
        table_name: "str",
        region_name: "str" = "us-east-1",
        session: "boto3.session.Session | None" = None,
    ) -> "None":
        if not table_name:
            raise ConfigurationError(
                "No usage table configured. Set USAGE_TABLE_NAME or enable DEMO_MODE."
            )
        self._table_name = table_name
        session = session or boto3.session.Session()
        self._resource = session.resource("dynamodb", region_name=region_name)
        self._table = self._resource.Table(table_name)

    @property
    def name(self) -> "str":
        return "dynamodb"

    @property
    def table(self) -> "Any":
        return self._table

    async def scan_segment(
        self,
        segment_index: "int",
        total_segments: "int",
        continuation_token: "Any" = None,
        since: "str | None" = None,
    ) -> "ScanPage":
        kwargs: "dict[str, Any]" = {
            "Segment": segment_index,
            "TotalSegments": total_segments,
        }
        if continuation_token is not None:
            kwargs["ExclusiveStartKey"] = continuation_token
        if since:
            kwargs["FilterExpression"] = Attr("timestamp").gt(since)

        logger.debug(
            "dynamodb_scan_page",
            table=self._table_name,
            segment=segment_index,
            total_segments=total_segments,
            continued=continuation_token is not None,
        )
        response = await asyncio.to_thread(self._table.scan, **kwargs)
        return ScanPage(
            items=response.get("Items", []),
            next_token=response.get("LastEvaluatedKey"),
        )

    async def close(self) -> "None":
        """
        closes the underlying HTTP connection pool.
        """
        await asyncio.to_thread(self._resource.meta.client.close)
