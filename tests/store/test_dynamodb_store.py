from decimal import Decimal

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from usagelens.exceptions import ConfigurationError
from usagelens.models import normalize_item
from usagelens.store.dynamodb import DynamoDBUsageStore

TABLE = "usage-records"


@pytest.fixture()
def store() -> "DynamoDBUsageStore":
    session = boto3.session.Session(
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name="us-east-1",
    )
    return DynamoDBUsageStore(TABLE, region_name="us-east-1", session=session)


def _typed_item(id: "str") -> "dict":
    return {
        "id": {"S": id},
        "modelo_ai": {"S": "gpt-4o"},
        "nombre_candidato": {"S": "Ada Lovelace"},
        "tipo_busqueda": {"S": "biography"},
        "timestamp": {"S": "2025-11-13T14:33:36Z"},
        "usage": {
            "M": {
                "prompt_tokens": {"N": "120"},
                "completion_tokens": {"N": "30"},
            }
        },
    }


class TestDynamoDBUsageStore:
    def test_requires_table_name(self) -> "None":
        with pytest.raises(ConfigurationError):
            DynamoDBUsageStore("")

    @pytest.mark.asyncio
    async def test_scan_segment_pages(self, store: "DynamoDBUsageStore") -> "None":
        client = store.table.meta.client
        with Stubber(client) as stubber:
            stubber.add_response(
                "scan",
                {
                    "Items": [_typed_item("1")],
                    "LastEvaluatedKey": {"id": {"S": "1"}},
                },
                {"TableName": TABLE, "Segment": 2, "TotalSegments": 4},
            )
            stubber.add_response("scan", {"Items": [_typed_item("2")]})

            first = await store.scan_segment(2, 4)
            second = await store.scan_segment(2, 4, first.next_token)
            stubber.assert_no_pending_responses()

        assert first.next_token == {"id": "1"}
        assert second.next_token is None
        # the resource layer hands back plain values with Decimal numbers
        assert first.items[0]["usage"]["prompt_tokens"] == Decimal("120")

        record = normalize_item(second.items[0])
        assert record.id == "2"
        assert record.usage.input_tokens == 120
        assert record.usage.total_tokens == 150

    @pytest.mark.asyncio
    async def test_since_adds_filter(self, store: "DynamoDBUsageStore") -> "None":
        client = store.table.meta.client
        with Stubber(client) as stubber:
            stubber.add_response("scan", {"Items": []})

            page = await store.scan_segment(0, 1, since="2025-11-01T00:00:00Z")
            stubber.assert_no_pending_responses()

        assert page.items == []
        assert page.next_token is None

    @pytest.mark.asyncio
    async def test_client_error_propagates(self, store: "DynamoDBUsageStore") -> "None":
        client = store.table.meta.client
        with Stubber(client) as stubber:
            stubber.add_client_error(
                "scan",
                service_error_code="ProvisionedThroughputExceededException",
                http_status_code=400,
            )

            with pytest.raises(ClientError):
                await store.scan_segment(0, 1)

    @pytest.mark.asyncio
    async def test_close(self, store: "DynamoDBUsageStore") -> "None":
        await store.close()

        assert store.name == "dynamodb"
