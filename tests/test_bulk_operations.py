"""
Tests for bulk operations against a mocked Admin API.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from storesync.shopify import (
    BulkJobClient,
    BulkOperationCanceled,
    BulkOperationError,
    BulkOperationExpired,
    BulkOperationFailed,
    BulkOperationInProgress,
    BulkOperationStatus,
    BulkOperationTimeout,
    PollPolicy,
    ShopifyClient,
    ShopifyUserError,
    StagedUploadTarget,
    bulk_update_variants,
)

OPERATION_ID = "gid://shopify/BulkOperation/1"
RESULT_URL = "https://storage.example.com/result.jsonl"
UPLOAD_URL = "https://uploads.example.com/"
FAST = PollPolicy(interval=0, max_wait=5)


class FakeAdminApi:
    """Scripted GraphQL endpoint plus upload and download hosts."""

    def __init__(
        self,
        statuses: Optional[List[str]] = None,
        current: Optional[Dict[str, Any]] = None,
        result_lines: Optional[List[Dict[str, Any]]] = None,
        error_code: Optional[str] = None,
        user_errors: Optional[List[Dict[str, Any]]] = None,
    ):
        self.statuses = list(statuses or ["COMPLETED"])
        self.current = current
        self.result_lines = result_lines or []
        self.error_code = error_code
        self.user_errors = user_errors or []
        self.calls: List[str] = []
        self.uploads: List[bytes] = []
        self.canceled = False

    def operation(self, status: str) -> Dict[str, Any]:
        return {
            "id": OPERATION_ID,
            "status": status,
            "errorCode": self.error_code if status == "FAILED" else None,
            "objectCount": "2",
            "fileSize": "120",
            "url": RESULT_URL if status == "COMPLETED" else None,
            "partialDataUrl": None,
        }

    def graphql(self, query: str) -> Dict[str, Any]:
        if "currentBulkOperation" in query:
            self.calls.append("current")
            return {"currentBulkOperation": self.current}
        if "bulkOperationRunQuery" in query:
            self.calls.append("run_query")
            return {"bulkOperationRunQuery": {
                "bulkOperation": None if self.user_errors else self.operation("CREATED"),
                "userErrors": self.user_errors,
            }}
        if "bulkOperationRunMutation" in query:
            self.calls.append("run_mutation")
            return {"bulkOperationRunMutation": {
                "bulkOperation": self.operation("CREATED"), "userErrors": [],
            }}
        if "bulkOperationCancel" in query:
            self.calls.append("cancel")
            self.canceled = True
            return {"bulkOperationCancel": {"bulkOperation": self.operation("CANCELING"), "userErrors": []}}
        if "stagedUploadsCreate" in query:
            self.calls.append("staged")
            return {"stagedUploadsCreate": {
                "stagedTargets": [{
                    "url": UPLOAD_URL,
                    "resourceUrl": None,
                    "parameters": [{"name": "key", "value": "tmp/variables.jsonl"}],
                }],
                "userErrors": [],
            }}
        if "node(id" in query:
            self.calls.append("poll")
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            return {"node": self.operation(status)}
        raise AssertionError(f"Unexpected query: {query}")

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url.startswith(UPLOAD_URL):
            self.uploads.append(request.content)
            return httpx.Response(201)
        if url == RESULT_URL:
            body = "\n".join(json.dumps(line) for line in self.result_lines)
            return httpx.Response(200, text=body)
        payload = json.loads(request.content)
        return httpx.Response(200, json={"data": self.graphql(payload["query"])})

    def bulk_client(self) -> BulkJobClient:
        client = ShopifyClient(
            "test-store", "shpat_test", transport=httpx.MockTransport(self.handler)
        )
        return BulkJobClient(client, FAST)


class TestBulkQuery:

    @pytest.mark.asyncio
    async def test_created_running_completed(self):
        api = FakeAdminApi(statuses=["CREATED", "RUNNING", "COMPLETED"])
        bulk = api.bulk_client()

        operation = await bulk.run_query("{ products { edges { node { id } } } }")

        assert operation.status == BulkOperationStatus.COMPLETED
        assert operation.url == RESULT_URL
        assert operation.object_count == 2
        assert api.calls.count("poll") == 3

    @pytest.mark.asyncio
    async def test_failed_carries_error_code(self):
        api = FakeAdminApi(statuses=["CREATED", "RUNNING", "FAILED"], error_code="INTERNAL_ERROR")
        bulk = api.bulk_client()

        with pytest.raises(BulkOperationFailed) as exc_info:
            await bulk.run_query("{ products { edges { node { id } } } }")

        assert exc_info.value.error_code == "INTERNAL_ERROR"
        assert "INTERNAL_ERROR" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_running_operation_blocks_submit(self):
        api = FakeAdminApi(current={"id": "gid://shopify/BulkOperation/0", "status": "RUNNING"})
        bulk = api.bulk_client()

        with pytest.raises(BulkOperationInProgress):
            await bulk.submit_query("{ products { edges { node { id } } } }")

        assert "run_query" not in api.calls

    @pytest.mark.asyncio
    async def test_finished_operation_does_not_block(self):
        api = FakeAdminApi(current={"id": "gid://shopify/BulkOperation/0", "status": "COMPLETED"})
        bulk = api.bulk_client()

        operation = await bulk.submit_query("{ products { edges { node { id } } } }")

        assert operation.id == OPERATION_ID

    @pytest.mark.asyncio
    async def test_user_errors_raise(self):
        api = FakeAdminApi(user_errors=[{"field": ["query"], "message": "Invalid bulk query"}])
        bulk = api.bulk_client()

        with pytest.raises(ShopifyUserError):
            await bulk.submit_query("{ nope }")

    @pytest.mark.asyncio
    async def test_timeout(self):
        api = FakeAdminApi(statuses=["RUNNING"])
        bulk = api.bulk_client()

        with pytest.raises(BulkOperationTimeout):
            await bulk.poll_until_complete(OPERATION_ID, policy=PollPolicy(interval=0, max_wait=0))

    @pytest.mark.asyncio
    async def test_expired(self):
        api = FakeAdminApi(statuses=["EXPIRED"])

        with pytest.raises(BulkOperationExpired):
            await api.bulk_client().poll_until_complete(OPERATION_ID)

    @pytest.mark.asyncio
    async def test_remote_cancel(self):
        api = FakeAdminApi(statuses=["RUNNING", "CANCELED"])

        with pytest.raises(BulkOperationCanceled):
            await api.bulk_client().poll_until_complete(OPERATION_ID)

    @pytest.mark.asyncio
    async def test_cancel_event_cancels_operation(self):
        api = FakeAdminApi(statuses=["RUNNING"])
        cancel_event = asyncio.Event()
        cancel_event.set()

        with pytest.raises(BulkOperationCanceled):
            await api.bulk_client().poll_until_complete(OPERATION_ID, cancel_event=cancel_event)

        assert api.canceled is True

    @pytest.mark.asyncio
    async def test_progress_callback(self):
        api = FakeAdminApi(statuses=["RUNNING", "COMPLETED"])
        seen = []

        await api.bulk_client().poll_until_complete(OPERATION_ID, on_progress=lambda op: seen.append(op.status))

        assert seen == [BulkOperationStatus.RUNNING, BulkOperationStatus.COMPLETED]

    def test_errors_share_base(self):
        assert issubclass(BulkOperationFailed, BulkOperationError)
        assert issubclass(BulkOperationTimeout, BulkOperationError)


class TestResults:

    @pytest.mark.asyncio
    async def test_stream_results(self):
        lines = [{"id": "gid://shopify/Product/1"}, {"id": "gid://shopify/ProductVariant/1", "__parentId": "gid://shopify/Product/1"}]
        api = FakeAdminApi(result_lines=lines)

        streamed = [obj async for obj in api.bulk_client().stream_results(RESULT_URL)]

        assert streamed == lines

    @pytest.mark.asyncio
    async def test_download_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403)

        client = ShopifyClient("test-store", "shpat_test", transport=httpx.MockTransport(handler))

        with pytest.raises(BulkOperationError):
            async for _ in BulkJobClient(client).stream_results(RESULT_URL):
                pass

    @pytest.mark.asyncio
    async def test_connection_drop_raises_bulk_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection reset", request=request)

        client = ShopifyClient("test-store", "shpat_test", transport=httpx.MockTransport(handler))

        with pytest.raises(BulkOperationError, match="interrupted"):
            async for _ in BulkJobClient(client).stream_results(RESULT_URL):
                pass

    @pytest.mark.asyncio
    async def test_staged_upload_connection_drop(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection reset", request=request)

        client = ShopifyClient("test-store", "shpat_test", transport=httpx.MockTransport(handler))
        target = StagedUploadTarget(url=UPLOAD_URL, resource_url=None)

        with pytest.raises(BulkOperationError, match="Staged upload failed"):
            await BulkJobClient(client).upload_to_staged_target(target, '{"input": {}}')


class TestBulkMutation:

    @pytest.mark.asyncio
    async def test_staged_upload_then_mutation(self):
        api = FakeAdminApi(statuses=["RUNNING", "COMPLETED"])
        bulk = api.bulk_client()

        operation = await bulk.run_bulk_mutation(
            "mutation call($input: ProductInput!) { productUpdate(input: $input) { product { id } } }",
            [{"input": {"id": "gid://shopify/Product/1"}}, {"input": {"id": "gid://shopify/Product/2"}}],
        )

        assert operation.status == BulkOperationStatus.COMPLETED
        assert api.calls[:3] == ["staged", "current", "run_mutation"]
        assert b"gid://shopify/Product/2" in api.uploads[0]

    @pytest.mark.asyncio
    async def test_price_update_errors_attributed_by_line(self):
        api = FakeAdminApi(
            statuses=["COMPLETED"],
            result_lines=[
                {"data": {"productVariantsBulkUpdate": {"userErrors": []}}, "__lineNumber": 0},
                {"data": {"productVariantsBulkUpdate": {"userErrors": [{"message": "Price is invalid"}]}}, "__lineNumber": 1},
            ],
        )
        updates = {
            "gid://shopify/Product/1": [{"id": "gid://shopify/ProductVariant/1", "price": "10.00"}],
            "gid://shopify/Product/2": [{"id": "gid://shopify/ProductVariant/2", "price": "-1"}],
        }

        result = await bulk_update_variants(api.bulk_client(), updates, policy=FAST)

        assert result.success_count == 1
        assert result.error_count == 1
        assert "Price is invalid" in result.errors_by_product["gid://shopify/Product/2"]
