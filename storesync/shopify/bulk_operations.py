"""
Shopify Bulk Operations handler.

Manages submitting, polling, canceling and downloading bulk operations, plus
the staged-upload handshake that bulk mutations need for their input file.
"""

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Union

import httpx

from .client import ShopifyClient, ShopifyClientError, raise_for_user_errors
from .mutations import (
    BULK_OPERATION_CANCEL,
    BULK_OPERATION_RUN_MUTATION,
    BULK_OPERATION_RUN_QUERY,
    STAGED_UPLOADS_CREATE,
)
from .queries import BULK_OPERATION_STATUS_QUERY, CURRENT_BULK_OPERATION_QUERY

logger = logging.getLogger(__name__)


class BulkOperationStatus(str, Enum):
    """Lifecycle of an externally executed bulk job."""
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    CANCELING = "CANCELING"
    CANCELED = "CANCELED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            BulkOperationStatus.COMPLETED,
            BulkOperationStatus.CANCELED,
            BulkOperationStatus.FAILED,
            BulkOperationStatus.EXPIRED,
        )


class BulkOperationType(str, Enum):
    QUERY = "QUERY"
    MUTATION = "MUTATION"


class BulkOperationError(ShopifyClientError):
    """Error during bulk operation."""
    pass


class BulkOperationInProgress(BulkOperationError):
    """Another bulk operation is already running on the store."""

    def __init__(self, operation_id: str):
        super().__init__(f"Bulk operation {operation_id} is already in progress")
        self.operation_id = operation_id


class BulkOperationFailed(BulkOperationError):
    """Shopify reported the operation as FAILED."""

    def __init__(self, operation_id: str, error_code: str, partial_url: Optional[str] = None):
        super().__init__(
            f"Bulk operation {operation_id} failed with error: {error_code}"
        )
        self.operation_id = operation_id
        self.error_code = error_code
        self.partial_url = partial_url


class BulkOperationCanceled(BulkOperationError):
    """Bulk operation was canceled."""
    pass


class BulkOperationExpired(BulkOperationError):
    """Bulk operation results expired before they were collected."""
    pass


class BulkOperationTimeout(BulkOperationError):
    """Bulk operation timed out."""
    pass


@dataclass
class BulkOperation:
    """Snapshot of a bulk operation as reported by Shopify."""

    id: str
    status: BulkOperationStatus
    error_code: Optional[str] = None
    object_count: int = 0
    file_size: int = 0
    url: Optional[str] = None
    partial_url: Optional[str] = None
    type: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "BulkOperation":
        return cls(
            id=payload["id"],
            status=BulkOperationStatus(payload.get("status", "CREATED")),
            error_code=payload.get("errorCode"),
            object_count=int(payload.get("objectCount") or 0),
            file_size=int(payload.get("fileSize") or 0),
            url=payload.get("url"),
            partial_url=payload.get("partialDataUrl"),
            type=payload.get("type"),
        )


@dataclass
class StagedUploadTarget:
    """Upload target returned by stagedUploadsCreate."""

    url: str
    resource_url: Optional[str]
    parameters: List[Dict[str, str]] = field(default_factory=list)

    @property
    def staged_upload_path(self) -> str:
        """Path that bulkOperationRunMutation expects (the form's ``key`` value)."""
        for param in self.parameters:
            if param.get("name") == "key":
                return param["value"]
        return self.resource_url or ""


@dataclass
class PollPolicy:
    """Polling schedule for a bulk operation."""

    interval: float = 2.0
    max_wait: float = 300.0
    jitter: float = 0.0

    def next_delay(self) -> float:
        if self.jitter > 0:
            return self.interval + random.uniform(0, self.jitter)
        return self.interval


class BulkJobClient:
    """
    Manages Shopify bulk operations for efficient large-scale data transfer.
    """

    def __init__(self, client: ShopifyClient, policy: Optional[PollPolicy] = None):
        """
        Initialize bulk job client.

        Args:
            client: Shopify GraphQL client
            policy: Default polling schedule
        """
        self.client = client
        self.policy = policy or PollPolicy()

    async def get_current_operation(
        self, op_type: BulkOperationType = BulkOperationType.QUERY
    ) -> Optional[BulkOperation]:
        """Return the store's current bulk operation of the given type, if any."""
        data = await self.client.execute(
            CURRENT_BULK_OPERATION_QUERY, variables={"type": op_type.value}
        )
        operation = data.get("currentBulkOperation")
        return BulkOperation.from_payload(operation) if operation else None

    async def get_operation(self, operation_id: str) -> Optional[BulkOperation]:
        data = await self.client.execute(
            BULK_OPERATION_STATUS_QUERY, variables={"id": operation_id}
        )
        operation = data.get("node")
        return BulkOperation.from_payload(operation) if operation else None

    async def _ensure_idle(self, op_type: BulkOperationType) -> None:
        current = await self.get_current_operation(op_type)
        if current is not None and not current.status.is_terminal:
            raise BulkOperationInProgress(current.id)

    async def submit_query(self, query: str) -> BulkOperation:
        """
        Submit a bulk query.

        Args:
            query: Inner query document (without the bulkOperationRunQuery wrapper)

        Returns:
            The created operation

        Raises:
            BulkOperationInProgress: If a query is already running on the store
        """
        await self._ensure_idle(BulkOperationType.QUERY)

        data = await self.client.execute(
            BULK_OPERATION_RUN_QUERY, variables={"query": query}
        )
        payload = raise_for_user_errors(
            "bulkOperationRunQuery", data.get("bulkOperationRunQuery")
        )
        operation = payload.get("bulkOperation")
        if not operation or not operation.get("id"):
            raise BulkOperationError("No operation ID returned")

        logger.info(f"Bulk query started on {self.client.shop_domain}: {operation['id']}")
        return BulkOperation.from_payload(operation)

    async def submit_mutation(self, mutation: str, staged_upload_path: str) -> BulkOperation:
        """
        Submit a bulk mutation whose variables were uploaded beforehand.

        Args:
            mutation: The mutation executed once per JSONL line
            staged_upload_path: Path returned by upload_to_staged_target
        """
        await self._ensure_idle(BulkOperationType.MUTATION)

        data = await self.client.execute(
            BULK_OPERATION_RUN_MUTATION,
            variables={"mutation": mutation, "stagedUploadPath": staged_upload_path},
        )
        payload = raise_for_user_errors(
            "bulkOperationRunMutation", data.get("bulkOperationRunMutation")
        )
        operation = payload.get("bulkOperation")
        if not operation or not operation.get("id"):
            raise BulkOperationError("No operation ID returned")

        logger.info(f"Bulk mutation started on {self.client.shop_domain}: {operation['id']}")
        return BulkOperation.from_payload(operation)

    async def poll_until_complete(
        self,
        operation_id: str,
        policy: Optional[PollPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[Callable[[BulkOperation], None]] = None,
    ) -> BulkOperation:
        """
        Poll a bulk operation until it completes.

        Args:
            operation_id: The bulk operation GID
            policy: Polling schedule, defaults to the client's policy
            cancel_event: When set, the operation is canceled at the next poll
            on_progress: Called with every intermediate snapshot

        Returns:
            The COMPLETED operation

        Raises:
            BulkOperationFailed: Shopify reported FAILED (carries error_code)
            BulkOperationCanceled: Canceled remotely or through cancel_event
            BulkOperationExpired: Results expired
            BulkOperationTimeout: max_wait elapsed
        """
        policy = policy or self.policy
        loop = asyncio.get_running_loop()
        deadline = loop.time() + policy.max_wait

        while True:
            if cancel_event is not None and cancel_event.is_set():
                await self.cancel(operation_id)
                raise BulkOperationCanceled(
                    f"Bulk operation {operation_id} was canceled by caller"
                )

            operation = await self.get_operation(operation_id)
            if operation is None:
                raise BulkOperationError(f"Operation {operation_id} not found")

            logger.debug(
                f"Bulk operation {operation_id}: {operation.status.value}, "
                f"objects: {operation.object_count}"
            )
            if on_progress is not None:
                on_progress(operation)

            if operation.status == BulkOperationStatus.COMPLETED:
                logger.info(
                    f"Bulk operation {operation_id} completed: "
                    f"{operation.object_count} objects, {operation.file_size} bytes"
                )
                return operation

            if operation.status == BulkOperationStatus.FAILED:
                raise BulkOperationFailed(
                    operation_id,
                    operation.error_code or "UNKNOWN",
                    partial_url=operation.partial_url,
                )

            if operation.status == BulkOperationStatus.CANCELED:
                raise BulkOperationCanceled(f"Bulk operation {operation_id} was canceled")

            if operation.status == BulkOperationStatus.EXPIRED:
                raise BulkOperationExpired(f"Bulk operation {operation_id} expired")

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise BulkOperationTimeout(
                    f"Bulk operation {operation_id} did not complete within "
                    f"{policy.max_wait}s"
                )

            await asyncio.sleep(min(policy.next_delay(), remaining))

    async def cancel(self, operation_id: str) -> bool:
        """Request cancellation. Returns False when Shopify refuses."""
        try:
            data = await self.client.execute(
                BULK_OPERATION_CANCEL, variables={"id": operation_id}
            )
            raise_for_user_errors("bulkOperationCancel", data.get("bulkOperationCancel"))
        except ShopifyClientError as e:
            logger.error(f"Failed to cancel bulk operation {operation_id}: {e}")
            return False

        logger.info(f"Cancel requested for bulk operation {operation_id}")
        return True

    async def create_staged_upload(
        self,
        filename: str,
        mime_type: str = "text/jsonl",
        resource: str = "BULK_MUTATION_VARIABLES",
        file_size: Optional[int] = None,
    ) -> StagedUploadTarget:
        """Phase one of a staged upload: ask Shopify where to put the bytes."""
        upload_input: Dict[str, Any] = {
            "filename": filename,
            "mimeType": mime_type,
            "resource": resource,
            "httpMethod": "POST",
        }
        if file_size is not None:
            upload_input["fileSize"] = str(file_size)

        data = await self.client.execute(
            STAGED_UPLOADS_CREATE, variables={"input": [upload_input]}
        )
        payload = raise_for_user_errors("stagedUploadsCreate", data.get("stagedUploadsCreate"))
        targets = payload.get("stagedTargets") or []
        if not targets:
            raise BulkOperationError("No staged upload target returned")

        target = targets[0]
        return StagedUploadTarget(
            url=target["url"],
            resource_url=target.get("resourceUrl"),
            parameters=target.get("parameters") or [],
        )

    async def upload_to_staged_target(
        self,
        target: StagedUploadTarget,
        content: Union[str, bytes],
        filename: str = "variables.jsonl",
        mime_type: str = "text/jsonl",
    ) -> str:
        """
        Phase two of a staged upload: send the payload bytes.

        Returns:
            The staged upload path to reference in the mutation request
        """
        if isinstance(content, str):
            content = content.encode("utf-8")

        form = {p["name"]: p["value"] for p in target.parameters}

        try:
            async with self.client.new_http_client() as http:
                response = await http.post(
                    target.url,
                    data=form,
                    files={"file": (filename, content, mime_type)},
                )
        except httpx.RequestError as e:
            raise BulkOperationError(f"Staged upload failed: {e}") from e

        if response.status_code >= 400:
            raise BulkOperationError(
                f"Staged upload failed with status {response.status_code}"
            )

        logger.info(f"Uploaded {len(content)} bytes to staged target")
        return target.staged_upload_path

    async def stream_results(self, url: str) -> AsyncIterator[Dict[str, Any]]:
        """
        Download and stream a JSONL result file line by line.

        Args:
            url: The download URL

        Yields:
            Parsed JSON objects from each line
        """
        try:
            async with self.client.new_http_client() as http:
                async with http.stream("GET", url) as response:
                    if response.status_code >= 400:
                        raise BulkOperationError(
                            f"Result download failed with status {response.status_code}"
                        )

                    buffer = ""
                    async for chunk in response.aiter_text():
                        buffer += chunk
                        while "\n" in buffer:
                            line, buffer = buffer.split("\n", 1)
                            line = line.strip()
                            if line:
                                try:
                                    yield json.loads(line)
                                except json.JSONDecodeError as e:
                                    logger.warning(f"Failed to parse line: {e}")

                    if buffer.strip():
                        try:
                            yield json.loads(buffer.strip())
                        except json.JSONDecodeError as e:
                            logger.warning(f"Failed to parse final line: {e}")
        except httpx.RequestError as e:
            raise BulkOperationError(f"Result download interrupted: {e}") from e

    async def run_query(
        self,
        query: str,
        policy: Optional[PollPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkOperation:
        """Submit a bulk query and wait for it."""
        operation = await self.submit_query(query)
        return await self.poll_until_complete(
            operation.id, policy=policy, cancel_event=cancel_event
        )

    async def run_bulk_mutation(
        self,
        mutation: str,
        variables: Iterable[Dict[str, Any]],
        policy: Optional[PollPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkOperation:
        """
        Stage the variables file, start the bulk mutation and wait for it.

        Args:
            mutation: Mutation executed once per variables line
            variables: One variables dict per mutation call
        """
        body = self.to_jsonl(variables)
        target = await self.create_staged_upload(
            "variables.jsonl", file_size=len(body.encode("utf-8"))
        )
        path = await self.upload_to_staged_target(target, body)
        operation = await self.submit_mutation(mutation, path)
        return await self.poll_until_complete(
            operation.id, policy=policy, cancel_event=cancel_event
        )

    @staticmethod
    def to_jsonl(items: Iterable[Dict[str, Any]]) -> str:
        return "\n".join(json.dumps(item) for item in items)
