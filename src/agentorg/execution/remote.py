"""Remote task execution adapter.

Issues one streaming HTTP request per stage attempt and feeds every decoded
stream payload to a callback, in arrival order:

- The request body carries the task, project and stage identity.
- The response body is a server-sent event stream of JSON payloads
  (thought/action/result/error, progress, deliverable, complete).
- Malformed payloads are logged and skipped; the stream continues.
- A ``complete`` payload ends the read loop.
- The call races the execution's CancellationToken; cancellation stops
  the read loop cooperatively and is reported as a CANCELLED outcome.

Transport failures never raise out of ``execute``: they are returned as a
FAILED (or TIMED_OUT) outcome carrying a human-readable error.

Source:
- src/agentorg/stream/reader.py (read_sse)
- src/agentorg/stream/payloads.py (parse_task_event)
- src/agentorg/execution/tokens.py (CancellationToken)
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.agentorg.catalog import stage_at
from src.agentorg.execution.tokens import CancellationToken
from src.agentorg.projects.models import PipelineProject
from src.agentorg.stream.payloads import CompleteEvent, parse_task_event
from src.agentorg.stream.reader import read_sse
from src.agentorg.tasks.models import Task


logger = logging.getLogger(__name__)

DEFAULT_EXECUTION_URL = "http://localhost:3000/api/tasks/execute"

StreamEventCallback = Callable[[Any], Union[None, Awaitable[None]]]


class ExecutionRequest(BaseModel):
    """Body of the start-execution request (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    task_id: str
    project_id: str
    project_title: str
    stage_index: int
    stage_name: str
    stage_description: str
    agent_id: str
    deliverable_key: Optional[str] = None

    @classmethod
    def for_task(cls, task: Task, project: PipelineProject) -> "ExecutionRequest":
        """Build the request for ``task``, a stage attempt of ``project``."""
        stage = stage_at(task.stage_index)
        return cls(
            task_id=task.id,
            project_id=project.id,
            project_title=project.title,
            stage_index=task.stage_index,
            stage_name=stage.name if stage else "",
            stage_description=stage.description if stage else "",
            agent_id=task.assigned_to,
            deliverable_key=stage.deliverable_key if stage else None,
        )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class ExecutionOutcome:
    """Result of one remote stage execution.

    Attributes:
        status: How the call ended.
        error: Human-readable failure description (None on success).
        received_complete: True if the stream sent a ``complete`` payload.
        events_applied: Number of payloads handed to the callback.
        events_skipped: Number of malformed payloads skipped.
        status_code: HTTP status code of the response, if one arrived.
    """

    status: OutcomeStatus
    error: Optional[str] = None
    received_complete: bool = False
    events_applied: int = 0
    events_skipped: int = 0
    status_code: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.COMPLETED

    @property
    def cancelled(self) -> bool:
        return self.status == OutcomeStatus.CANCELLED


class RemoteTaskExecutor:
    """Streams stage executions from the remote task executor.

    Attributes:
        url: The task execution endpoint.
        timeout_seconds: Per-read timeout on the stream; None waits forever.
        connect_timeout: Connection timeout in seconds.

    Example:
        >>> executor = RemoteTaskExecutor("http://localhost:3000/api/tasks/execute")
        >>> outcome = await executor.execute(request, token, on_event)
        >>> await executor.close()
    """

    def __init__(
        self,
        url: str = DEFAULT_EXECUTION_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: Optional[float] = None,
        connect_timeout: float = 10.0,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.connect_timeout = connect_timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds, connect=self.connect_timeout),
                headers={"User-Agent": "AgentOrg-Pipeline/1.0"},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RemoteTaskExecutor":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def execute(
        self,
        request: ExecutionRequest,
        token: CancellationToken,
        on_event: StreamEventCallback,
    ) -> ExecutionOutcome:
        """Run one stage execution until completion, failure or cancellation.

        Args:
            request: The start-execution request.
            token: Cancellation token guarding this execution.
            on_event: Called with each decoded payload, in arrival order.
                May return an awaitable, which is awaited before the next
                payload is read.

        Returns:
            The ExecutionOutcome.
        """
        if token.cancelled:
            return self._cancelled_outcome(request, token)

        reader = asyncio.ensure_future(self._stream(request, on_event))
        canceller = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {reader, canceller},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            reader.cancel()
            canceller.cancel()
            raise

        canceller.cancel()
        if reader in done:
            return reader.result()

        reader.cancel()
        await asyncio.wait({reader})
        return self._cancelled_outcome(request, token)

    async def _stream(
        self,
        request: ExecutionRequest,
        on_event: StreamEventCallback,
    ) -> ExecutionOutcome:
        applied = 0
        skipped = 0
        status_code: Optional[int] = None

        logger.info(
            "Starting remote stage execution",
            extra={
                "project_id": request.project_id,
                "task_id": request.task_id,
                "stage_index": request.stage_index,
                "agent_id": request.agent_id,
            },
        )

        try:
            async with self.client.stream(
                "POST",
                self.url,
                json=request.to_payload(),
                headers={"Accept": "text/event-stream"},
            ) as response:
                status_code = response.status_code
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    return ExecutionOutcome(
                        status=OutcomeStatus.FAILED,
                        error=f"Execution failed: {body or response.status_code}",
                        status_code=status_code,
                    )

                async for sse in read_sse(response.aiter_bytes()):
                    result = parse_task_event(sse.data)
                    if not result.ok:
                        skipped += 1
                        logger.warning(
                            "Skipping malformed stream payload: %s",
                            result.error,
                            extra={
                                "task_id": request.task_id,
                                "data": result.raw[:200],
                            },
                        )
                        continue

                    outcome = on_event(result.event)
                    if inspect.isawaitable(outcome):
                        await outcome
                    applied += 1

                    if isinstance(result.event, CompleteEvent):
                        return ExecutionOutcome(
                            status=OutcomeStatus.COMPLETED,
                            received_complete=True,
                            events_applied=applied,
                            events_skipped=skipped,
                            status_code=status_code,
                        )
        except httpx.TimeoutException as exc:
            logger.error(
                "Remote stage execution timed out",
                extra={"task_id": request.task_id, "timeout": self.timeout_seconds},
            )
            return ExecutionOutcome(
                status=OutcomeStatus.TIMED_OUT,
                error=f"Error: execution timed out ({exc.__class__.__name__})",
                events_applied=applied,
                events_skipped=skipped,
                status_code=status_code,
            )
        except (httpx.HTTPError, httpx.StreamError) as exc:
            logger.error(
                "Remote stage execution failed: %s",
                exc,
                extra={"task_id": request.task_id, "url": self.url},
            )
            return ExecutionOutcome(
                status=OutcomeStatus.FAILED,
                error=f"Error: {exc}",
                events_applied=applied,
                events_skipped=skipped,
                status_code=status_code,
            )

        # The stream ended without a complete payload.
        return ExecutionOutcome(
            status=OutcomeStatus.COMPLETED,
            received_complete=False,
            events_applied=applied,
            events_skipped=skipped,
            status_code=status_code,
        )

    def _cancelled_outcome(
        self,
        request: ExecutionRequest,
        token: CancellationToken,
    ) -> ExecutionOutcome:
        logger.info(
            "Remote stage execution cancelled",
            extra={"task_id": request.task_id, "reason": token.reason},
        )
        return ExecutionOutcome(status=OutcomeStatus.CANCELLED, error="Execution cancelled")

