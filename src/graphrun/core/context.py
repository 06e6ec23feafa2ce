"""RunContext — mutable per-run state shared by all in-flight node executions."""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from graphrun.core.expressions import ExpressionEvaluator, SimpleEvaluator
from graphrun.services.base import ServiceError

if TYPE_CHECKING:
    from graphrun.services.base import (
        ModelService,
        RetrievalService,
        TokenProvider,
        ToolInvoker,
        TransformService,
    )
    from graphrun.services.platform import PlatformClient

logger = logging.getLogger(__name__)

# (tool_name, args, function_code) -> tool output
ExecuteCode = Callable[[str, dict[str, Any], str], Awaitable[Any]]


class LogPhase(Enum):
    START = "start"
    COMPLETE = "complete"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"


@dataclass
class LogEntry:
    node_id: str
    node_kind: str
    phase: LogPhase
    message: str
    payload: Any = None
    timestamp: float = 0.0


LogSink = Callable[[LogEntry], None]

_LEVELS = {LogPhase.ERROR: logging.ERROR, LogPhase.WARNING: logging.WARNING}


def default_log_sink(entry: LogEntry) -> None:
    logger.log(_LEVELS.get(entry.phase, logging.INFO), "[%s] %s", entry.node_kind, entry.message)


class RunContext:
    """Outputs, global state, the run log and collaborator handles for one run.

    ``node_outputs`` and ``global_state`` are plain dicts: every writer runs on
    the same event loop and never awaits between reading and writing.
    The context is reset at the start of each run and must not be shared by
    concurrent runs.

    Collaborators not passed explicitly fall back to a ``PlatformClient``
    built lazily from ``base_url`` and ``token_provider``.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token_provider: "TokenProvider | None" = None,
        execute_code: ExecuteCode | None = None,
        log_sink: LogSink | None = None,
        evaluator: ExpressionEvaluator | None = None,
        model_service: "ModelService | None" = None,
        tool_invoker: "ToolInvoker | None" = None,
        retrieval_service: "RetrievalService | None" = None,
        transform_service: "TransformService | None" = None,
    ) -> None:
        self.base_url = base_url
        self.token_provider = token_provider
        self.execute_code = execute_code
        self.log_sink = log_sink or default_log_sink
        self.evaluator = evaluator or SimpleEvaluator()
        self._model_service = model_service
        self._tool_invoker = tool_invoker
        self._retrieval_service = retrieval_service
        self._transform_service = transform_service
        self._platform: "PlatformClient | None" = None

        self.node_outputs: dict[str, Any] = {}
        self.global_state: dict[str, Any] = {}
        self.log: list[LogEntry] = []

    def reset(self) -> None:
        self.node_outputs = {}
        self.global_state = {}
        self.log = []

    def add_log(
        self,
        node_id: str,
        node_kind: str,
        phase: LogPhase,
        message: str,
        payload: Any = None,
    ) -> LogEntry:
        """Append an entry to the run log and forward it to the sink.

        A failing sink is reported through ``logging`` and never raised.
        """
        entry = LogEntry(
            node_id=node_id,
            node_kind=node_kind,
            phase=phase,
            message=message,
            payload=payload,
            timestamp=time.time(),
        )
        self.log.append(entry)
        try:
            self.log_sink(entry)
        except Exception:
            logger.exception("Log sink failed for %s entry of node %s", phase.value, node_id)
        return entry

    def state_snapshot(self) -> dict[str, Any]:
        return dict(self.global_state)

    def _get_platform(self) -> "PlatformClient":
        if self._platform is None:
            from graphrun.services.platform import PlatformClient

            if not self.base_url:
                raise ServiceError(
                    "No collaborator configured and no base_url to reach the platform"
                )
            self._platform = PlatformClient(self.base_url, token_provider=self.token_provider)
        return self._platform

    @property
    def model_service(self) -> "ModelService":
        return self._model_service or self._get_platform()

    @property
    def tool_invoker(self) -> "ToolInvoker":
        return self._tool_invoker or self._get_platform()

    @property
    def retrieval_service(self) -> "RetrievalService":
        return self._retrieval_service or self._get_platform()

    @property
    def transform_service(self) -> "TransformService":
        return self._transform_service or self._get_platform()

    async def aclose(self) -> None:
        if self._platform is not None:
            await self._platform.aclose()
            self._platform = None

    def __repr__(self) -> str:
        return (
            f"RunContext(outputs={len(self.node_outputs)}, "
            f"state={self.global_state!r}, log={len(self.log)})"
        )
