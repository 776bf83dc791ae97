"""
Tool Dispatch Protocol.

Turns a ToolCallRequest into exactly one ToolResult, sends it back on the
control channel that delivered the request, and asks the remote service to
continue the response. Each call runs as its own task so the receive loop is
never blocked; concurrent calls may finish in any order.
"""

import asyncio
import time
from typing import Any, Dict, Optional

import structlog
from prometheus_client import Counter, Histogram

from vivid_voice.core.errors import ToolArgumentError, ToolExecutionError
from vivid_voice.core.models import ToolCallRequest, ToolResult
from vivid_voice.core.state import ConversationFlags
from vivid_voice.protocol import codec
from vivid_voice.tools.arguments import parse_tool_arguments
from vivid_voice.tools.collaborator import ToolCollaborator
from vivid_voice.tools.registry import ToolRegistry

logger = structlog.get_logger(__name__)

_TOOL_CALLS = Counter(
    "vivid_voice_tool_calls_total",
    "Tool calls dispatched, by tool and outcome",
    labelnames=("tool", "outcome"),
)
_TOOL_LATENCY = Histogram(
    "vivid_voice_tool_call_seconds",
    "Time from tool-call request to result sent",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0, 10.0, 20.0),
    labelnames=("tool",),
)

GENERIC_FAILURE = "Failed to fetch data"


class ToolDispatcher:
    """
    Fulfils tool-call requests for one orchestrator.

    Outstanding calls are tracked by call_id. ``dispatch`` returns the task so
    callers (and tests) can await a specific call.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        collaborator: ToolCollaborator,
        flags: ConversationFlags,
        *,
        default_timeout_sec: float = 15.0,
    ):
        self._registry = registry
        self._collaborator = collaborator
        self._flags = flags
        self._default_timeout = default_timeout_sec
        self._outstanding: Dict[str, asyncio.Task] = {}

    @property
    def outstanding(self) -> Dict[str, asyncio.Task]:
        return dict(self._outstanding)

    def dispatch(
        self,
        request: ToolCallRequest,
        channel: Any,
        *,
        context: Optional[str] = None,
        identity: Optional[str] = None,
    ) -> asyncio.Task:
        """
        Start fulfilling ``request``; replies go to ``channel``.

        The fetching flag is raised by the task before anything else runs, so
        the UI sees it before the collaborator is contacted.
        """
        task = asyncio.create_task(
            self._run(request, channel, context, identity),
            name=f"tool-{request.call_id}",
        )
        self._outstanding[request.call_id] = task
        task.add_done_callback(lambda _t, call_id=request.call_id: self._outstanding.pop(call_id, None))
        return task

    async def cancel_all(self) -> None:
        tasks = list(self._outstanding.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._outstanding.clear()

    async def _run(
        self,
        request: ToolCallRequest,
        channel: Any,
        context: Optional[str],
        identity: Optional[str],
    ) -> ToolResult:
        started = time.perf_counter()
        log = logger.bind(call_id=request.call_id, tool=request.tool_name)
        await self._flags.begin_fetch(request.call_id, request.tool_name)
        try:
            result = await self.execute(request, context=context, identity=identity)
            await self._send_result(channel, result, log)
            _TOOL_CALLS.labels(request.tool_name, "success" if result.succeeded else "failure").inc()
            _TOOL_LATENCY.labels(request.tool_name).observe(time.perf_counter() - started)
            return result
        finally:
            await self._flags.end_fetch(request.call_id)

    async def execute(
        self,
        request: ToolCallRequest,
        *,
        context: Optional[str] = None,
        identity: Optional[str] = None,
    ) -> ToolResult:
        """
        Resolve one request into a ToolResult. Never raises for tool failures.
        """
        log = logger.bind(call_id=request.call_id, tool=request.tool_name)
        try:
            definition = self._registry.get(request.tool_name, context=context)
            if definition is None:
                raise ToolArgumentError(f"Unknown tool: {request.tool_name}")
            arguments = parse_tool_arguments(request.tool_name, request.arguments_payload)
            timeout = definition.max_execution_time or self._default_timeout

            log.info("🔧 Tool call started", arguments=arguments.to_payload(), timeout_sec=timeout)
            outcome = await asyncio.wait_for(
                self._collaborator.execute(request.tool_name, arguments.to_payload(), identity),
                timeout=timeout,
            )
        except ToolArgumentError as exc:
            log.warning("Tool call rejected", error=str(exc))
            return _failure(request.call_id, str(exc))
        except asyncio.TimeoutError:
            log.error("Tool call timed out")
            return _failure(request.call_id, f"Tool {request.tool_name} timed out")
        except ToolExecutionError as exc:
            log.error("Tool call failed", error=str(exc))
            return _failure(request.call_id, GENERIC_FAILURE)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("Tool collaborator raised", error=str(exc), exc_info=True)
            return _failure(request.call_id, GENERIC_FAILURE)

        if not outcome.success:
            log.warning("Tool call returned failure", error=outcome.error)
            output = dict(outcome.output)
            output["success"] = False
            output["error"] = outcome.error or GENERIC_FAILURE
            return ToolResult(call_id=request.call_id, output_payload=output, succeeded=False)

        log.info("✅ Tool call completed")
        output = dict(outcome.output)
        output.setdefault("success", True)
        return ToolResult(call_id=request.call_id, output_payload=output, succeeded=True)

    async def _send_result(self, channel: Any, result: ToolResult, log) -> None:
        # The channel may already be closing; the result is best effort then.
        try:
            await channel.send(codec.tool_result_event(result))
            await channel.send(codec.resume_event())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.warning("Could not deliver tool result", error=str(exc), succeeded=result.succeeded)


def _failure(call_id: str, message: str) -> ToolResult:
    return ToolResult(
        call_id=call_id,
        output_payload={"success": False, "error": message},
        succeeded=False,
    )
