"""Tool invoker with argument filtering, timeouts and telemetry.

This module provides the ToolInvoker class that runs registered action
tools one at a time or as a concurrent batch. The invoker is stateless
apart from its registry and can be shared between sessions.
"""

import asyncio
import inspect
import time
from typing import Any

from agent_engine.telemetry import (
    TOOL_CALL_COMPLETED,
    TOOL_CALL_FAILED,
    TOOL_CALL_STARTED,
    TraceContext,
    get_logger,
)
from agent_engine.telemetry.events import TOOL_BATCH_TIMEOUT
from agent_engine.tools.registry import ToolRegistry
from agent_engine.tools.types import ToolResult, ToolRole

log = get_logger(__name__)


class ToolExecutionError(Exception):
    """Raised when tool execution fails as a whole."""

    pass


class ToolBatchTimeout(ToolExecutionError):
    """Raised when a batch of tool calls exceeds its time budget."""

    def __init__(self, timeout_s: float, tool_names: list[str]) -> None:
        """Initialize with the budget and the calls that were running.

        Args:
            timeout_s: Budget that was exceeded.
            tool_names: Names of the tools in the batch.
        """
        super().__init__(f"Tool batch {tool_names} exceeded {timeout_s:.1f}s")
        self.timeout_s = timeout_s
        self.tool_names = tool_names


class ToolInvoker:
    """Runs action tools with timeouts and observability."""

    def __init__(self, registry: ToolRegistry) -> None:
        """Initialize tool invoker.

        Args:
            registry: Tool registry containing registered tools.
        """
        self.registry = registry
        log.debug("tool_invoker_initialized")

    async def execute_tool(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        trace_ctx: TraceContext,
        tool_call_id: str | None = None,
    ) -> ToolResult:
        """Execute one tool call.

        Never raises for tool-level problems: an unknown tool, a timeout or an
        exception inside the tool all come back as a failed ToolResult.

        Args:
            tool_name: Name of the tool to execute.
            arguments: Tool arguments (keyword arguments for the executor).
            trace_ctx: Trace context for telemetry.
            tool_call_id: Call identifier to echo in the result.

        Returns:
            ToolResult with execution outcome.
        """
        entry = self.registry.get_tool(tool_name)
        if entry is None or entry[0].role != ToolRole.ACTION or entry[1] is None:
            available_tools = [t.name for t in self.registry.list_tools(role=ToolRole.ACTION)]
            error_msg = f"Tool '{tool_name}' not found. Available: {available_tools}"
            log.warning(
                TOOL_CALL_FAILED,
                tool_name=tool_name,
                error=error_msg,
                trace_id=trace_ctx.trace_id,
            )
            return ToolResult(
                tool_name=tool_name,
                tool_call_id=tool_call_id,
                success=False,
                output={},
                error=error_msg,
                latency_ms=0.0,
            )

        tool_def, executor = entry

        # The model may send extra keys (including the noParams sentinel)
        valid_param_names = {param.name for param in tool_def.parameters}
        filtered_arguments = {k: v for k, v in arguments.items() if k in valid_param_names}
        invalid_params = set(arguments.keys()) - valid_param_names
        if invalid_params:
            log.debug(
                "tool_call_invalid_parameters_filtered",
                tool_name=tool_name,
                invalid_parameters=sorted(invalid_params),
                trace_id=trace_ctx.trace_id,
            )

        _, span_id = trace_ctx.new_span()
        log.info(
            TOOL_CALL_STARTED,
            tool_name=tool_name,
            arguments=filtered_arguments,
            trace_id=trace_ctx.trace_id,
            span_id=span_id,
        )

        start_time = time.time()
        try:
            if inspect.iscoroutinefunction(executor):
                coro = executor(**filtered_arguments)
            else:
                loop = asyncio.get_running_loop()
                coro = loop.run_in_executor(None, lambda: executor(**filtered_arguments))
            result = await asyncio.wait_for(coro, timeout=tool_def.timeout_seconds)

            latency_ms = (time.time() - start_time) * 1000
            log.info(
                TOOL_CALL_COMPLETED,
                tool_name=tool_name,
                success=True,
                latency_ms=latency_ms,
                trace_id=trace_ctx.trace_id,
                span_id=span_id,
            )
            return ToolResult(
                tool_name=tool_name,
                tool_call_id=tool_call_id,
                success=True,
                output=result,
                latency_ms=latency_ms,
            )

        except asyncio.TimeoutError:
            latency_ms = (time.time() - start_time) * 1000
            error_msg = f"Tool '{tool_name}' timed out after {tool_def.timeout_seconds}s"
            log.warning(
                TOOL_CALL_FAILED,
                tool_name=tool_name,
                error=error_msg,
                latency_ms=latency_ms,
                trace_id=trace_ctx.trace_id,
                span_id=span_id,
            )
            return ToolResult(
                tool_name=tool_name,
                tool_call_id=tool_call_id,
                success=False,
                output={},
                error=error_msg,
                latency_ms=latency_ms,
            )

        except Exception as e:
            latency_ms = (time.time() - start_time) * 1000
            log.error(
                TOOL_CALL_FAILED,
                tool_name=tool_name,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=latency_ms,
                trace_id=trace_ctx.trace_id,
                span_id=span_id,
                exc_info=True,
            )
            return ToolResult(
                tool_name=tool_name,
                tool_call_id=tool_call_id,
                success=False,
                output={},
                error=str(e),
                latency_ms=latency_ms,
            )

    async def execute_batch(
        self,
        calls: list[dict[str, Any]],
        timeout_s: float,
        trace_ctx: TraceContext,
    ) -> list[ToolResult]:
        """Execute several tool calls concurrently under one time budget.

        Args:
            calls: Calls as {"id", "name", "args"} dicts.
            timeout_s: Budget for the whole batch.
            trace_ctx: Trace context for telemetry.

        Returns:
            Results in the same order as calls.

        Raises:
            ToolBatchTimeout: If the batch does not finish within timeout_s.
        """
        if not calls:
            return []

        tasks = [
            self.execute_tool(call["name"], call.get("args") or {}, trace_ctx, call.get("id"))
            for call in calls
        ]
        try:
            return list(await asyncio.wait_for(asyncio.gather(*tasks), timeout=timeout_s))
        except asyncio.TimeoutError:
            tool_names = [call["name"] for call in calls]
            log.warning(
                TOOL_BATCH_TIMEOUT,
                tool_names=tool_names,
                timeout_s=timeout_s,
                trace_id=trace_ctx.trace_id,
            )
            raise ToolBatchTimeout(timeout_s, tool_names) from None
