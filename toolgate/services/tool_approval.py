"""Human-in-the-loop approval for tool calls."""

import logging
import time
import uuid
from typing import Any, Dict, Optional

from toolgate.infra.config import config
from toolgate.infra.errors import ToolApprovalError
from toolgate.infra.events import ON_RUN_STEP_DELTA, STEP_TYPE_TOOL_CALLS, EventSink
from toolgate.infra.flow_state import FlowStateManager, now_ms
from toolgate.infra.metrics import approval_wait_duration, tool_approvals_total
from toolgate.models.flow import FlowState, ValidationFlow
from toolgate.models.run import ToolCallContext
from toolgate.models.tool import BUILTIN_SERVER_NAME, MCP_DELIMITER, ResolvedTool, ToolApprovalConfig

logger = logging.getLogger(__name__)

VALIDATION_FLOW_TYPE = "tool_call_validation"


def matches_pattern(tool_name: str, pattern: str) -> bool:
    """
    Match a tool name against an approval pattern.

    Supports:
    - Exact match: "web_search"
    - "all": every tool
    - "mcp:*" / "mcp_*": any MCP tool
    - Prefix patterns: "image_*"
    """
    if pattern == tool_name or pattern == "all":
        return True
    if pattern in ("mcp:*", "mcp_*") and MCP_DELIMITER in tool_name:
        return True
    if pattern.endswith("*"):
        return tool_name.startswith(pattern[:-1])
    return False


def requires_approval(tool_name: str, approval_config: Optional[ToolApprovalConfig]) -> bool:
    """Excluded patterns win; required may be True (all tools) or a pattern list."""
    if not approval_config:
        return False

    required = approval_config.required
    if required is None or required is False:
        return False

    if any(matches_pattern(tool_name, pattern) for pattern in approval_config.excluded):
        return False

    if required is True:
        return True
    return any(matches_pattern(tool_name, pattern) for pattern in required)


def get_tool_server_name(tool_name: str) -> str:
    """MCP tools are "<tool>_mcp_<server>"; everything else is builtin."""
    if MCP_DELIMITER in tool_name:
        return tool_name.split(MCP_DELIMITER, 1)[1] or "mcp"
    return BUILTIN_SERVER_NAME


def get_base_tool_name(tool_name: str) -> str:
    if MCP_DELIMITER in tool_name:
        return tool_name.split(MCP_DELIMITER, 1)[0] or tool_name
    return tool_name


def default_approval_config() -> ToolApprovalConfig:
    return ToolApprovalConfig(
        required=config.TOOL_APPROVAL_REQUIRED,
        excluded=config.TOOL_APPROVAL_EXCLUDED,
    )


class ApprovalGate:
    """
    Replaces a tool's entry point with a suspend/resume approval handshake.

    Each call gets its own ValidationFlow; waiting only suspends that call's task.
    """

    def __init__(
        self,
        flow_manager: FlowStateManager,
        event_sink: EventSink,
        approval_window_seconds: Optional[float] = None,
    ):
        self.flow_manager = flow_manager
        self.event_sink = event_sink
        self.approval_window_seconds = (
            approval_window_seconds if approval_window_seconds is not None else config.TOOL_APPROVAL_WINDOW_SECONDS
        )

    def wrap(self, tool: ResolvedTool) -> ResolvedTool:
        """Return a copy of tool whose entry point waits for approval first."""
        if tool.gated:
            return tool

        original = tool.invoke
        gate = self

        async def gated_invoke(args: Any, ctx: ToolCallContext) -> Any:
            await gate.await_approval(tool, args, ctx)
            return await original(args, ctx)

        return tool.with_gate(gated_invoke)

    async def await_approval(self, tool: ResolvedTool, args: Any, ctx: ToolCallContext) -> ValidationFlow:
        """
        Run the approval handshake for one call.

        Raises:
            ToolApprovalError: If the call is rejected, expires or is cancelled
        """
        server_name = get_tool_server_name(tool.name)
        arguments = {"input": args} if isinstance(args, str) else dict(args or {})
        created_at = now_ms()
        flow = ValidationFlow(
            validation_id=str(uuid.uuid4()),
            tool_name=tool.name,
            server_name=server_name,
            user_id=ctx.user_id,
            arguments=arguments,
            created_at=created_at,
            expires_at=created_at + int(self.approval_window_seconds * 1000),
        )

        channel = ctx.run.event_channel
        # Arguments stay out of the outbound event; the UI only shows the call is pending
        self._send(channel, {
            "id": ctx.tool_call.step_id,
            "delta": {
                "type": STEP_TYPE_TOOL_CALLS,
                "tool_calls": [ctx.tool_call.event_payload(include_args=True)],
                "validation": flow.validation_id,
                "expires_at": flow.expires_at,
            },
        })
        logger.debug(f"[Tool Approval] Sent validation request for {tool.name}: {flow.validation_id}")

        started = time.monotonic()
        state = await self.flow_manager.create_flow(
            flow.validation_id, VALIDATION_FLOW_TYPE, flow, ctx.run.cancel_event
        )
        approval_wait_duration.labels(outcome=state.value).observe(time.monotonic() - started)
        tool_approvals_total.labels(server_name=server_name, outcome=state.value).inc()

        if state != FlowState.APPROVED:
            logger.warning(
                f"[Tool Approval] Tool call for {tool.name} ended as {state.value}: {flow.reason}. "
                f"validation_id: {flow.validation_id} | tool_call_id: {ctx.tool_call.id} | {ctx.run.log_context()}"
            )
            raise ToolApprovalError(tool.name, state.value, flow.validation_id)

        logger.info(f"[Tool Approval] Tool call approved by user: {tool.name} ({flow.validation_id})")
        self._send(channel, {
            "id": ctx.tool_call.step_id,
            "delta": {
                "type": STEP_TYPE_TOOL_CALLS,
                "tool_calls": [ctx.tool_call.event_payload()],
            },
        })
        return flow

    def _send(self, channel: str, payload: Dict[str, Any]) -> None:
        try:
            self.event_sink.send(channel, ON_RUN_STEP_DELTA, payload)
        except Exception as e:
            # Event delivery is best-effort; the flow still expires without a decision
            logger.warning(f"[Tool Approval] Failed to send event on channel {channel}: {e}")
