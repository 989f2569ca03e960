"""Tool execution engine: invokes resolved tools and normalizes their outputs."""

import asyncio
import json
import logging
import time
from typing import Any, Dict, FrozenSet, List, Optional, Protocol

from toolgate.infra.config import config
from toolgate.infra.errors import ToolApprovalError, redact_message
from toolgate.infra.metrics import tool_call_duration, tool_calls_total
from toolgate.models.run import RunContext, ToolCallContext
from toolgate.models.tool import (
    IMAGE_GEN_TOOLS,
    RESPONSE_FORMAT_CONTENT_AND_ARTIFACT,
    ResolvedTool,
    SourceNamespace,
    ToolCall,
    ToolOutput,
    ToolOutputStatus,
    ToolResult,
    ToolResultKind,
)

logger = logging.getLogger(__name__)

CONTENT_TYPE_TOOL_CALL = "tool_call"
CONTENT_TYPE_IMAGE_FILE = "image_file"

IMAGE_DISPLAYED_INSTRUCTION = (
    "{tool} displayed an image. All generated images are already plainly visible, so don't repeat the "
    "descriptions in detail. Do not list download links as they are available in the UI already. The user "
    "may download the images by clicking on them, but do not mention anything about downloading to the user."
)


class RunTranscript(Protocol):
    def index_for(self, tool_call_id: str) -> Optional[int]:
        ...

    def add_content(self, part: Dict[str, Any]) -> None:
        ...


class InMemoryTranscript:
    """Collects content parts; mapped_order gives each tool call its position in the message."""

    def __init__(self, mapped_order: Optional[Dict[str, int]] = None):
        self.mapped_order: Dict[str, int] = dict(mapped_order or {})
        self.parts: List[Dict[str, Any]] = []

    def index_for(self, tool_call_id: str) -> Optional[int]:
        return self.mapped_order.get(tool_call_id)

    def add_content(self, part: Dict[str, Any]) -> None:
        self.parts.append(part)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


def decode_result(raw: Any, tool: ResolvedTool, image_gen_tools: FrozenSet[str] = IMAGE_GEN_TOOLS) -> ToolResult:
    """
    Decode a tool's raw return value into a ToolResult.

    content_and_artifact tools may return a (content, artifact) pair or a dict
    with "content" and "artifact" keys. An image tool returning a bare dict
    returns the image details themselves.
    """
    if isinstance(raw, ToolResult):
        return raw

    if tool.response_format == RESPONSE_FORMAT_CONTENT_AND_ARTIFACT:
        if isinstance(raw, (tuple, list)) and len(raw) == 2:
            content, artifact = raw
            return ToolResult(
                kind=ToolResultKind.CONTENT_AND_ARTIFACT,
                content=_stringify(content),
                artifact=artifact if isinstance(artifact, dict) or artifact is None else {"value": artifact},
            )
        if isinstance(raw, dict) and "artifact" in raw:
            return ToolResult(
                kind=ToolResultKind.CONTENT_AND_ARTIFACT,
                content=_stringify(raw.get("content")),
                artifact=raw.get("artifact"),
            )
        if isinstance(raw, dict) and tool.name in image_gen_tools:
            return ToolResult(kind=ToolResultKind.CONTENT_AND_ARTIFACT, content="", artifact=raw)

    return ToolResult(kind=ToolResultKind.TEXT, content=_stringify(raw))


class ToolInvoker:
    """
    Executes tool calls and reports them to the run transcript.

    Failures never escape invoke(): they become error or not_approved outputs,
    so one failing call leaves its siblings untouched.
    """

    def __init__(
        self,
        transcript: Optional[RunTranscript] = None,
        image_gen_tools: Optional[FrozenSet[str]] = None,
        max_error_length: Optional[int] = None,
    ):
        self.transcript = transcript or InMemoryTranscript()
        self.image_gen_tools = image_gen_tools if image_gen_tools is not None else IMAGE_GEN_TOOLS
        self.max_error_length = max_error_length or config.TOOL_ERROR_MAX_LENGTH

    def error_output(self, call: ToolCall, message: str) -> str:
        return f"Error processing tool {call.name}: {redact_message(message, self.max_error_length)}"

    async def invoke(self, tool: ResolvedTool, call: ToolCall, run: RunContext) -> ToolOutput:
        """
        Invoke one tool for one call.

        Args:
            tool: Resolved (possibly approval-gated) tool
            call: The tool call
            run: Run context

        Returns:
            ToolOutput keyed by the call's id
        """
        ctx = ToolCallContext(run=run, tool_call=call)
        started = time.monotonic()
        try:
            raw = await tool.invoke(call.args, ctx)
            result = decode_result(raw, tool, self.image_gen_tools)
        except ToolApprovalError as e:
            output = ToolOutput(tool_call_id=call.id, output=e.message, status=ToolOutputStatus.NOT_APPROVED)
        except Exception as e:
            logger.error(
                f"Error processing tool {call.name}: {redact_message(str(e))} | "
                f"tool_call_id: {call.id} | {run.log_context()}",
                exc_info=True,
            )
            output = ToolOutput(
                tool_call_id=call.id,
                output=self.error_output(call, str(e)),
                status=ToolOutputStatus.ERROR,
            )
        else:
            output = self._handle_result(tool, call, result)
            self._record(tool, call, output, started)
            return output

        self._report_tool_call(tool, call, output)
        self._record(tool, call, output, started)
        return output

    def _handle_result(self, tool: ResolvedTool, call: ToolCall, result: ToolResult) -> ToolOutput:
        if result.kind == ToolResultKind.ERROR:
            output = ToolOutput(
                tool_call_id=call.id,
                output=self.error_output(call, result.content),
                status=ToolOutputStatus.ERROR,
            )
            self._report_tool_call(tool, call, output)
            return output

        if tool.name in self.image_gen_tools:
            output = ToolOutput(
                tool_call_id=call.id,
                output=IMAGE_DISPLAYED_INSTRUCTION.format(tool=tool.name),
                artifact=result.artifact,
            )
            self._report_tool_call(tool, call, output)
            self._report_image(call, result.artifact or {})
            return output

        output = ToolOutput(tool_call_id=call.id, output=result.content, artifact=result.artifact)
        self._report_tool_call(tool, call, output)
        return output

    def _report_tool_call(self, tool: Optional[ResolvedTool], call: ToolCall, output: ToolOutput) -> None:
        self.transcript.add_content({
            "type": CONTENT_TYPE_TOOL_CALL,
            "index": self.transcript.index_for(call.id),
            CONTENT_TYPE_TOOL_CALL: {
                "id": call.id,
                "type": "function",
                "function": {
                    "name": call.name,
                    "arguments": call.args if isinstance(call.args, str) else json.dumps(call.args),
                    "output": output.output,
                },
                "progress": 1,
                "action": tool is not None and tool.source == SourceNamespace.ACTION,
            },
        })

    def _report_image(self, call: ToolCall, image_details: Dict[str, Any]) -> None:
        call_input = call.args if isinstance(call.args, dict) else {}
        self.transcript.add_content({
            "type": CONTENT_TYPE_IMAGE_FILE,
            "index": self.transcript.index_for(call.id),
            CONTENT_TYPE_IMAGE_FILE: {**image_details, **call_input},
        })

    def _record(self, tool: ResolvedTool, call: ToolCall, output: ToolOutput, started: float) -> None:
        source = tool.source.value
        tool_calls_total.labels(tool_name=call.name, source=source, status=output.status.value).inc()
        tool_call_duration.labels(tool_name=call.name, source=source).observe(time.monotonic() - started)

    async def invoke_batch(
        self,
        calls: List[ToolCall],
        tools: Dict[str, ResolvedTool],
        run: RunContext,
    ) -> List[ToolOutput]:
        """
        Invoke every call concurrently.

        Returns:
            One ToolOutput per call, in call order
        """
        async def run_one(call: ToolCall) -> ToolOutput:
            tool = tools.get(call.name)
            if tool is None:
                logger.warning(f"No tool resolved for {call.name} | tool_call_id: {call.id} | {run.log_context()}")
                output = ToolOutput(
                    tool_call_id=call.id,
                    output=self.error_output(call, f"Tool {call.name} not found."),
                    status=ToolOutputStatus.ERROR,
                )
                self._report_tool_call(None, call, output)
                return output
            return await self.invoke(tool, call, run)

        outputs = await asyncio.gather(*(run_one(call) for call in calls))
        return list(outputs)

    async def process_tool_calls(self, calls: List[ToolCall], run: RunContext, resolver) -> List[ToolOutput]:
        """Resolve the tools named by a batch of calls and invoke them."""
        logger.debug(f"[required actions] {run.log_context()} | calls: {[call.name for call in calls]}")
        resolution = await resolver.resolve([call.name for call in calls], run)
        return await self.invoke_batch(calls, resolution.resolved, run)
