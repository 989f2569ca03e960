"""Unit tests for the tool execution engine."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from toolgate.infra.errors import ToolApprovalError, ToolInvocationError
from toolgate.models.tool import (
    RESPONSE_FORMAT_CONTENT_AND_ARTIFACT,
    ResolvedTool,
    SourceNamespace,
    ToolCall,
    ToolOutputStatus,
    ToolResultKind,
)
from toolgate.services.tool_execution_engine import (
    CONTENT_TYPE_IMAGE_FILE,
    CONTENT_TYPE_TOOL_CALL,
    InMemoryTranscript,
    ToolInvoker,
    decode_result,
)
from toolgate.services.tool_resolver import ResolutionResult


def make_tool(name, invoke, source=SourceNamespace.BUILTIN, response_format="content"):
    return ResolvedTool(name=name, invoke=invoke, source=source, response_format=response_format)


class TestDecodeResult:
    """Test decoding of raw tool return values."""

    def test_plain_text(self):
        tool = make_tool("calculator", AsyncMock())

        result = decode_result("42", tool)

        assert result.kind == ToolResultKind.TEXT
        assert result.content == "42"

    def test_structured_value_is_serialized(self):
        tool = make_tool("calculator", AsyncMock())

        assert decode_result({"value": 42}, tool).content == '{"value": 42}'

    def test_content_and_artifact_pair(self):
        tool = make_tool("search_mcp_github", AsyncMock(), response_format=RESPONSE_FORMAT_CONTENT_AND_ARTIFACT)

        result = decode_result(("found it", {"content": []}), tool)

        assert result.kind == ToolResultKind.CONTENT_AND_ARTIFACT
        assert result.content == "found it"
        assert result.artifact == {"content": []}

    def test_image_tool_bare_dict(self):
        tool = make_tool("image_gen_oai", AsyncMock(), response_format=RESPONSE_FORMAT_CONTENT_AND_ARTIFACT)

        result = decode_result({"filepath": "/images/a.png"}, tool)

        assert result.artifact == {"filepath": "/images/a.png"}


class TestToolInvoker:
    """Test invocation and output normalization."""

    @pytest.mark.asyncio
    async def test_outputs_follow_call_order(self, run):
        async def slow(args, ctx):
            await asyncio.sleep(0.02)
            return "slow"

        async def fast(args, ctx):
            return "fast"

        tools = {"slow": make_tool("slow", slow), "fast": make_tool("fast", fast)}
        calls = [
            ToolCall(id="call-1", name="slow", args={}),
            ToolCall(id="call-2", name="fast", args={}),
        ]

        outputs = await ToolInvoker().invoke_batch(calls, tools, run)

        assert [o.tool_call_id for o in outputs] == ["call-1", "call-2"]
        assert [o.output for o in outputs] == ["slow", "fast"]

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, run):
        async def broken(args, ctx):
            raise ToolInvocationError("broken", "upstream said no")

        async def fine(args, ctx):
            return "fine"

        tools = {"broken": make_tool("broken", broken), "fine": make_tool("fine", fine)}
        calls = [ToolCall(id="call-1", name="broken"), ToolCall(id="call-2", name="fine")]

        outputs = await ToolInvoker().invoke_batch(calls, tools, run)

        assert outputs[0].status == ToolOutputStatus.ERROR
        assert outputs[0].output == "Error processing tool broken: upstream said no"
        assert outputs[1].status == ToolOutputStatus.SUCCESS
        assert outputs[1].output == "fine"

    @pytest.mark.asyncio
    async def test_error_message_is_redacted_and_bounded(self, run):
        async def leaky(args, ctx):
            raise RuntimeError("Authorization: Bearer abc.def.ghi " + "x" * 500)

        invoker = ToolInvoker(max_error_length=64)
        output = await invoker.invoke(make_tool("leaky", leaky), ToolCall(id="call-1", name="leaky"), run)

        assert "abc.def.ghi" not in output.output
        assert "[REDACTED]" in output.output
        message = output.output[len("Error processing tool leaky: "):]
        assert len(message) == 64
        assert message.endswith("...")

    @pytest.mark.asyncio
    async def test_not_approved(self, run):
        async def gated(args, ctx):
            raise ToolApprovalError("web_search", "rejected", "flow-1")

        output = await ToolInvoker().invoke(
            make_tool("web_search", gated), ToolCall(id="call-1", name="web_search"), run
        )

        assert output.status == ToolOutputStatus.NOT_APPROVED
        assert output.output == "Tool call for web_search was not approved by the user. User rejected the tool call."

    @pytest.mark.asyncio
    async def test_missing_tool(self, run):
        transcript = InMemoryTranscript()

        outputs = await ToolInvoker(transcript).invoke_batch(
            [ToolCall(id="call-1", name="ghost")], {}, run
        )

        assert outputs[0].status == ToolOutputStatus.ERROR
        assert outputs[0].output == "Error processing tool ghost: Tool ghost not found."
        assert transcript.parts[0]["tool_call"]["function"]["output"] == outputs[0].output

    @pytest.mark.asyncio
    async def test_tool_call_part_reported(self, run):
        transcript = InMemoryTranscript({"call-1": 3})

        async def lookup(args, ctx):
            return "sunny"

        call = ToolCall(id="call-1", name="weather_action_api---io", args={"city": "Oslo"})
        await ToolInvoker(transcript).invoke(
            make_tool(call.name, lookup, source=SourceNamespace.ACTION), call, run
        )

        assert transcript.parts == [{
            "type": CONTENT_TYPE_TOOL_CALL,
            "index": 3,
            "tool_call": {
                "id": "call-1",
                "type": "function",
                "function": {
                    "name": "weather_action_api---io",
                    "arguments": json.dumps({"city": "Oslo"}),
                    "output": "sunny",
                },
                "progress": 1,
                "action": True,
            },
        }]

    @pytest.mark.asyncio
    async def test_image_generation(self, run):
        transcript = InMemoryTranscript({"call-1": 0})

        async def draw(args, ctx):
            return "", {"filepath": "/images/cat.png", "width": 1024}

        call = ToolCall(id="call-1", name="image_gen_oai", args={"prompt": "a cat"})
        output = await ToolInvoker(transcript).invoke(
            make_tool("image_gen_oai", draw, response_format=RESPONSE_FORMAT_CONTENT_AND_ARTIFACT), call, run
        )

        assert output.output.startswith("image_gen_oai displayed an image.")
        assert output.artifact == {"filepath": "/images/cat.png", "width": 1024}
        assert [part["type"] for part in transcript.parts] == [CONTENT_TYPE_TOOL_CALL, CONTENT_TYPE_IMAGE_FILE]
        assert transcript.parts[1]["image_file"] == {
            "filepath": "/images/cat.png",
            "width": 1024,
            "prompt": "a cat",
        }

    @pytest.mark.asyncio
    async def test_process_tool_calls(self, run):
        async def calculator(args, ctx):
            return str(args["a"] + args["b"])

        resolver = AsyncMock()
        resolver.resolve.return_value = ResolutionResult(
            resolved={"calculator": make_tool("calculator", calculator)},
            unresolved=["missing"],
        )
        calls = [
            ToolCall(id="call-1", name="calculator", args={"a": 1, "b": 2}),
            ToolCall(id="call-2", name="missing"),
        ]

        outputs = await ToolInvoker().process_tool_calls(calls, run, resolver)

        resolver.resolve.assert_awaited_once_with(["calculator", "missing"], run)
        assert outputs[0].output == "3"
        assert outputs[1].status == ToolOutputStatus.ERROR
