"""Tool definitions, resolved tool handles and tool call results."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

# Tool identifier delimiters
ACTION_DELIMITER = "_action_"
ACTION_DOMAIN_SEPARATOR = "---"
MCP_DELIMITER = "_mcp_"
MCP_PLUGIN_PREFIX = "mcp_"
ENCODED_DOMAIN_LENGTH = 10

BUILTIN_SERVER_NAME = "builtin"

# Tools whose output is an image shown in the UI rather than text for the model
IMAGE_GEN_TOOLS = frozenset({"dalle", "dall-e", "stable-diffusion", "flux", "image_gen_oai", "image_edit_oai"})

RESPONSE_FORMAT_CONTENT = "content"
RESPONSE_FORMAT_CONTENT_AND_ARTIFACT = "content_and_artifact"


class SourceNamespace(str, Enum):
    """Namespace a tool was resolved from."""
    BUILTIN = "builtin"
    MCP = "mcp"
    ACTION = "action"


class ToolDefinition(BaseModel):
    """Declarative tool definition held by a tool registry."""
    name: str = Field(..., description="Tool identifier")
    description: str = Field(default="", description="Tool description")
    parameters_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema for parameters",
    )
    provider: str = Field(..., description="Provider: 'builtin' | 'mcp'")
    implementation_ref: Dict[str, Any] = Field(
        default_factory=dict,
        description="Provider-specific config: e.g. {'mcp_server_name': '...', 'mcp_tool_name': '...'}",
    )
    requires_approval: bool = Field(default=False, description="Always gate this tool behind human approval")


class ToolApprovalConfig(BaseModel):
    """
    Which tools need human approval before they run.

    required: True for every tool, a list of name patterns, or False/None for none.
    excluded: patterns that never need approval (checked first).
    """
    required: Union[bool, List[str], None] = None
    excluded: List[str] = Field(default_factory=list)


class ToolCall(BaseModel):
    """A single tool call requested by the model."""
    id: str = Field(..., description="Stable per-call identifier (tool_call_id)")
    name: str = Field(..., description="Requested tool identifier")
    args: Union[Dict[str, Any], str] = Field(default_factory=dict)
    step_id: Optional[str] = Field(None, description="Run step the call belongs to")
    type: str = "tool_call"

    def event_payload(self, include_args: bool = False) -> Dict[str, Any]:
        """Tool call shape used in run step delta events."""
        payload: Dict[str, Any] = {"id": self.id, "name": self.name, "type": self.type}
        if include_args:
            payload["args"] = ""
        return payload


class ToolResultKind(str, Enum):
    TEXT = "text"
    CONTENT_AND_ARTIFACT = "content_and_artifact"
    ERROR = "error"


class ToolResult(BaseModel):
    """Tagged result of a tool invocation, decoded once at the invoker boundary."""
    kind: ToolResultKind
    content: str = ""
    artifact: Optional[Dict[str, Any]] = None


class ToolOutputStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    NOT_APPROVED = "not_approved"


class ToolOutput(BaseModel):
    """Normalized output returned to the model for one tool call."""
    tool_call_id: str
    output: str
    status: ToolOutputStatus = ToolOutputStatus.SUCCESS
    artifact: Optional[Dict[str, Any]] = None


ToolEntryPoint = Callable[[Any, "ToolCallContext"], Awaitable[Any]]


@dataclass(frozen=True)
class ResolvedTool:
    """Executable handle for one tool identifier within a run."""
    name: str
    invoke: ToolEntryPoint
    source: SourceNamespace
    requires_approval: bool = False
    response_format: str = RESPONSE_FORMAT_CONTENT
    description: str = ""
    parameters_schema: Dict[str, Any] = field(default_factory=dict)
    server_name: str = BUILTIN_SERVER_NAME
    gated: bool = False  # entry point already runs the approval handshake

    def with_gate(self, invoke: ToolEntryPoint) -> "ResolvedTool":
        return replace(self, invoke=invoke, requires_approval=True, gated=True)
