"""Tool registry for builtin, toolkit and MCP tools."""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol

from toolgate.adapters.mcp_client import MCPClient, format_mcp_content, mcp_client as default_mcp_client
from toolgate.models.mcp import MCPServerConfig
from toolgate.models.run import RunContext, ToolCallContext
from toolgate.models.token import TokenRecord
from toolgate.models.tool import (
    BUILTIN_SERVER_NAME,
    IMAGE_GEN_TOOLS,
    MCP_DELIMITER,
    RESPONSE_FORMAT_CONTENT,
    RESPONSE_FORMAT_CONTENT_AND_ARTIFACT,
    ResolvedTool,
    SourceNamespace,
    ToolDefinition,
)
from toolgate.services.mcp_auth import build_auth_headers

logger = logging.getLogger(__name__)

BuiltinFunction = Callable[[Any, ToolCallContext], Awaitable[Any]]


@dataclass
class AuthContext:
    """Credentials a registry may need while building entry points."""
    user_id: str
    mcp_auth_map: Dict[str, Dict[str, str]] = field(default_factory=dict)
    mcp_tokens: Dict[str, TokenRecord] = field(default_factory=dict)

    @classmethod
    def from_run(cls, run: RunContext) -> "AuthContext":
        return cls(user_id=run.user_id, mcp_auth_map=run.mcp_auth_map, mcp_tokens=run.mcp_tokens)


@dataclass
class Toolkit:
    """A group of builtin tools loaded together under one key; members are named <plugin_key>_<tool>."""
    plugin_key: str
    tools: List[str] = field(default_factory=list)

    def owns(self, tool_name: str) -> bool:
        return tool_name.startswith(f"{self.plugin_key}_")


def get_toolkit_key(tool_name: str, toolkits: Iterable[Toolkit]) -> Optional[str]:
    """Return the key of the toolkit a tool belongs to, if any."""
    for toolkit in toolkits:
        if toolkit.owns(tool_name):
            return toolkit.plugin_key
    return None


class ToolRegistry(Protocol):
    async def load(self, names: List[str], auth_context: AuthContext) -> Dict[str, ResolvedTool]:
        ...


class StaticToolRegistry:
    """
    In-process registry of builtin functions, toolkits and MCP tool definitions.

    Builtin tools are registered with their async implementation; MCP tools
    are ToolDefinitions whose implementation_ref names the server and tool.
    """

    def __init__(
        self,
        mcp_servers: Optional[Dict[str, MCPServerConfig]] = None,
        toolkits: Optional[List[Toolkit]] = None,
        client: Optional[MCPClient] = None,
    ):
        self._builtins: Dict[str, tuple] = {}  # name -> (ToolDefinition, BuiltinFunction)
        self._mcp_tools: Dict[str, ToolDefinition] = {}
        self.mcp_servers: Dict[str, MCPServerConfig] = dict(mcp_servers or {})
        self.toolkits: List[Toolkit] = list(toolkits or [])
        self.client = client or default_mcp_client

    def register_builtin(self, definition: ToolDefinition, func: BuiltinFunction) -> None:
        self._builtins[definition.name] = (definition, func)

    def register_mcp_tool(self, definition: ToolDefinition) -> None:
        """
        Register an MCP tool.

        Raises:
            ValueError: If implementation_ref has no mcp_server_name
        """
        if not definition.implementation_ref.get("mcp_server_name"):
            raise ValueError(f"MCP server name not found in implementation_ref: {definition.implementation_ref}")
        self._mcp_tools[definition.name] = definition

    def get_toolkit(self, key: str) -> Optional[Toolkit]:
        return next((toolkit for toolkit in self.toolkits if toolkit.plugin_key == key), None)

    async def load(self, names: List[str], auth_context: AuthContext) -> Dict[str, ResolvedTool]:
        """
        Build ResolvedTools for the names this registry knows.

        A toolkit key loads every member of the toolkit. Unknown names are
        left out of the result.
        """
        loaded: Dict[str, ResolvedTool] = {}
        for name in names:
            toolkit = self.get_toolkit(name)
            if toolkit is not None:
                for member in toolkit.tools:
                    tool = self._load_one(member, auth_context)
                    if tool is not None:
                        loaded[member] = tool
                continue

            tool = self._load_one(name, auth_context)
            if tool is not None:
                loaded[name] = tool
        return loaded

    def _load_one(self, name: str, auth_context: AuthContext) -> Optional[ResolvedTool]:
        if name in self._builtins:
            definition, func = self._builtins[name]
            return ResolvedTool(
                name=name,
                invoke=func,
                source=SourceNamespace.BUILTIN,
                requires_approval=definition.requires_approval,
                response_format=(
                    RESPONSE_FORMAT_CONTENT_AND_ARTIFACT if name in IMAGE_GEN_TOOLS else RESPONSE_FORMAT_CONTENT
                ),
                description=definition.description,
                parameters_schema=definition.parameters_schema,
                server_name=BUILTIN_SERVER_NAME,
            )

        if name in self._mcp_tools:
            return self._load_mcp_tool(self._mcp_tools[name], auth_context)

        return None

    def _load_mcp_tool(self, definition: ToolDefinition, auth_context: AuthContext) -> Optional[ResolvedTool]:
        impl_ref = definition.implementation_ref
        server_name = impl_ref["mcp_server_name"]
        mcp_tool_name = impl_ref.get("mcp_tool_name") or definition.name.split(MCP_DELIMITER, 1)[0]

        server = self.mcp_servers.get(server_name)
        if server is None:
            logger.warning(f"MCP server '{server_name}' not configured; skipping tool {definition.name}")
            return None

        client = self.client

        async def invoke(args: Any, ctx: ToolCallContext) -> Any:
            headers = build_auth_headers(
                server,
                auth_context.mcp_auth_map.get(server_name),
                auth_context.mcp_tokens.get(server_name),
            )
            result = await client.execute(
                server,
                mcp_tool_name,
                args if isinstance(args, dict) else {"input": args},
                headers=headers,
                execution_context={
                    "user_id": ctx.user_id,
                    "thread_id": ctx.run.thread_id,
                    "run_id": ctx.run.run_id,
                },
            )
            text, artifact = format_mcp_content(result)
            if artifact:
                return text, artifact
            return text

        return ResolvedTool(
            name=definition.name,
            invoke=invoke,
            source=SourceNamespace.MCP,
            requires_approval=definition.requires_approval,
            response_format=RESPONSE_FORMAT_CONTENT_AND_ARTIFACT,
            description=definition.description,
            parameters_schema=definition.parameters_schema,
            server_name=server_name,
        )
