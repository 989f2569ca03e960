from .action import ActionAuth, ActionMetadata, ActionSet, CompiledAction, OwnerScope
from .flow import FlowState, ValidationFlow
from .mcp import MCPOAuthConfig, MCPServerConfig
from .run import RunContext, ToolCallContext
from .token import TokenRecord, TokenResponseMapping
from .tool import (
    ResolvedTool,
    SourceNamespace,
    ToolApprovalConfig,
    ToolCall,
    ToolDefinition,
    ToolOutput,
    ToolOutputStatus,
    ToolResult,
    ToolResultKind,
)

__all__ = [
    "ActionAuth",
    "ActionMetadata",
    "ActionSet",
    "CompiledAction",
    "OwnerScope",
    "FlowState",
    "ValidationFlow",
    "MCPOAuthConfig",
    "MCPServerConfig",
    "RunContext",
    "ToolCallContext",
    "TokenRecord",
    "TokenResponseMapping",
    "ResolvedTool",
    "SourceNamespace",
    "ToolApprovalConfig",
    "ToolCall",
    "ToolDefinition",
    "ToolOutput",
    "ToolOutputStatus",
    "ToolResult",
    "ToolResultKind",
]
