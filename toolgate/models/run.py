"""Per-run context passed to every component."""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from toolgate.models.action import CompiledAction, OwnerScope
from toolgate.models.token import TokenRecord
from toolgate.models.tool import ResolvedTool, ToolApprovalConfig, ToolCall


@dataclass
class RunContext:
    """
    Runtime context for one conversation run.

    Owns the compiled action domain map and the resolved-tool cache so nothing
    is cached across runs (decrypted action secrets included). Call close()
    when the run completes.
    """
    run_id: str
    user_id: str
    owner_id: Optional[str] = None  # assistant or agent the action sets belong to
    owner_scope: OwnerScope = OwnerScope.AGENT
    thread_id: Optional[str] = None
    channel: Optional[str] = None  # live event channel for approval events
    allowed_domains: Optional[List[str]] = None
    tool_approval: Optional[ToolApprovalConfig] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    # Per-run caches
    compiled_actions: Optional[Dict[str, CompiledAction]] = None
    domain_keys: Dict[str, str] = field(default_factory=dict)
    tool_cache: Dict[str, ResolvedTool] = field(default_factory=dict)

    # Per-user MCP credentials: {server: {var: value}} and exchanged OAuth tokens
    mcp_auth_map: Dict[str, Dict[str, str]] = field(default_factory=dict)
    mcp_tokens: Dict[str, TokenRecord] = field(default_factory=dict)

    @property
    def is_cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def event_channel(self) -> str:
        return self.channel or self.run_id

    def cancel(self) -> None:
        self.cancel_event.set()

    def log_context(self) -> str:
        return f"user: {self.user_id} | thread_id: {self.thread_id} | run_id: {self.run_id}"

    def close(self) -> None:
        """Drop per-run caches, including decrypted action metadata."""
        self.compiled_actions = None
        self.domain_keys.clear()
        self.tool_cache.clear()
        self.mcp_auth_map.clear()
        self.mcp_tokens.clear()


@dataclass
class ToolCallContext:
    """What a tool entry point sees about the call it is serving."""
    run: RunContext
    tool_call: ToolCall

    @property
    def user_id(self) -> str:
        return self.run.user_id
