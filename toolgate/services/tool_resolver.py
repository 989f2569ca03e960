"""Resolve requested tool identifiers into executable tools for a run."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from toolgate.infra.config import config
from toolgate.infra.errors import InvalidActionError, ToolNotFoundError
from toolgate.infra.metrics import tool_resolution_failures_total
from toolgate.models.action import AuthType, CompiledAction
from toolgate.models.run import RunContext, ToolCallContext
from toolgate.models.tool import ACTION_DELIMITER, ResolvedTool, SourceNamespace
from toolgate.services import action_domain
from toolgate.services.action_compiler import ActionSetCompiler
from toolgate.services.tool_approval import ApprovalGate, default_approval_config, requires_approval
from toolgate.services.tool_registry import AuthContext, Toolkit, ToolRegistry, get_toolkit_key

logger = logging.getLogger(__name__)

# (compiled action, run) -> OAuth access token for the action's provider
ActionTokenProvider = Callable[[CompiledAction, RunContext], Awaitable[str]]


@dataclass
class ResolutionResult:
    resolved: Dict[str, ResolvedTool] = field(default_factory=dict)
    unresolved: List[str] = field(default_factory=list)


def parse_action_args(args: Any) -> Dict[str, Any]:
    """Action arguments arrive as a dict or a JSON string."""
    if isinstance(args, dict):
        return args
    if not args:
        return {}
    if isinstance(args, str):
        try:
            parsed = json.loads(args)
        except ValueError:
            return {"input": args}
        return parsed if isinstance(parsed, dict) else {"input": parsed}
    return {"input": args}


class ToolResolver:
    """
    Resolves tool identifiers across the builtin, MCP and action namespaces.

    Results are cached on the RunContext, so an identifier maps to one
    ResolvedTool for the rest of the run.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        compiler: ActionSetCompiler,
        approval_gate: Optional[ApprovalGate] = None,
        toolkits: Optional[List[Toolkit]] = None,
        match_strategy: Optional[str] = None,
        action_token_provider: Optional[ActionTokenProvider] = None,
    ):
        self.registry = registry
        self.compiler = compiler
        self.approval_gate = approval_gate
        self.toolkits = list(toolkits if toolkits is not None else getattr(registry, "toolkits", []))
        self.match_strategy = match_strategy or config.ACTION_DOMAIN_MATCH
        self.action_token_provider = action_token_provider

    def collapse_toolkits(self, tool_ids: List[str]) -> List[str]:
        """
        Replace toolkit members with their toolkit key.

        The first member seen adds the key; later members of the same toolkit
        add nothing. Tools outside any toolkit pass through unchanged.
        """
        seen_toolkits = set()
        collapsed: List[str] = []
        for tool_id in tool_ids:
            key = get_toolkit_key(tool_id, self.toolkits)
            if key is None:
                if tool_id not in collapsed:
                    collapsed.append(tool_id)
                continue
            if key in seen_toolkits:
                continue
            seen_toolkits.add(key)
            collapsed.append(key)
        return collapsed

    async def resolve(self, requested_ids: List[str], run: RunContext, strict: bool = False) -> ResolutionResult:
        """
        Resolve tool identifiers for a run.

        Args:
            requested_ids: Identifiers named by the model's tool calls
            run: Run context holding the per-run caches
            strict: Raise instead of returning unresolved identifiers

        Returns:
            ResolutionResult with resolved tools by identifier and unresolved identifiers

        Raises:
            ToolNotFoundError: If strict and any identifier is unresolved
            InvalidActionError: If an action cannot be turned into a tool
            MetadataDecryptionError: If action credentials cannot be decrypted
            RunCancelledError: If the run is cancelled while compiling actions
        """
        result = ResolutionResult()
        pending: List[str] = []

        for tool_id in requested_ids:
            cached = run.tool_cache.get(tool_id)
            if cached is not None:
                result.resolved[tool_id] = cached
            elif tool_id not in pending:
                pending.append(tool_id)

        if pending:
            loaded = await self.registry.load(self.collapse_toolkits(pending), AuthContext.from_run(run))
            for name, tool in loaded.items():
                self._cache(run, name, tool)

            for tool_id in pending:
                if tool_id in run.tool_cache:
                    result.resolved[tool_id] = run.tool_cache[tool_id]
                    continue
                if ACTION_DELIMITER in tool_id:
                    tool = await self._resolve_action(tool_id, run)
                    if tool is not None:
                        self._cache(run, tool_id, tool)
                        result.resolved[tool_id] = run.tool_cache[tool_id]
                        continue
                result.unresolved.append(tool_id)

        if result.unresolved:
            tool_resolution_failures_total.labels(strict=str(strict).lower()).inc(len(result.unresolved))
            if strict:
                logger.error(f"No tools found for tool calls {result.unresolved}, {run.log_context()}")
                raise ToolNotFoundError(result.unresolved)
            logger.warning(f"Unresolved tool identifiers {result.unresolved}, {run.log_context()}")

        return result

    def _cache(self, run: RunContext, tool_id: str, tool: ResolvedTool) -> None:
        policy = run.tool_approval if run.tool_approval is not None else default_approval_config()
        if self.approval_gate is not None and (tool.requires_approval or requires_approval(tool_id, policy)):
            tool = self.approval_gate.wrap(tool)
        run.tool_cache[tool_id] = tool

    async def _resolve_action(self, tool_id: str, run: RunContext) -> Optional[ResolvedTool]:
        domain_map = await self.compiler.load_for_run(run)
        domain = action_domain.match_action_domain(tool_id, domain_map.keys(), self.match_strategy)
        if domain is None:
            logger.debug(f"No compiled action domain matches {tool_id}")
            return None

        compiled = domain_map[domain]
        suffix = f"{ACTION_DELIMITER}{domain}"
        if self.match_strategy == action_domain.MATCH_SUBSTRING:
            function_name = tool_id.replace(suffix, "")
        else:
            function_name = tool_id[: -len(suffix)]

        builder = compiled.request_builders.get(function_name)
        if builder is None:
            logger.warning(
                f"Action set {compiled.action.action_id} has no operation '{function_name}' for {tool_id}"
            )
            return None

        return self._build_action_tool(tool_id, function_name, compiled)

    def _build_action_tool(self, tool_id: str, function_name: str, compiled: CompiledAction) -> ResolvedTool:
        metadata = compiled.action.metadata
        auth_type = metadata.auth.type

        if auth_type == AuthType.SERVICE_HTTP and not metadata.api_key:
            raise InvalidActionError(tool_id, "service_http auth is configured but no API key is stored")
        if auth_type == AuthType.OAUTH and self.action_token_provider is None:
            raise InvalidActionError(tool_id, "OAuth auth is configured but no token provider is available")

        builder = compiled.request_builders[function_name]
        token_provider = self.action_token_provider
        signature = compiled.signature(function_name)

        async def invoke(args: Any, ctx: ToolCallContext) -> str:
            access_token = None
            if auth_type == AuthType.OAUTH:
                access_token = await token_provider(compiled, ctx.run)
            return await builder.execute(parse_action_args(args), metadata, access_token)

        return ResolvedTool(
            name=tool_id,
            invoke=invoke,
            source=SourceNamespace.ACTION,
            description=signature.description if signature else "",
            parameters_schema=signature.parameters if signature else {},
            server_name=metadata.domain,
        )
