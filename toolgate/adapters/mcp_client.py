"""MCP (Model Context Protocol) client for tool execution."""

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import httpx
import websockets

from toolgate.infra.config import config
from toolgate.infra.errors import ConfigurationError, ToolInvocationError
from toolgate.infra.secrets import get_secret
from toolgate.models.mcp import MCPServerConfig

logger = logging.getLogger(__name__)

BLOCKED_HOST_PREFIXES = [
    "localhost", "127.0.0.1", "0.0.0.0", "::1",
    "169.254.",  # Link-local
    "10.", "172.16.", "172.17.", "172.18.", "172.19.",
    "172.20.", "172.21.", "172.22.", "172.23.", "172.24.",
    "172.25.", "172.26.", "172.27.", "172.28.", "172.29.",
    "172.30.", "172.31.", "192.168.",  # Private IP ranges
]


def validate_endpoint(endpoint: str) -> None:
    """
    Reject endpoints that point at internal networks or use an unsupported scheme.

    Raises:
        ConfigurationError: If the endpoint is not allowed
    """
    if not endpoint:
        raise ConfigurationError("MCP server is missing an endpoint")

    if not endpoint.lower().startswith(("http://", "https://", "ws://", "wss://")):
        raise ConfigurationError("Invalid MCP endpoint protocol. Must be http, https, ws, or wss.")

    try:
        host = (urlparse(endpoint).hostname or "").lower()
    except ValueError as e:
        raise ConfigurationError(f"Invalid MCP endpoint URL: {e}")

    if not host:
        raise ConfigurationError(f"Invalid MCP endpoint URL: {endpoint}")
    if any(host == blocked or host.startswith(blocked) for blocked in BLOCKED_HOST_PREFIXES):
        raise ConfigurationError(
            f"MCP endpoint '{endpoint}' points to internal/private network. SSRF protection enabled."
        )


def format_mcp_content(result: Dict[str, Any]) -> Tuple[str, Optional[Dict[str, Any]]]:
    """
    Split an MCP tools/call result into model-facing text and an image artifact.

    Text and resource parts are joined into the text; image parts become
    data-URL image_url entries in the artifact.

    Raises:
        ToolInvocationError: If the server flagged the result with isError
    """
    content = result.get("content") if isinstance(result, dict) else None
    if content is None:
        return (json.dumps(result) if not isinstance(result, str) else result), None

    texts: List[str] = []
    images: List[Dict[str, Any]] = []
    for part in content:
        part_type = part.get("type")
        if part_type == "text":
            texts.append(part.get("text", ""))
        elif part_type == "image":
            mime_type = part.get("mimeType", "image/png")
            images.append({
                "type": "image_url",
                "image_url": {"url": f"data:{mime_type};base64,{part.get('data', '')}"},
            })
        elif part_type == "resource":
            resource = part.get("resource") or {}
            lines = [f"Resource: {resource.get('uri', '')}"]
            if resource.get("text"):
                lines.append(resource["text"])
            texts.append("\n".join(lines))
        else:
            texts.append(json.dumps(part))

    text = "\n\n".join(t for t in texts if t) or "(No response)"
    if result.get("isError"):
        raise ToolInvocationError("mcp", text)

    artifact = {"content": images} if images else None
    return text, artifact


class MCPClient:
    """Client for MCP server tool execution.

    Supports both HTTP and WebSocket transports.
    MCP protocol uses JSON-RPC 2.0 for communication.
    """

    async def execute(
        self,
        server: MCPServerConfig,
        tool_name: str,
        args: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        execution_context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Execute an MCP tool on a server.

        Context headers (X-User-ID, X-Conversation-ID) come from execution_context,
        which is built from the run, never from model output.

        Args:
            server: MCPServerConfig of the target server
            tool_name: Tool name as known to the MCP server
            args: Tool arguments
            headers: Per-user auth headers (already substituted)
            execution_context: Run identifiers (user_id, thread_id, run_id)

        Returns:
            The JSON-RPC "result" object

        Raises:
            ConfigurationError: If the endpoint is not allowed
            ToolInvocationError: If the connection or the tool call fails
        """
        validate_endpoint(server.endpoint)

        request_headers = self._build_headers(server, headers, execution_context)
        timeout = server.timeout or config.MCP_REQUEST_TIMEOUT

        start_time = time.time()
        try:
            if server.endpoint.startswith(("ws://", "wss://")):
                result = await self._execute_websocket(server, tool_name, args, request_headers, timeout)
            else:
                result = await self._execute_http(server, tool_name, args, request_headers, timeout)
        except Exception as e:
            latency_ms = int((time.time() - start_time) * 1000)
            logger.warning(
                f"MCP tool execution failed: server={server.name} tool={tool_name} "
                f"latency_ms={latency_ms} error={e}"
            )
            raise

        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(f"MCP tool executed: server={server.name} tool={tool_name} latency_ms={latency_ms}")
        return result

    def _build_headers(
        self,
        server: MCPServerConfig,
        headers: Optional[Dict[str, str]],
        execution_context: Optional[Dict[str, Any]],
    ) -> Dict[str, str]:
        request_headers: Dict[str, str] = {}

        if execution_context:
            if execution_context.get("user_id"):
                request_headers["X-User-ID"] = str(execution_context["user_id"])
            if execution_context.get("thread_id"):
                request_headers["X-Conversation-ID"] = str(execution_context["thread_id"])

        # Never log secrets or tokens
        auth_config = server.auth_config or {}
        auth_type = auth_config.get("type")
        if auth_type == "bearer":
            token = auth_config.get("token")
            if isinstance(token, str) and token.startswith(("vault://", "aws://", "env://")):
                token = get_secret(token)
            if token:
                request_headers["Authorization"] = f"Bearer {token}"
        elif auth_type == "api_key":
            api_key = auth_config.get("api_key")
            if isinstance(api_key, str) and api_key.startswith(("vault://", "aws://", "env://")):
                api_key = get_secret(api_key)
            if api_key:
                request_headers[auth_config.get("key_name", "X-API-Key")] = api_key

        # Per-user headers override server-level auth
        if headers:
            request_headers.update(headers)
        return request_headers

    @staticmethod
    def _jsonrpc_request(tool_name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": f"mcp_{uuid.uuid4().hex[:12]}",
            "method": "tools/call",
            "params": {
                "name": tool_name,
                "arguments": args,
            },
        }

    @staticmethod
    def _unwrap(tool_name: str, response: Dict[str, Any]) -> Dict[str, Any]:
        if "error" in response:
            error = response["error"] or {}
            raise ToolInvocationError(
                tool_name,
                f"MCP tool execution failed: {error.get('message', 'Unknown error')} "
                f"(code: {error.get('code', 'unknown')})",
            )
        return response.get("result", {})

    async def _execute_http(
        self,
        server: MCPServerConfig,
        tool_name: str,
        args: Dict[str, Any],
        headers: Dict[str, str],
        timeout: float,
    ) -> Dict[str, Any]:
        """Execute MCP tool via HTTP transport."""
        request_headers = {"Content-Type": "application/json", **headers}

        async with httpx.AsyncClient(timeout=timeout) as client:
            try:
                response = await client.post(
                    server.endpoint,
                    json=self._jsonrpc_request(tool_name, args),
                    headers=request_headers,
                )
                response.raise_for_status()
                payload = response.json()
            except httpx.HTTPError as e:
                raise ToolInvocationError(tool_name, f"MCP HTTP request failed: {e}")
            except ValueError as e:
                raise ToolInvocationError(tool_name, f"MCP response parsing failed: {e}")

        return self._unwrap(tool_name, payload)

    async def _execute_websocket(
        self,
        server: MCPServerConfig,
        tool_name: str,
        args: Dict[str, Any],
        headers: Dict[str, str],
        timeout: float,
    ) -> Dict[str, Any]:
        """Execute MCP tool via WebSocket transport."""
        try:
            async with websockets.connect(
                server.endpoint,
                additional_headers=headers,
                ping_interval=None,  # Short-lived connection
            ) as websocket:
                await websocket.send(json.dumps(self._jsonrpc_request(tool_name, args)))

                try:
                    response_text = await asyncio.wait_for(websocket.recv(), timeout=timeout)
                except asyncio.TimeoutError:
                    raise ToolInvocationError(tool_name, "MCP WebSocket request timed out")

                payload = json.loads(response_text)
        except websockets.exceptions.WebSocketException as e:
            raise ToolInvocationError(tool_name, f"MCP WebSocket connection failed: {e}")
        except json.JSONDecodeError as e:
            raise ToolInvocationError(tool_name, f"MCP response parsing failed: {e}")

        return self._unwrap(tool_name, payload)


mcp_client = MCPClient()
