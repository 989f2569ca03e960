"""Unit tests for MCP client."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from toolgate.adapters.mcp_client import MCPClient, format_mcp_content, validate_endpoint
from toolgate.infra.errors import ConfigurationError, ToolInvocationError
from toolgate.models.mcp import MCPServerConfig
from toolgate.models.run import ToolCallContext
from toolgate.models.tool import ToolCall, ToolDefinition
from toolgate.services.tool_registry import AuthContext, StaticToolRegistry


def mock_http_client(mock_client_class, payload):
    mock_client = AsyncMock()
    mock_response_obj = MagicMock()
    mock_response_obj.json.return_value = payload
    mock_response_obj.raise_for_status = MagicMock()
    mock_client.post = AsyncMock(return_value=mock_response_obj)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_class.return_value = mock_client
    return mock_client


class TestMCPClient:
    """Test MCP client functionality."""

    @pytest.fixture
    def mcp_client(self):
        """Create MCP client instance."""
        return MCPClient()

    @pytest.fixture
    def server(self):
        """Create test MCP server config."""
        return MCPServerConfig(
            name="test_server",
            endpoint="https://mcp.example.com/api",
            auth_config={"type": "bearer", "token": "test-token-123"},
        )

    @pytest.mark.asyncio
    async def test_execute_http_success(self, mcp_client, server):
        """Test successful HTTP MCP tool execution."""
        mock_response = {
            "jsonrpc": "2.0",
            "id": "mcp_req",
            "result": {"content": [{"type": "text", "text": "Test result"}]},
        }

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_http_client(mock_client_class, mock_response)

            result = await mcp_client.execute(
                server,
                "get_data",
                {"query": "test"},
                execution_context={"user_id": "user-1", "thread_id": "thread-1"},
            )

            assert result == mock_response["result"]
            mock_client.post.assert_called_once()
            call_args = mock_client.post.call_args
            assert call_args[0][0] == "https://mcp.example.com/api"
            headers = call_args[1]["headers"]
            assert headers["Authorization"] == "Bearer test-token-123"
            assert headers["X-User-ID"] == "user-1"
            assert headers["X-Conversation-ID"] == "thread-1"
            request_data = call_args[1]["json"]
            assert request_data["method"] == "tools/call"
            assert request_data["params"] == {"name": "get_data", "arguments": {"query": "test"}}

    @pytest.mark.asyncio
    async def test_user_headers_override_server_auth(self, mcp_client, server):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_http_client(mock_client_class, {"result": {}})

            await mcp_client.execute(server, "get_data", {}, headers={"Authorization": "Bearer user-token"})

            assert mock_client.post.call_args[1]["headers"]["Authorization"] == "Bearer user-token"

    @pytest.mark.asyncio
    async def test_execute_http_error_response(self, mcp_client, server):
        """Test HTTP MCP tool execution with JSON-RPC error."""
        mock_response = {
            "jsonrpc": "2.0",
            "id": "mcp_req",
            "error": {"code": -32603, "message": "Internal error"},
        }

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, mock_response)

            with pytest.raises(ToolInvocationError) as exc_info:
                await mcp_client.execute(server, "get_data", {"query": "test"})

            assert "MCP tool execution failed" in str(exc_info.value)
            assert "Internal error" in str(exc_info.value)
            assert "-32603" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_execute_websocket_success(self, mcp_client, server):
        """Test successful WebSocket MCP tool execution."""
        server.endpoint = "wss://mcp.example.com/ws"
        mock_response = {
            "jsonrpc": "2.0",
            "id": "mcp_req",
            "result": {"content": [{"type": "text", "text": "WebSocket result"}]},
        }

        with patch("websockets.connect") as mock_connect:
            mock_websocket = AsyncMock()
            mock_websocket.send = AsyncMock()
            mock_websocket.recv = AsyncMock(return_value=json.dumps(mock_response))
            mock_websocket.__aenter__ = AsyncMock(return_value=mock_websocket)
            mock_websocket.__aexit__ = AsyncMock(return_value=None)
            mock_connect.return_value = mock_websocket

            result = await mcp_client.execute(server, "get_data", {"query": "test"})

            assert result == mock_response["result"]
            mock_websocket.send.assert_called_once()
            sent_data = json.loads(mock_websocket.send.call_args[0][0])
            assert sent_data["method"] == "tools/call"
            assert sent_data["params"]["name"] == "get_data"
            assert sent_data["params"]["arguments"] == {"query": "test"}
            assert mock_connect.call_args[1]["additional_headers"]["Authorization"] == "Bearer test-token-123"

    @pytest.mark.asyncio
    async def test_execute_websocket_timeout(self, mcp_client, server):
        """Test WebSocket MCP tool execution timeout."""
        server.endpoint = "wss://mcp.example.com/ws"

        with patch("websockets.connect") as mock_connect:
            mock_websocket = AsyncMock()
            mock_websocket.send = AsyncMock()
            mock_websocket.recv = AsyncMock(side_effect=asyncio.TimeoutError())
            mock_websocket.__aenter__ = AsyncMock(return_value=mock_websocket)
            mock_websocket.__aexit__ = AsyncMock(return_value=None)
            mock_connect.return_value = mock_websocket

            with pytest.raises(ToolInvocationError) as exc_info:
                await mcp_client.execute(server, "get_data", {"query": "test"})

            assert "timed out" in str(exc_info.value).lower()

    @pytest.mark.asyncio
    async def test_execute_missing_endpoint(self, mcp_client, server):
        """Test execution with missing endpoint."""
        server.endpoint = ""

        with pytest.raises(ConfigurationError) as exc_info:
            await mcp_client.execute(server, "get_data", {"query": "test"})

        assert "missing an endpoint" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_execute_ssrf_protection_localhost(self, mcp_client, server):
        """Test SSRF protection blocks localhost endpoints."""
        server.endpoint = "http://localhost:8080/api"

        with pytest.raises(ConfigurationError) as exc_info:
            await mcp_client.execute(server, "get_data", {"query": "test"})

        assert "SSRF protection" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_execute_ssrf_protection_private_ip(self, mcp_client, server):
        """Test SSRF protection blocks private IP ranges."""
        server.endpoint = "http://192.168.1.1/api"

        with pytest.raises(ConfigurationError) as exc_info:
            await mcp_client.execute(server, "get_data", {"query": "test"})

        assert "SSRF protection" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_execute_invalid_protocol(self, mcp_client, server):
        """Test execution with invalid protocol."""
        server.endpoint = "ftp://example.com/api"

        with pytest.raises(ConfigurationError) as exc_info:
            await mcp_client.execute(server, "get_data", {"query": "test"})

        assert "Invalid MCP endpoint protocol" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_execute_api_key_auth(self, mcp_client, server):
        """Test HTTP execution with API key authentication."""
        server.auth_config = {"type": "api_key", "api_key": "test-api-key-456", "key_name": "X-API-Key"}

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_http_client(mock_client_class, {"jsonrpc": "2.0", "result": {"success": True}})

            await mcp_client.execute(server, "get_data", {"query": "test"})

            call_args = mock_client.post.call_args
            assert call_args[1]["headers"]["X-API-Key"] == "test-api-key-456"
            assert "Authorization" not in call_args[1]["headers"]

    @pytest.mark.asyncio
    async def test_execute_env_secret_reference(self, mcp_client, server, monkeypatch):
        monkeypatch.setenv("TEST_MCP_TOKEN", "from-env")
        server.auth_config = {"type": "bearer", "token": "env://TEST_MCP_TOKEN"}

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_http_client(mock_client_class, {"result": {}})

            await mcp_client.execute(server, "get_data", {})

            assert mock_client.post.call_args[1]["headers"]["Authorization"] == "Bearer from-env"


class TestEndpointValidation:
    def test_allows_public_endpoints(self):
        validate_endpoint("https://mcp.example.com/api")
        validate_endpoint("wss://mcp.example.com/ws")

    def test_blocks_private_ranges(self):
        for endpoint in ("http://10.0.0.5/api", "http://172.20.1.1", "ws://127.0.0.1:9000"):
            with pytest.raises(ConfigurationError):
                validate_endpoint(endpoint)


class TestFormatMCPContent:
    def test_text_parts_are_joined(self):
        text, artifact = format_mcp_content({
            "content": [{"type": "text", "text": "first"}, {"type": "text", "text": "second"}],
        })

        assert text == "first\n\nsecond"
        assert artifact is None

    def test_image_becomes_artifact(self):
        text, artifact = format_mcp_content({
            "content": [
                {"type": "text", "text": "chart"},
                {"type": "image", "mimeType": "image/jpeg", "data": "AAAA"},
            ],
        })

        assert text == "chart"
        assert artifact == {
            "content": [{"type": "image_url", "image_url": {"url": "data:image/jpeg;base64,AAAA"}}],
        }

    def test_resource(self):
        text, _ = format_mcp_content({
            "content": [{"type": "resource", "resource": {"uri": "file:///a.txt", "text": "hello"}}],
        })

        assert text == "Resource: file:///a.txt\nhello"

    def test_empty_content(self):
        assert format_mcp_content({"content": []}) == ("(No response)", None)

    def test_error_result_raises(self):
        with pytest.raises(ToolInvocationError) as exc_info:
            format_mcp_content({"content": [{"type": "text", "text": "bad input"}], "isError": True})

        assert "bad input" in str(exc_info.value)


class TestRegistryMCPTools:
    """Test MCP tools loaded through the static registry."""

    @pytest.fixture
    def registry(self):
        client = MagicMock()
        client.execute = AsyncMock(return_value={"content": [{"type": "text", "text": "repo list"}]})
        registry = StaticToolRegistry(
            mcp_servers={
                "github": MCPServerConfig(
                    name="github",
                    endpoint="https://mcp.github.example.com",
                    headers={"X-GitHub-Token": "{{GITHUB_TOKEN}}"},
                ),
            },
            client=client,
        )
        registry.register_mcp_tool(ToolDefinition(
            name="list_repos_mcp_github",
            provider="mcp",
            implementation_ref={"mcp_server_name": "github"},
        ))
        return registry

    def test_register_requires_server_name(self, registry):
        with pytest.raises(ValueError) as exc_info:
            registry.register_mcp_tool(ToolDefinition(name="x_mcp_y", provider="mcp"))

        assert "MCP server name not found" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_invoke_uses_user_credentials(self, registry, run):
        auth = AuthContext(user_id="user-1", mcp_auth_map={"github": {"GITHUB_TOKEN": "ghp-user"}})
        tools = await registry.load(["list_repos_mcp_github"], auth)

        tool = tools["list_repos_mcp_github"]
        call = ToolCall(id="call-1", name=tool.name, args={"org": "acme"})
        output = await tool.invoke(call.args, ToolCallContext(run=run, tool_call=call))

        assert output == "repo list"
        assert tool.server_name == "github"
        args, kwargs = registry.client.execute.call_args
        assert args[1] == "list_repos"
        assert args[2] == {"org": "acme"}
        assert kwargs["headers"] == {"X-GitHub-Token": "ghp-user"}
        assert kwargs["execution_context"]["user_id"] == "user-1"

    @pytest.mark.asyncio
    async def test_unconfigured_server_is_skipped(self, registry):
        registry.mcp_servers.clear()

        assert await registry.load(["list_repos_mcp_github"], AuthContext(user_id="user-1")) == {}
