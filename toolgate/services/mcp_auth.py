"""Per-user MCP credentials and OAuth token exchange."""

import logging
import re
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

import httpx

from toolgate.infra.config import config
from toolgate.infra.errors import ToolInvocationError
from toolgate.infra.flow_state import now_ms
from toolgate.models.mcp import MCPServerConfig
from toolgate.models.token import TokenRecord, TokenResponseMapping
from toolgate.models.tool import MCP_DELIMITER, MCP_PLUGIN_PREFIX
from toolgate.services.oauth_token_mapper import map_token_response

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")

# (user_id, plugin_keys) -> [{"plugin_key": ..., "auth_field": ..., "value": <encrypted>}]
FindPluginAuthsByKeys = Callable[[str, List[str]], Awaitable[List[Dict[str, Any]]]]


def get_mcp_server_names(tool_names: Iterable[str]) -> List[str]:
    """Distinct MCP server names referenced by tool identifiers, in first-seen order."""
    servers: List[str] = []
    for name in tool_names:
        if MCP_DELIMITER not in name:
            continue
        server = name.split(MCP_DELIMITER, 1)[1]
        if server and server not in servers:
            servers.append(server)
    return servers


async def get_user_mcp_auth_map(
    tool_names: Iterable[str],
    user_id: str,
    find_plugin_auths_by_keys: FindPluginAuthsByKeys,
    decryptor=None,
) -> Dict[str, Dict[str, str]]:
    """
    Load a user's stored credential variables for every MCP server the tools use.

    Args:
        tool_names: Tool identifiers of the run
        user_id: User whose credentials to load
        find_plugin_auths_by_keys: Credential store lookup
        decryptor: Object with decrypt_value(); values are used as stored when None

    Returns:
        {server_name: {variable: value}}

    Raises:
        MetadataDecryptionError: If a stored value cannot be decrypted
    """
    servers = get_mcp_server_names(tool_names)
    if not servers:
        return {}

    plugin_keys = [f"{MCP_PLUGIN_PREFIX}{server}" for server in servers]
    try:
        records = await find_plugin_auths_by_keys(user_id, plugin_keys) or []
    except Exception as e:
        # Tools still load; servers that need user credentials will reject the call
        logger.error(f"Failed to load MCP credentials for user {user_id}: {e}", exc_info=True)
        return {}

    auth_map: Dict[str, Dict[str, str]] = {}
    for record in records:
        plugin_key = record.get("plugin_key", "")
        if not plugin_key.startswith(MCP_PLUGIN_PREFIX):
            continue
        server = plugin_key[len(MCP_PLUGIN_PREFIX):]
        value = record.get("value")
        if value and decryptor is not None:
            value = decryptor.decrypt_value(value)
        auth_map.setdefault(server, {})[record.get("auth_field", "")] = value

    logger.debug(f"Loaded MCP credentials for user {user_id}: servers={sorted(auth_map)}")
    return auth_map


async def exchange_oauth_token(
    token_url: str,
    data: Dict[str, Any],
    mapping: Optional[Union[TokenResponseMapping, Dict[str, Any]]] = None,
    timeout: Optional[float] = None,
) -> TokenRecord:
    """
    Post a token request and normalize the provider's response.

    Args:
        token_url: Provider token endpoint
        data: Form fields (grant_type, code, client_id, ...)
        mapping: Where the token fields live; standard top-level fields when None
        timeout: Request timeout in seconds

    Returns:
        TokenRecord

    Raises:
        ToolInvocationError: If the request fails or the body is not JSON
        TokenMappingError: If access_token is not at the mapped path
    """
    mapping = mapping or TokenResponseMapping(access_token="access_token")

    async with httpx.AsyncClient(timeout=timeout or config.MCP_REQUEST_TIMEOUT) as client:
        try:
            response = await client.post(token_url, data=data, headers={"Accept": "application/json"})
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise ToolInvocationError("oauth", f"Token request to {token_url} failed: {e}")
        except ValueError as e:
            raise ToolInvocationError("oauth", f"Token response from {token_url} is not JSON: {e}")

    if not isinstance(body, dict):
        raise ToolInvocationError("oauth", f"Token response from {token_url} is not an object")

    return map_token_response(body, mapping, obtained_at=now_ms())


def substitute_placeholders(value: str, user_vars: Dict[str, str]) -> Optional[str]:
    """Fill {{VAR}} placeholders; None if any placeholder has no value."""
    missing = [name for name in PLACEHOLDER_PATTERN.findall(value) if not user_vars.get(name)]
    if missing:
        return None
    return PLACEHOLDER_PATTERN.sub(lambda match: user_vars[match.group(1)], value)


def build_auth_headers(
    server: MCPServerConfig,
    user_vars: Optional[Dict[str, str]] = None,
    token: Optional[TokenRecord] = None,
) -> Dict[str, str]:
    """
    Build the per-user request headers for an MCP server.

    Headers whose placeholders cannot be filled are left out, as is an
    expired OAuth token.
    """
    user_vars = user_vars or {}
    headers: Dict[str, str] = {}

    for name, template in server.headers.items():
        value = substitute_placeholders(template, user_vars)
        if value is None:
            logger.warning(f"MCP server {server.name}: header {name} left out, user credentials missing")
            continue
        headers[name] = value

    if token is not None:
        if token.is_expired(now_ms()):
            logger.warning(f"MCP server {server.name}: OAuth token expired, Authorization header left out")
        else:
            headers["Authorization"] = f"Bearer {token.access_token}"

    return headers
