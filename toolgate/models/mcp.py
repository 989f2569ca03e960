"""MCP server configuration models."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from toolgate.models.token import TokenResponseMapping


class MCPOAuthConfig(BaseModel):
    """OAuth settings for an MCP server whose provider uses a non-standard token response."""
    token_url: str
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    scope: Optional[str] = None
    token_response_mapping: Optional[TokenResponseMapping] = None


class MCPServerConfig(BaseModel):
    """Connection settings for one MCP server."""
    name: str = Field(..., description="Server name used in tool identifiers")
    endpoint: str = Field(..., description="http(s):// or ws(s):// endpoint")
    headers: Dict[str, str] = Field(
        default_factory=dict,
        description="Static headers; values may contain {{VAR}} placeholders filled from user credentials",
    )
    auth_config: Dict[str, Any] = Field(
        default_factory=dict,
        description="{'type': 'bearer'|'api_key', 'token'|'api_key': value or vault:// ref, 'key_name': header}",
    )
    custom_user_vars: List[str] = Field(
        default_factory=list,
        description="Credential variables each user supplies for this server",
    )
    oauth: Optional[MCPOAuthConfig] = None
    timeout: Optional[float] = None
