"""Stored action sets and their per-run compiled form."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from toolgate.services.openapi_actions import ActionRequest, FunctionSignature


class OwnerScope(str, Enum):
    ASSISTANT = "assistant"
    AGENT = "agent"


class AuthType(str, Enum):
    NONE = "none"
    SERVICE_HTTP = "service_http"
    OAUTH = "oauth"


class AuthorizationType(str, Enum):
    BEARER = "bearer"
    BASIC = "basic"
    CUSTOM = "custom"


class ActionAuth(BaseModel):
    """How requests built from an action set authenticate."""
    type: AuthType = AuthType.NONE
    authorization_type: Optional[AuthorizationType] = None
    custom_auth_header: Optional[str] = None
    authorization_url: Optional[str] = None
    client_url: Optional[str] = None
    scope: Optional[str] = None


class ActionMetadata(BaseModel):
    domain: str = Field(..., description="Registered domain the spec must point to")
    raw_spec: str = Field(..., description="OpenAPI document (JSON or YAML)")
    auth: ActionAuth = Field(default_factory=ActionAuth)
    api_key: Optional[str] = Field(None, description="Encrypted API key for service_http auth")
    oauth_client_id: Optional[str] = Field(None, description="Encrypted OAuth client id")
    oauth_client_secret: Optional[str] = Field(None, description="Encrypted OAuth client secret")


class ActionSet(BaseModel):
    """A stored, assistant- or agent-scoped OpenAPI action set."""
    action_id: str
    owner_scope: OwnerScope = OwnerScope.AGENT
    owner_id: str
    metadata: ActionMetadata


@dataclass
class CompiledAction:
    """An action set validated and compiled for a single run."""
    action: ActionSet  # metadata decrypted
    domain: str  # canonical (encoded) domain key
    request_builders: Dict[str, "ActionRequest"]
    function_signatures: List["FunctionSignature"]
    validated_server_url: str
    encrypted: Dict[str, Optional[str]] = field(default_factory=dict)

    def signature(self, function_name: str) -> Optional["FunctionSignature"]:
        for sig in self.function_signatures:
            if sig.name == function_name:
                return sig
        return None
