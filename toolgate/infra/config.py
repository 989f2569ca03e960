"""Configuration management with secrets support."""

import os
from typing import List, Optional, Union
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from project root
project_root = Path(__file__).parent.parent.parent
env_file = project_root / ".env"

# override=False means existing environment variables take precedence
load_dotenv(dotenv_path=env_file, override=False)


# Lazy import to avoid circular dependencies
def get_secret_lazy(secret_ref: str, fallback: Optional[str] = None) -> Optional[str]:
    """Lazy import of get_secret to avoid circular dependencies."""
    from toolgate.infra.secrets import get_secret
    return get_secret(secret_ref, fallback)


def parse_list(value: Optional[str]) -> Optional[List[str]]:
    """Parse a comma-separated env value; unset or blank means None."""
    if value is None or not value.strip():
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_approval_required(value: Optional[str]) -> Union[bool, List[str], None]:
    """
    Parse TOOL_APPROVAL_REQUIRED.

    "true"/"false" toggle approval for every tool; anything else is read as a
    comma-separated list of tool name patterns.
    """
    if value is None or not value.strip():
        return None
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    return parse_list(value)


class Config:
    """Application configuration with secrets management."""
    # Application
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "")

    # Redis (shared validation flow store)
    REDIS_URL: str = get_secret_lazy(
        os.getenv("REDIS_URL_REF", ""),
        fallback=os.getenv("REDIS_URL", "redis://localhost:6379/0")
    )
    FLOW_STORE: str = os.getenv("FLOW_STORE", "memory")  # "memory" | "redis"

    # Fernet key for action/credential metadata - supports vault:// or aws:// references
    CREDS_KEY: Optional[str] = get_secret_lazy(
        os.getenv("CREDS_KEY_REF", ""),
        fallback=os.getenv("CREDS_KEY")
    )

    # Actions
    ACTIONS_ALLOWED_DOMAINS: Optional[List[str]] = parse_list(os.getenv("ACTIONS_ALLOWED_DOMAINS"))
    ACTION_DOMAIN_MATCH: str = os.getenv("ACTION_DOMAIN_MATCH", "suffix")  # "suffix" | "substring"
    ACTION_REQUEST_TIMEOUT: float = float(os.getenv("ACTION_REQUEST_TIMEOUT", "30"))

    # MCP
    MCP_REQUEST_TIMEOUT: float = float(os.getenv("MCP_REQUEST_TIMEOUT", "30"))

    # Tool approval
    TOOL_APPROVAL_REQUIRED: Union[bool, List[str], None] = parse_approval_required(
        os.getenv("TOOL_APPROVAL_REQUIRED")
    )
    TOOL_APPROVAL_EXCLUDED: List[str] = parse_list(os.getenv("TOOL_APPROVAL_EXCLUDED")) or []
    TOOL_APPROVAL_WINDOW_SECONDS: float = float(os.getenv("TOOL_APPROVAL_WINDOW_SECONDS", "600"))

    # Tool output
    TOOL_ERROR_MAX_LENGTH: int = int(os.getenv("TOOL_ERROR_MAX_LENGTH", "256"))

    # Vault configuration (optional)
    VAULT_ADDR: Optional[str] = os.getenv("VAULT_ADDR")
    VAULT_TOKEN: Optional[str] = os.getenv("VAULT_TOKEN")

    # AWS configuration (optional)
    AWS_REGION: Optional[str] = os.getenv("AWS_REGION")


config = Config()
