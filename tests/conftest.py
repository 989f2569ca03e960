"""Pytest configuration and fixtures."""

import json
import os

import pytest
from cryptography.fernet import Fernet
from dotenv import load_dotenv

# Load test environment variables
load_dotenv()

# Set test environment before any toolgate module reads its configuration
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("FLOW_STORE", "memory")

from toolgate.infra.crypto import FernetMetadataDecryptor  # noqa: E402
from toolgate.models.action import ActionAuth, ActionMetadata, ActionSet, AuthType  # noqa: E402
from toolgate.models.run import RunContext  # noqa: E402
from toolgate.models.tool import ToolApprovalConfig  # noqa: E402


def make_spec(server_url: str, operations=None) -> str:
    """Build a small OpenAPI document as a JSON string."""
    operations = operations or {
        "/items": {
            "get": {
                "operationId": "listItems",
                "summary": "List items",
                "parameters": [{"name": "limit", "in": "query", "schema": {"type": "integer"}}],
            }
        }
    }
    return json.dumps({
        "openapi": "3.0.0",
        "info": {"title": "Test API", "version": "1.0.0"},
        "servers": [{"url": server_url}],
        "paths": operations,
    })


@pytest.fixture
def fernet_key():
    return Fernet.generate_key().decode("utf-8")


@pytest.fixture
def decryptor(fernet_key):
    return FernetMetadataDecryptor(fernet_key)


@pytest.fixture
def make_action_set(decryptor):
    """Factory for stored (encrypted) action sets."""
    def _make(
        action_id: str,
        domain: str,
        server_url=None,
        owner_id: str = "agent-1",
        api_key=None,
        operations=None,
    ) -> ActionSet:
        metadata = ActionMetadata(
            domain=domain,
            raw_spec=make_spec(server_url or f"https://{domain}", operations),
            auth=ActionAuth(type=AuthType.SERVICE_HTTP) if api_key else ActionAuth(),
            api_key=api_key,
        )
        return ActionSet(action_id=action_id, owner_id=owner_id, metadata=decryptor.encrypt(metadata))
    return _make


@pytest.fixture
def run():
    """Run context with approval disabled unless a test opts in."""
    return RunContext(
        run_id="run-1",
        user_id="user-1",
        owner_id="agent-1",
        thread_id="thread-1",
        tool_approval=ToolApprovalConfig(required=False),
    )
