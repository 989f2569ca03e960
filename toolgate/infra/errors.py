"""Error taxonomy for tool resolution, validation, approval and invocation."""

import re
from enum import Enum
from typing import Iterable, List, Optional


class ErrorCategory(str, Enum):
    """Categories of errors for better handling."""
    CONFIGURATION = "configuration"  # Missing keys, credentials, token paths
    VALIDATION = "validation"  # Action set failed domain/spec validation
    RESOLUTION = "resolution"  # Tool identifier could not be resolved
    INVOCATION = "invocation"  # Tool raised while executing
    APPROVAL = "approval"  # Tool call not approved (rejected/expired/cancelled)
    CANCELLED = "cancelled"  # Enclosing run was cancelled


class ToolGateError(Exception):
    """Base exception carrying an error category."""
    def __init__(self, message: str, category: ErrorCategory):
        self.message = message
        self.category = category
        super().__init__(message)


class ConfigurationError(ToolGateError):
    """Fatal configuration or credential error (never transient)."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.CONFIGURATION)


class TokenMappingError(ConfigurationError):
    """access_token could not be found in a provider token response."""
    def __init__(self, path: str, response_keys: Iterable[str]):
        self.path = path
        self.response_keys: List[str] = list(response_keys)
        keys = ", ".join(self.response_keys)
        super().__init__(
            f'Token response mapping failed: access_token not found at path "{path}". '
            f"Response keys: {keys}"
        )


class MetadataDecryptionError(ConfigurationError):
    """Encrypted action or credential metadata could not be decrypted."""


class InvalidActionError(ConfigurationError):
    """A compiled action could not be turned into a callable tool."""
    def __init__(self, tool_name: str, reason: str):
        self.tool_name = tool_name
        super().__init__(f"Invalid action '{tool_name}': {reason}")


class ActionValidationError(ToolGateError):
    """An action set failed spec or domain validation."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.VALIDATION)


class ToolNotFoundError(ToolGateError):
    """One or more required tool identifiers could not be resolved."""
    def __init__(self, tool_names: Iterable[str]):
        self.tool_names = list(tool_names)
        super().__init__(
            f"No tools found for the specified tool calls: {', '.join(self.tool_names)}",
            ErrorCategory.RESOLUTION,
        )


class ToolInvocationError(ToolGateError):
    """A tool failed while executing."""
    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(message, ErrorCategory.INVOCATION)


class ToolApprovalError(ToolGateError):
    """A gated tool call ended without approval. Terminal and non-retryable."""

    REASONS = {
        "rejected": "User rejected the tool call.",
        "expired": "Approval timed out.",
        "cancelled": "Request was cancelled before approval.",
    }

    def __init__(self, tool_name: str, outcome: str, validation_id: Optional[str] = None):
        self.tool_name = tool_name
        self.outcome = outcome
        self.validation_id = validation_id
        reason = self.REASONS.get(outcome, outcome)
        super().__init__(
            f"Tool call for {tool_name} was not approved by the user. {reason}",
            ErrorCategory.APPROVAL,
        )


class RunCancelledError(ToolGateError):
    """The enclosing run was cancelled."""
    def __init__(self, message: str = "Run was cancelled"):
        super().__init__(message, ErrorCategory.CANCELLED)


# Patterns masked before error text is handed back to a model or client
SECRET_PATTERNS = [
    (re.compile(r"(Bearer\s+)[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"\bsk-[A-Za-z0-9_\-]{8,}"), "sk-[REDACTED]"),
    (re.compile(r"(api[_-]?key[\"']?\s*[:=]\s*[\"']?)[^\s\"',&]+", re.IGNORECASE), r"\1[REDACTED]"),
]


def redact_message(message: str, max_length: Optional[int] = None) -> str:
    """
    Mask credentials in a message and optionally truncate it.

    Args:
        message: Raw error text
        max_length: Maximum length of the result (an ellipsis marks truncation)

    Returns:
        Redacted, bounded message
    """
    if not message:
        return ""

    redacted = message
    for pattern, replacement in SECRET_PATTERNS:
        redacted = pattern.sub(replacement, redacted)

    if max_length is not None and len(redacted) > max_length:
        redacted = redacted[: max(max_length - 3, 0)] + "..."
    return redacted
