"""Validation flow: one pending human decision for one tool call."""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class FlowState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not FlowState.PENDING


class ValidationFlow(BaseModel):
    """Timestamps are epoch milliseconds; expires_at is fixed at creation."""
    validation_id: str = Field(..., frozen=True)
    tool_name: str = Field(..., frozen=True)
    server_name: str = Field(..., frozen=True)
    user_id: Optional[str] = Field(None, frozen=True)
    arguments: Dict[str, Any] = Field(default_factory=dict, frozen=True)
    created_at: int = Field(..., frozen=True)
    expires_at: int = Field(..., frozen=True)
    state: FlowState = FlowState.PENDING
    reason: Optional[str] = None

    model_config = {"validate_assignment": True}

    def transition(self, state: FlowState, reason: Optional[str] = None) -> bool:
        """Move PENDING to a terminal state. Returns False if already terminal."""
        if self.state.is_terminal or not state.is_terminal:
            return False
        self.state = state
        self.reason = reason
        return True

    def remaining_seconds(self, now_ms: int) -> float:
        return max(self.expires_at - now_ms, 0) / 1000
