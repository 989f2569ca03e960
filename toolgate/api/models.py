"""API request/response models."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from toolgate.models.flow import ValidationFlow


class ApprovalDecisionRequest(BaseModel):
    """Operator decision for a pending tool call."""
    approved: bool = Field(..., description="True to let the tool call run")
    reason: Optional[str] = Field(None, max_length=1000, description="Optional note recorded with the decision")


class ApprovalDecisionResponse(BaseModel):
    status: str = Field(..., examples=["accepted"])
    validation_id: str


class FlowResponse(BaseModel):
    """Validation flow record as exposed to operators."""
    validation_id: str
    tool_name: str
    server_name: str
    state: str
    reason: Optional[str] = None
    arguments: Dict[str, Any] = Field(default_factory=dict)
    created_at: int
    expires_at: int

    @classmethod
    def from_flow(cls, flow: ValidationFlow) -> "FlowResponse":
        return cls(
            validation_id=flow.validation_id,
            tool_name=flow.tool_name,
            server_name=flow.server_name,
            state=flow.state.value,
            reason=flow.reason,
            arguments=flow.arguments,
            created_at=flow.created_at,
            expires_at=flow.expires_at,
        )
