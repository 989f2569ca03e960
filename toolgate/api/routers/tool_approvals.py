"""Tool approval callback API router."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Security

from toolgate.api.auth import get_current_user_id
from toolgate.api.models import ApprovalDecisionRequest, ApprovalDecisionResponse, FlowResponse
from toolgate.infra.flow_state import FlowStateManager, flow_state_manager
from toolgate.models.flow import ValidationFlow

logger = logging.getLogger(__name__)

router = APIRouter()


def get_flow_manager() -> FlowStateManager:
    return flow_state_manager


def _owned_flow(manager: FlowStateManager, validation_id: str, user_id: str) -> ValidationFlow:
    flow = manager.get_flow(validation_id)
    if flow is None:
        raise HTTPException(status_code=404, detail=f"Validation flow '{validation_id}' not found")
    if flow.user_id and flow.user_id != user_id:
        logger.warning(f"[Tool Approval] User {user_id} tried to access flow {validation_id} owned by another user")
        raise HTTPException(status_code=403, detail="Validation flow belongs to another user")
    return flow


@router.post(
    "/tool-approvals/{validation_id}",
    tags=["Tool Approvals"],
    response_model=ApprovalDecisionResponse,
)
async def decide_tool_call(
    validation_id: str,
    request: ApprovalDecisionRequest,
    manager: FlowStateManager = Depends(get_flow_manager),
    user_id: str = Security(get_current_user_id),
):
    """
    Approve or reject a pending tool call.

    Returns 404 when the flow is unknown or has already ended (approved,
    rejected, expired or cancelled). A decision is accepted at most once.
    """
    _owned_flow(manager, validation_id, user_id)

    if not manager.is_pending(validation_id) or not manager.resolve(validation_id, request.approved, request.reason):
        raise HTTPException(status_code=404, detail=f"Validation flow '{validation_id}' is not pending")

    logger.info(
        f"[Tool Approval] Decision received for {validation_id}: "
        f"{'approved' if request.approved else 'rejected'} by user {user_id}"
    )
    return ApprovalDecisionResponse(status="accepted", validation_id=validation_id)


@router.get(
    "/tool-approvals/{validation_id}",
    tags=["Tool Approvals"],
    response_model=FlowResponse,
)
async def get_tool_call_validation(
    validation_id: str,
    manager: FlowStateManager = Depends(get_flow_manager),
    user_id: str = Security(get_current_user_id),
):
    """Return the validation flow record."""
    return FlowResponse.from_flow(_owned_flow(manager, validation_id, user_id))
