"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Tool metrics
tool_calls_total = Counter(
    "tool_calls_total",
    "Total tool calls",
    ["tool_name", "source", "status"],  # status: success | error | not_approved
)

tool_call_duration = Histogram(
    "tool_call_duration_seconds",
    "Tool call duration in seconds",
    ["tool_name", "source"],
)

tool_resolution_failures_total = Counter(
    "tool_resolution_failures_total",
    "Tool identifiers that could not be resolved",
    ["strict"],
)

# Action set metrics
action_sets_compiled_total = Counter(
    "action_sets_compiled_total",
    "Action sets compiled into callable tools",
)

action_sets_rejected_total = Counter(
    "action_sets_rejected_total",
    "Action sets excluded during compilation",
    ["reason"],  # reason: domain_not_allowed | invalid_spec | domain_mismatch
)

# Approval metrics
tool_approvals_total = Counter(
    "tool_approvals_total",
    "Tool call validation flows by outcome",
    ["server_name", "outcome"],  # outcome: approved | rejected | expired | cancelled
)

pending_validation_flows = Gauge(
    "pending_validation_flows",
    "Validation flows currently awaiting a decision",
)

approval_wait_duration = Histogram(
    "approval_wait_duration_seconds",
    "Time a tool call spent waiting for a decision",
    ["outcome"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
