"""Flow state manager: suspend a caller until an external decision arrives."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from toolgate.infra.config import config
from toolgate.infra.metrics import pending_validation_flows
from toolgate.models.flow import FlowState, ValidationFlow

logger = logging.getLogger(__name__)

# How long resolved flow records stay readable after reaching a terminal state
TERMINAL_RETENTION_SECONDS = 300


def now_ms() -> int:
    return int(time.time() * 1000)


class FlowStore(Protocol):
    def save(self, flow_type: str, flow: ValidationFlow, ttl_seconds: float) -> None:
        ...

    def get(self, flow_id: str) -> Optional[ValidationFlow]:
        ...


class InMemoryFlowStore:
    """Process-local flow records keyed by validation id."""

    def __init__(self):
        self._records: Dict[str, tuple] = {}  # flow_id -> (flow, expires_at_ms)

    def save(self, flow_type: str, flow: ValidationFlow, ttl_seconds: float) -> None:
        self._prune()
        self._records[flow.validation_id] = (flow.model_copy(), now_ms() + int(ttl_seconds * 1000))

    def get(self, flow_id: str) -> Optional[ValidationFlow]:
        record = self._records.get(flow_id)
        if not record:
            return None
        flow, expires_at = record
        if expires_at < now_ms():
            del self._records[flow_id]
            return None
        return flow.model_copy()

    def _prune(self) -> None:
        current = now_ms()
        for flow_id in [key for key, (_, expires_at) in self._records.items() if expires_at < current]:
            del self._records[flow_id]


class RedisFlowStore:
    """Flow records in Redis, shared by every worker serving the same users."""

    KEY_PREFIX = "toolgate:flow:"

    def __init__(self, redis_client=None):
        if redis_client is None:
            import redis
            redis_client = redis.Redis.from_url(config.REDIS_URL, decode_responses=True)
        self.redis = redis_client

    def _key(self, flow_id: str) -> str:
        return f"{self.KEY_PREFIX}{flow_id}"

    def save(self, flow_type: str, flow: ValidationFlow, ttl_seconds: float) -> None:
        record = {"type": flow_type, "flow": flow.model_dump(mode="json")}
        self.redis.set(self._key(flow.validation_id), json.dumps(record), ex=max(int(ttl_seconds), 1))

    def get(self, flow_id: str) -> Optional[ValidationFlow]:
        raw = self.redis.get(self._key(flow_id))
        if not raw:
            return None
        return ValidationFlow.model_validate(json.loads(raw)["flow"])


@dataclass
class _PendingFlow:
    flow_type: str
    flow: ValidationFlow
    decision: asyncio.Future


class FlowStateManager:
    """
    Tracks pending validation flows and wakes their waiters.

    Every flow ends exactly once: by resolve(), by reaching expires_at, or by
    the caller's cancel event. Flows are keyed strictly by id.
    """

    def __init__(self, store: Optional[FlowStore] = None):
        self.store = store or InMemoryFlowStore()
        self._pending: Dict[str, _PendingFlow] = {}

    def is_pending(self, flow_id: str) -> bool:
        return flow_id in self._pending

    def get_flow(self, flow_id: str) -> Optional[ValidationFlow]:
        pending = self._pending.get(flow_id)
        if pending:
            return pending.flow.model_copy()
        return self.store.get(flow_id)

    async def create_flow(
        self,
        flow_id: str,
        flow_type: str,
        flow: ValidationFlow,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FlowState:
        """
        Register a flow and wait for its terminal state.

        Args:
            flow_id: Validation id (must be unique)
            flow_type: Flow type label stored with the record
            flow: ValidationFlow in PENDING state
            cancel_event: Set by the enclosing request on cancellation

        Returns:
            The terminal FlowState

        Raises:
            ValueError: If a flow with this id is already pending
        """
        if flow_id in self._pending:
            raise ValueError(f"Flow '{flow_id}' already exists")

        decision = asyncio.get_running_loop().create_future()
        self._pending[flow_id] = _PendingFlow(flow_type, flow, decision)
        self.store.save(flow_type, flow, flow.remaining_seconds(now_ms()) + TERMINAL_RETENTION_SECONDS)
        pending_validation_flows.inc()

        waiters = [decision]
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.append(cancel_waiter)

        state = FlowState.EXPIRED
        reason = "Approval window elapsed"
        try:
            await asyncio.wait(waiters, timeout=flow.remaining_seconds(now_ms()), return_when=asyncio.FIRST_COMPLETED)
            if decision.done():
                state, reason = decision.result()
            elif cancel_waiter is not None and cancel_waiter.done():
                state, reason = FlowState.CANCELLED, "Request cancelled"
        except asyncio.CancelledError:
            state, reason = FlowState.CANCELLED, "Waiting task cancelled"
            raise
        finally:
            self._pending.pop(flow_id, None)
            pending_validation_flows.dec()
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()
            if not decision.done():
                decision.cancel()
            flow.transition(state, reason)
            self.store.save(flow_type, flow, TERMINAL_RETENTION_SECONDS)

        logger.debug(f"Flow {flow_id} ({flow_type}) finished as {flow.state.value}")
        return flow.state

    def resolve(self, flow_id: str, approved: bool, reason: Optional[str] = None) -> bool:
        """
        Deliver an external decision for a pending flow.

        Returns:
            True if the decision was accepted, False if the flow is unknown or already decided
        """
        pending = self._pending.get(flow_id)
        if pending is None or pending.decision.done():
            logger.info(f"Ignoring decision for flow {flow_id}: not pending")
            return False

        state = FlowState.APPROVED if approved else FlowState.REJECTED
        pending.decision.set_result((state, reason))
        return True


def create_flow_store() -> FlowStore:
    if config.FLOW_STORE == "redis":
        return RedisFlowStore()
    return InMemoryFlowStore()


# Global flow state manager instance
flow_state_manager = FlowStateManager(create_flow_store())
