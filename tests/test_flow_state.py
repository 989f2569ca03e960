"""Unit tests for the flow state manager and stores."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from toolgate.infra.flow_state import FlowStateManager, InMemoryFlowStore, RedisFlowStore, now_ms
from toolgate.models.flow import FlowState, ValidationFlow


def make_flow(flow_id: str = "flow-1", window_ms: int = 60_000) -> ValidationFlow:
    created_at = now_ms()
    return ValidationFlow(
        validation_id=flow_id,
        tool_name="web_search",
        server_name="builtin",
        user_id="user-1",
        arguments={"query": "weather"},
        created_at=created_at,
        expires_at=created_at + window_ms,
    )


class TestValidationFlow:
    """Test the flow model itself."""

    def test_transition_happens_once(self):
        flow = make_flow()

        assert flow.transition(FlowState.APPROVED)
        assert not flow.transition(FlowState.REJECTED)
        assert flow.state == FlowState.APPROVED

    def test_expires_at_is_frozen(self):
        flow = make_flow()

        with pytest.raises(Exception):
            flow.expires_at = flow.expires_at + 1000


class TestFlowStateManager:
    """Test suspend/resume of validation flows."""

    @pytest.mark.asyncio
    async def test_resolve_approves_waiter(self):
        manager = FlowStateManager(InMemoryFlowStore())
        flow = make_flow()

        waiter = asyncio.create_task(manager.create_flow(flow.validation_id, "tool_call_validation", flow))
        await asyncio.sleep(0)
        assert manager.is_pending(flow.validation_id)

        assert manager.resolve(flow.validation_id, True)
        state = await waiter

        assert state == FlowState.APPROVED
        assert not manager.is_pending(flow.validation_id)
        assert manager.get_flow(flow.validation_id).state == FlowState.APPROVED

    @pytest.mark.asyncio
    async def test_reject_records_reason(self):
        manager = FlowStateManager()
        flow = make_flow()

        waiter = asyncio.create_task(manager.create_flow(flow.validation_id, "tool_call_validation", flow))
        await asyncio.sleep(0)
        manager.resolve(flow.validation_id, False, "not today")

        assert await waiter == FlowState.REJECTED
        assert manager.get_flow(flow.validation_id).reason == "not today"

    @pytest.mark.asyncio
    async def test_second_decision_is_ignored(self):
        manager = FlowStateManager()
        flow = make_flow()

        waiter = asyncio.create_task(manager.create_flow(flow.validation_id, "tool_call_validation", flow))
        await asyncio.sleep(0)

        assert manager.resolve(flow.validation_id, True)
        assert not manager.resolve(flow.validation_id, False)
        assert await waiter == FlowState.APPROVED
        assert not manager.resolve(flow.validation_id, False)

    @pytest.mark.asyncio
    async def test_expiry(self):
        manager = FlowStateManager()
        flow = make_flow(window_ms=50)

        state = await manager.create_flow(flow.validation_id, "tool_call_validation", flow)

        assert state == FlowState.EXPIRED
        assert flow.state == FlowState.EXPIRED
        assert not manager.is_pending(flow.validation_id)

    @pytest.mark.asyncio
    async def test_cancel_event(self):
        manager = FlowStateManager()
        flow = make_flow()
        cancel_event = asyncio.Event()

        waiter = asyncio.create_task(
            manager.create_flow(flow.validation_id, "tool_call_validation", flow, cancel_event)
        )
        await asyncio.sleep(0.01)
        cancel_event.set()

        assert await waiter == FlowState.CANCELLED

    @pytest.mark.asyncio
    async def test_task_cancellation_records_cancelled(self):
        manager = FlowStateManager()
        flow = make_flow()

        waiter = asyncio.create_task(manager.create_flow(flow.validation_id, "tool_call_validation", flow))
        await asyncio.sleep(0)
        waiter.cancel()

        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert flow.state == FlowState.CANCELLED
        assert not manager.is_pending(flow.validation_id)

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self):
        manager = FlowStateManager()
        flow = make_flow()

        waiter = asyncio.create_task(manager.create_flow(flow.validation_id, "tool_call_validation", flow))
        await asyncio.sleep(0)

        with pytest.raises(ValueError):
            await manager.create_flow(flow.validation_id, "tool_call_validation", make_flow())

        manager.resolve(flow.validation_id, True)
        await waiter

    @pytest.mark.asyncio
    async def test_flows_do_not_share_state(self):
        manager = FlowStateManager()
        first, second = make_flow("flow-a"), make_flow("flow-b")

        waiters = [
            asyncio.create_task(manager.create_flow(flow.validation_id, "tool_call_validation", flow))
            for flow in (first, second)
        ]
        await asyncio.sleep(0)
        manager.resolve("flow-b", False)
        manager.resolve("flow-a", True)

        assert await asyncio.gather(*waiters) == [FlowState.APPROVED, FlowState.REJECTED]


class TestRedisFlowStore:
    """Test the Redis-backed store with a mocked client."""

    def test_save_and_get(self):
        redis_client = MagicMock()
        store = RedisFlowStore(redis_client)
        flow = make_flow()

        store.save("tool_call_validation", flow, 30)

        key, raw = redis_client.set.call_args[0]
        assert key == "toolgate:flow:flow-1"
        assert redis_client.set.call_args[1]["ex"] == 30
        record = json.loads(raw)
        assert record["type"] == "tool_call_validation"

        redis_client.get.return_value = raw
        loaded = store.get("flow-1")
        assert loaded == flow

    def test_missing_record(self):
        redis_client = MagicMock()
        redis_client.get.return_value = None

        assert RedisFlowStore(redis_client).get("nope") is None
