# tests/test_events.py
"""
Tests for the event bus and the INVESTMENT_RECEIVED handler.

Run:
    pytest tests/test_events.py -v
"""
import asyncio

import pytest

from compensation.events import handlers
from compensation.events.event_bus import EventBus, eventBus, CompEvents
from compensation.events.setup import (
    setup_compensation_event_handlers,
    teardown_compensation_event_handlers,
)


class FakeSession:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class FakeCompensationService:
    """Stands in for CompensationService; records processInvestment calls."""
    calls = []
    error = None

    def __init__(self, session):
        self.session = session

    async def processInvestment(self, investorUserId, amount, packageId, hasRobotAddon=False, sourceEvent=None):
        if FakeCompensationService.error is not None:
            raise FakeCompensationService.error
        FakeCompensationService.calls.append({
            "investorUserId": investorUserId,
            "amount": amount,
            "packageId": packageId,
            "hasRobotAddon": hasRobotAddon,
            "sourceEvent": sourceEvent,
        })
        return {"success": True}


@pytest.fixture
def fake_processing(monkeypatch):
    """Patch the handler's session and service; returns the session."""
    session = FakeSession()
    FakeCompensationService.calls = []
    FakeCompensationService.error = None
    monkeypatch.setattr(handlers, "get_session", lambda: session)
    monkeypatch.setattr(handlers, "CompensationService", FakeCompensationService)
    return session


# =============================================================================
# TEST CLASS: EventBus
# =============================================================================

class TestEventBus:

    def test_sync_and_async_handlers(self):
        bus = EventBus()
        received = []

        async def async_handler(data):
            received.append(("async", data["n"]))

        bus.subscribe("x", lambda data: received.append(("sync", data["n"])))
        bus.subscribe("x", async_handler)

        delivered = asyncio.run(bus.emit("x", {"n": 1}))

        assert delivered == 2
        assert received == [("sync", 1), ("async", 1)]

    def test_failing_handler_isolated(self):
        """TEST: One handler raises, the next still runs."""
        bus = EventBus()
        received = []

        def broken(data):
            raise RuntimeError("boom")

        bus.subscribe("x", broken)
        bus.subscribe("x", received.append)

        assert asyncio.run(bus.emit("x", {"n": 1})) == 1
        assert received == [{"n": 1}]

    def test_subscribe_is_idempotent(self):
        bus = EventBus()
        handler = lambda data: None

        bus.subscribe("x", handler)
        bus.subscribe("x", handler)

        assert bus.handlers("x") == [handler]

    def test_unsubscribe(self):
        bus = EventBus()
        handler = lambda data: None
        bus.subscribe("x", handler)

        bus.unsubscribe("x", handler)
        bus.unsubscribe("x", handler)

        assert bus.handlers("x") == []
        assert asyncio.run(bus.emit("x", {})) == 0

    def test_setup_and_teardown(self):
        setup_compensation_event_handlers()
        assert eventBus.handlers(CompEvents.INVESTMENT_RECEIVED) == [handlers.handle_investment_received]

        teardown_compensation_event_handlers()
        assert eventBus.handlers(CompEvents.INVESTMENT_RECEIVED) == []


# =============================================================================
# TEST CLASS: INVESTMENT_RECEIVED handler
# =============================================================================

class TestInvestmentReceived:

    def test_processes_investment(self, fake_processing):
        asyncio.run(handlers.handle_investment_received({
            "investorUserId": 7,
            "amount": "1000",
            "packageId": 1,
            "hasRobotAddon": 1,
            "sourceEvent": "purchase:55",
        }))

        assert FakeCompensationService.calls == [{
            "investorUserId": 7,
            "amount": "1000",
            "packageId": 1,
            "hasRobotAddon": True,
            "sourceEvent": "purchase:55",
        }]
        assert fake_processing.closed is True

    def test_missing_fields_skipped(self, fake_processing):
        asyncio.run(handlers.handle_investment_received({"investorUserId": 7, "amount": 10}))

        assert FakeCompensationService.calls == []

    def test_failure_reraised_and_session_closed(self, fake_processing):
        FakeCompensationService.error = RuntimeError("db down")

        with pytest.raises(RuntimeError):
            asyncio.run(handlers.handle_investment_received({
                "investorUserId": 7, "amount": 10, "packageId": 1,
            }))

        assert fake_processing.closed is True

    def test_delivered_through_bus(self, fake_processing):
        setup_compensation_event_handlers()

        delivered = asyncio.run(eventBus.emit(CompEvents.INVESTMENT_RECEIVED, {
            "investorUserId": 7, "amount": 10, "packageId": 1,
        }))

        assert delivered == 1
        assert FakeCompensationService.calls[0]["hasRobotAddon"] is False
