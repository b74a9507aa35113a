# compensation/events/event_bus.py
"""
In-process event bus for compensation domain events.
Collaborators (UI, reporting) subscribe; the core only publishes.
"""
import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class CompEvents:
    """Event names published by the core."""
    NODE_PLACED = "node.placed"
    VOLUME_RECORDED = "volume.recorded"
    BONUS_COMPUTED = "bonus.computed"
    LEVEL_INCOME_COMPUTED = "level_income.computed"
    PERIOD_RESET = "period.reset"

    # Consumed: a confirmed investment waiting for compensation processing
    INVESTMENT_RECEIVED = "investment.received"


class EventBus:
    """
    Simple publish/subscribe bus.

    Handlers may be plain functions or coroutines. A failing handler is
    logged and does not affect the publisher or the other handlers.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)

    def subscribe(self, event: str, handler: Callable[[Dict[str, Any]], Any]):
        if handler not in self._handlers[event]:
            self._handlers[event].append(handler)
            logger.debug(f"Subscribed {getattr(handler, '__name__', handler)} to {event}")

    def unsubscribe(self, event: str, handler: Callable[[Dict[str, Any]], Any]):
        if handler in self._handlers.get(event, []):
            self._handlers[event].remove(handler)
            logger.debug(f"Unsubscribed {getattr(handler, '__name__', handler)} from {event}")

    def handlers(self, event: str) -> List[Callable]:
        return list(self._handlers.get(event, []))

    def clear(self):
        self._handlers.clear()

    async def emit(self, event: str, data: Dict[str, Any]) -> int:
        """
        Deliver event to every subscriber in subscription order.

        Returns:
            Number of handlers that completed without error
        """
        delivered = 0

        for handler in self.handlers(event):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Handler {getattr(handler, '__name__', handler)} failed for {event}: {e}",
                    exc_info=True
                )

        return delivered


eventBus = EventBus()
