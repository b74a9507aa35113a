# compensation/events/setup.py
"""
Register compensation event handlers with the event bus.
"""
import logging

from compensation.events.event_bus import eventBus, CompEvents
from compensation.events.handlers import handle_investment_received

logger = logging.getLogger(__name__)


def setup_compensation_event_handlers():
    """Call once at process start."""
    logger.info("Setting up compensation event handlers...")

    eventBus.subscribe(CompEvents.INVESTMENT_RECEIVED, handle_investment_received)
    logger.debug(f"Registered handler for {CompEvents.INVESTMENT_RECEIVED}")

    logger.info("Compensation event handlers registered successfully")


def teardown_compensation_event_handlers():
    """
    Unregister all compensation event handlers.
    Useful for testing or shutdown.
    """
    logger.info("Tearing down compensation event handlers...")

    eventBus.unsubscribe(CompEvents.INVESTMENT_RECEIVED, handle_investment_received)

    logger.info("Compensation event handlers unregistered")
