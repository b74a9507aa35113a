# compensation/events/handlers.py
"""
Event handlers for the compensation core.
"""
import logging
from typing import Dict, Any

from core.db import get_session
from compensation.services.compensation_service import CompensationService

logger = logging.getLogger(__name__)


async def handle_investment_received(data: Dict[str, Any]):
    """
    Handle INVESTMENT_RECEIVED event.

    Args:
        data: {"investorUserId", "amount", "packageId", "hasRobotAddon", "sourceEvent"?}
    """
    investor_id = data.get("investorUserId")
    amount = data.get("amount")
    package_id = data.get("packageId")

    if investor_id is None or amount is None or package_id is None:
        logger.error(f"INVESTMENT_RECEIVED event missing fields: {data}")
        return

    logger.info(f"Processing compensation for investment by user {investor_id}")

    session = get_session()

    try:
        service = CompensationService(session)
        await service.processInvestment(
            investor_id,
            amount,
            package_id,
            hasRobotAddon=bool(data.get("hasRobotAddon", False)),
            sourceEvent=data.get("sourceEvent"),
        )
    except Exception as e:
        logger.error(
            f"Error processing compensation for investment by user {investor_id}: {e}",
            exc_info=True
        )
        raise
    finally:
        session.close()
