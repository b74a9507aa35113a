# compensation/services/level_income_service.py
"""
Level (unilevel) income along the sponsor chain, plus the direct commission.
The binary tree plays no part here.
"""
from dataclasses import replace
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.orm import Session
import logging

from compensation.config.plan import validate_package
from compensation.events.event_bus import eventBus, CompEvents
from compensation.interfaces import Ledger, SponsorDirectory
from compensation.services.ledger_service import append_to_ledger, default_ledger
from compensation.types import CommissionEntry, CommissionKind, LevelResult, LevelStatus, Package
from compensation.utils.chain_walker import ChainWalker
from compensation.utils.level_income import calculate_direct_commission, calculate_level_income

logger = logging.getLogger(__name__)


def _positive(value) -> Decimal:
    amount = Decimal(str(value))
    if amount <= 0:
        raise ValueError(f"Investment amount must be positive, got {amount}")
    return amount


class LevelIncomeService:
    """Service for level income and direct commission."""

    def __init__(
            self,
            session: Session,
            sponsorDirectory: Optional[SponsorDirectory] = None,
            ledger: Optional[Ledger] = None
    ):
        self.session = session
        if sponsorDirectory is None:
            from compensation.services.sponsor_directory import DatabaseSponsorDirectory
            sponsorDirectory = DatabaseSponsorDirectory(session)
        self.sponsorDirectory = sponsorDirectory
        self.ledger = ledger if ledger is not None else default_ledger(session)

    async def computeLevelIncome(
            self,
            investorId: int,
            investmentAmount,
            package: Package,
            hasRobotAddon: bool,
            disburse: bool = True,
            sourceEvent: Optional[str] = None
    ) -> List[LevelResult]:
        """
        Level table for an investment, paid to the sponsor chain.

        Every configured level is returned. Locked levels and levels with no
        sponsor that far up are listed but never disbursed.

        Args:
            investorId: Investing user
            investmentAmount: Investment amount
            package: Package the investment was made in
            hasRobotAddon: Unlocks levels beyond the free ones
            disburse: Append ledger entries for payable levels
            sourceEvent: Reference stored on ledger entries

        Raises:
            ValueError: amount is not positive
            InvalidTreeState: Sponsor chain cycle
            InvalidConfiguration: Package invalid
            DependencyUnavailable: Sponsor lookup failed
        """
        results = self.resolveLevelIncome(investorId, investmentAmount, package, hasRobotAddon, disburse)
        await self.payLevelIncome(investorId, investmentAmount, package, results, sourceEvent)
        return results

    def resolveLevelIncome(
            self,
            investorId: int,
            investmentAmount,
            package: Package,
            hasRobotAddon: bool,
            disburse: bool = True
    ) -> List[LevelResult]:
        """Level table with recipients looked up. Nothing is written."""
        amount = _positive(investmentAmount)
        validate_package(package)

        levels, _, _ = calculate_level_income(amount, package, hasRobotAddon)

        chain = ChainWalker(self.sponsorDirectory).get_upline_chain(investorId, max_depth=package.levelDepth)

        results = []
        for row in levels:
            recipient = chain[row.level - 1] if row.level <= len(chain) else None
            payable = (
                disburse
                and recipient is not None
                and row.status == LevelStatus.ACTIVE
                and row.amount > 0
            )
            results.append(replace(row, recipientUserId=recipient, disbursed=payable))

        return results

    async def payLevelIncome(
            self,
            investorId: int,
            investmentAmount,
            package: Package,
            results: List[LevelResult],
            sourceEvent: Optional[str] = None
    ) -> int:
        """Ledger entries for the disbursed rows of a resolved table. Returns how many."""
        amount = Decimal(str(investmentAmount))
        source = sourceEvent or f"investment:{investorId}:{package.id}"

        disbursed = 0
        for row in results:
            if row.disbursed:
                append_to_ledger(self.ledger, CommissionEntry(
                    recipientUserId=row.recipientUserId,
                    kind=CommissionKind.LEVEL_INCOME,
                    amount=row.amount,
                    sourceEvent=source,
                    level=row.level,
                ))
                disbursed += 1

        active = [r for r in results if r.status == LevelStatus.ACTIVE]
        totalLevelIncome = sum((r.amount for r in active), Decimal("0"))
        reached = sum(1 for r in results if r.recipientUserId is not None)

        logger.info(
            f"Level income for investor {investorId}: {amount} in package {package.id}, "
            f"{len(active)}/{package.levelDepth} levels active, total {totalLevelIncome}, "
            f"{disbursed} disbursed (chain length {reached})"
        )

        await eventBus.emit(CompEvents.LEVEL_INCOME_COMPUTED, {
            "investorId": investorId,
            "packageId": package.id,
            "amount": amount,
            "totalLevelIncome": totalLevelIncome,
            "activeLevels": len(active),
            "disbursed": disbursed,
        })

        return disbursed

    async def computeDirectCommission(
            self,
            investorId: int,
            investmentAmount,
            package: Package,
            disburse: bool = True,
            sourceEvent: Optional[str] = None
    ) -> Optional[CommissionEntry]:
        """
        Direct commission for the investor's immediate sponsor.

        Returns:
            The commission entry, or None when the investor has no sponsor
        """
        entry = self.resolveDirectCommission(investorId, investmentAmount, package, sourceEvent)
        if disburse:
            self.payDirectCommission(investorId, entry)
        return entry

    def resolveDirectCommission(
            self,
            investorId: int,
            investmentAmount,
            package: Package,
            sourceEvent: Optional[str] = None
    ) -> Optional[CommissionEntry]:
        amount = _positive(investmentAmount)

        sponsorId = self.sponsorDirectory.getSponsor(investorId)
        if sponsorId is None:
            logger.debug(f"Investor {investorId} has no sponsor, no direct commission")
            return None

        return CommissionEntry(
            recipientUserId=sponsorId,
            kind=CommissionKind.DIRECT_COMMISSION,
            amount=calculate_direct_commission(amount, package),
            sourceEvent=sourceEvent or f"investment:{investorId}:{package.id}",
        )

    def payDirectCommission(self, investorId: int, entry: Optional[CommissionEntry]) -> None:
        if entry is None or entry.amount <= 0:
            return
        append_to_ledger(self.ledger, entry)
        logger.info(f"Direct commission {entry.amount} to sponsor {entry.recipientUserId} of investor {investorId}")
