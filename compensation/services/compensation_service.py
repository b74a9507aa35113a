# compensation/services/compensation_service.py
"""
Per-investment orchestration: volume roll-up, level income, direct commission.
Matching bonus is not computed here; it runs at period close.
"""
from decimal import Decimal
from typing import Dict, Optional
from sqlalchemy.orm import Session
import logging

from compensation.interfaces import Ledger, PackageSettingsProvider, SponsorDirectory
from compensation.services.ledger_service import default_ledger
from compensation.services.level_income_service import LevelIncomeService
from compensation.services.volume_service import VolumeService

logger = logging.getLogger(__name__)


class CompensationService:
    """Entry point for a confirmed investment."""

    def __init__(
            self,
            session: Session,
            settingsProvider: Optional[PackageSettingsProvider] = None,
            sponsorDirectory: Optional[SponsorDirectory] = None,
            ledger: Optional[Ledger] = None
    ):
        self.session = session
        if settingsProvider is None:
            from compensation.services.settings_service import SettingsService
            settingsProvider = SettingsService(session)
        self.settingsProvider = settingsProvider

        ledger = ledger if ledger is not None else default_ledger(session)
        self.volumeService = VolumeService(session)
        self.levelIncomeService = LevelIncomeService(session, sponsorDirectory, ledger)

    async def processInvestment(
            self,
            investorUserId: int,
            amount,
            packageId: int,
            hasRobotAddon: bool = False,
            sourceEvent: Optional[str] = None
    ) -> Dict:
        """
        Process everything an investment triggers immediately.

        Steps:
        1. Resolve package, sponsor chain and direct sponsor
        2. Roll the amount up the binary tree (skipped if the user is not placed)
        3. Level income along the sponsor chain
        4. Direct commission to the immediate sponsor

        Every collaborator lookup happens in step 1, before anything is
        written, so a DependencyUnavailable leaves no volume behind and the
        caller can retry the whole investment.

        Raises:
            PackageNotFound / DependencyUnavailable / InvalidTreeState / ValueError
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError(f"Investment amount must be positive, got {amount}")

        package = self.settingsProvider.getPackage(packageId)

        if amount < package.minInvestment or amount > package.maxInvestment:
            logger.warning(
                f"Investment {amount} by user {investorUserId} outside package {packageId} "
                f"range {package.minInvestment}..{package.maxInvestment}"
            )

        source = sourceEvent or f"investment:{investorUserId}:{packageId}"

        # 1. Lookups
        levels = self.levelIncomeService.resolveLevelIncome(
            investorUserId, amount, package, hasRobotAddon
        )
        direct = self.levelIncomeService.resolveDirectCommission(
            investorUserId, amount, package, sourceEvent=source
        )

        # 2. Binary volume
        nodeId = await self.volumeService.recordInvestmentForUser(investorUserId, amount)

        # 3. Level income
        await self.levelIncomeService.payLevelIncome(
            investorUserId, amount, package, levels, sourceEvent=source
        )

        # 4. Direct commission
        self.levelIncomeService.payDirectCommission(investorUserId, direct)

        results = {
            "success": True,
            "investorUserId": investorUserId,
            "nodeId": nodeId,
            "levels": levels,
            "levelIncome": sum((r.amount for r in levels if r.disbursed), Decimal("0")),
            "directCommission": direct.amount if direct else Decimal("0"),
            "directSponsorId": direct.recipientUserId if direct else None,
        }

        logger.info(
            f"Processed investment {amount} by user {investorUserId}: "
            f"level income {results['levelIncome']}, direct {results['directCommission']}"
        )

        return results
