# compensation/services/simulation_service.py
"""
Income simulation - previews built from the same pure functions production uses.

No session, no ledger, no locks: safe to call at any time and from anywhere.
"""
from decimal import Decimal
from typing import Dict, Optional
import logging

from compensation.config.plan import validate_binary_settings, validate_package
from compensation.types import BinarySettings, MatchingBreakdown, Package, Period, SimulationResult
from compensation.utils.level_income import (
    calculate_binary_estimate,
    calculate_direct_commission,
    calculate_level_income,
    calculate_roi_projection,
)
from compensation.utils.matching import calculate_matching_bonus

logger = logging.getLogger(__name__)


class SimulationEngine:

    def simulate(
            self,
            package: Package,
            investmentAmount,
            hasRobotAddon: bool,
            settings: BinarySettings
    ) -> SimulationResult:
        """
        Full earnings preview for one investment.

        The matching preview pairs the investment against an equal opposite
        leg with fresh counters and no carry.

        Raises:
            ValueError: amount is not positive
            InvalidConfiguration: Package or settings invalid
        """
        amount = Decimal(str(investmentAmount))
        if amount <= 0:
            raise ValueError(f"Investment amount must be positive, got {amount}")
        validate_package(package)
        validate_binary_settings(settings)

        roi = calculate_roi_projection(amount, package)
        levels, totalLevelIncome, activeLevels = calculate_level_income(amount, package, hasRobotAddon)
        directCommission = calculate_direct_commission(amount, package)
        binaryBonus = calculate_binary_estimate(amount, package)

        result = SimulationResult(
            packageId=package.id,
            investment=amount,
            hasRobotAddon=hasRobotAddon,
            dailyRoi={"min": roi.dailyMin, "max": roi.dailyMax},
            totalReturn={"min": roi.totalMin, "max": roi.totalMax},
            directCommission=directCommission,
            levelCommissions=levels,
            totalLevelIncome=totalLevelIncome,
            binaryBonus=binaryBonus,
            totalEarnings=directCommission + totalLevelIncome + binaryBonus,
            activeLevels=activeLevels,
            matchingPreview=self.previewMatchingBonus(amount, amount, settings),
        )

        logger.debug(f"Simulated package {package.id} with {amount}: total {result.totalEarnings}")
        return result

    def previewMatchingBonus(
            self,
            leftVolume,
            rightVolume,
            settings: BinarySettings,
            carry=Decimal("0"),
            accumulated: Optional[Dict[Period, Decimal]] = None
    ) -> MatchingBreakdown:
        """What computeBonus would pay for these legs, without touching any state."""
        return calculate_matching_bonus(
            Decimal(str(leftVolume)),
            Decimal(str(rightVolume)),
            Decimal(str(carry)),
            settings,
            dict(accumulated or {}),
        )
