# compensation/utils/level_income.py
"""
Pure level income, direct commission and ROI arithmetic.

Figures are exact Decimal products; rounding for display is left to callers.
"""
from decimal import Decimal
from typing import List, Tuple

from compensation.config.plan import FREE_LEVELS, HUNDRED, ROI_MAX_MULTIPLIER
from compensation.types import LevelResult, LevelStatus, Package, RoiProjection


def active_levels(package: Package, hasRobotAddon: bool) -> int:
    """Levels that pay out: all of them with the robot add-on, else the free ones."""
    if hasRobotAddon:
        return package.levelDepth
    return min(FREE_LEVELS, package.levelDepth)


def calculate_level_income(
        investmentAmount: Decimal,
        package: Package,
        hasRobotAddon: bool
) -> Tuple[List[LevelResult], Decimal, int]:
    """
    Level table for one investment.

    `cumulative` runs over every level, locked ones included; the returned
    total only counts active levels.

    Returns:
        (levels, totalLevelIncome, activeLevels)
    """
    unlocked = active_levels(package, hasRobotAddon)

    levels = []
    cumulative = Decimal("0")
    total = Decimal("0")

    for level in range(1, package.levelDepth + 1):
        pct = package.levelPercentage(level)
        amount = investmentAmount * pct / HUNDRED
        cumulative += amount

        status = LevelStatus.ACTIVE if level <= unlocked else LevelStatus.LOCKED
        if status == LevelStatus.ACTIVE:
            total += amount

        levels.append(LevelResult(
            level=level,
            percentage=pct,
            amount=amount,
            cumulative=cumulative,
            status=status,
        ))

    return levels, total, unlocked


def calculate_direct_commission(investmentAmount: Decimal, package: Package) -> Decimal:
    return investmentAmount * package.directCommissionPercentage / HUNDRED


def calculate_binary_estimate(investmentAmount: Decimal, package: Package) -> Decimal:
    """Illustrative binary figure for previews; not reconciled with matching."""
    return investmentAmount * package.binaryBonusPercentage / HUNDRED


def calculate_roi_projection(investmentAmount: Decimal, package: Package) -> RoiProjection:
    """Daily return range (base to +40%) and totals over the package duration."""
    dailyMin = investmentAmount * package.dailyReturnPercentage / HUNDRED
    dailyMax = investmentAmount * package.dailyReturnPercentage * ROI_MAX_MULTIPLIER / HUNDRED

    return RoiProjection(
        dailyMin=dailyMin,
        dailyMax=dailyMax,
        totalMin=dailyMin * package.durationDays,
        totalMax=dailyMax * package.durationDays,
    )
