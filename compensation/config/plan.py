"""
Compensation plan constants and settings validation.
"""
from decimal import Decimal
import logging

from compensation.errors import InvalidConfiguration
from compensation.types import (
    BinarySettings,
    Package,
    PlacementPriority,
    SpilloverRule,
)

logger = logging.getLogger(__name__)

# Constants (these can stay hardcoded as they don't change)
FREE_LEVELS = 5  # Levels unlocked without the robot add-on
MAX_LEVEL_DEPTH = 30
ROI_MAX_MULTIPLIER = Decimal("1.4")  # 40% variance on the daily return
VOLUME_QUANT = Decimal("0.0001")  # DECIMAL(18,4) storage scale
HUNDRED = Decimal("100")


def validate_binary_settings(settings: BinarySettings, strict: bool = False) -> BinarySettings:
    """
    Fail fast on settings that should never have been stored.

    Args:
        settings: Settings to check
        strict: Also reject cap ordering violations (write-time validation)

    Returns:
        The same settings

    Raises:
        InvalidConfiguration: On any invalid value
    """
    if not isinstance(settings.spilloverRule, SpilloverRule):
        raise InvalidConfiguration(f"Unknown spilloverRule: {settings.spilloverRule!r}")

    if not isinstance(settings.placementPriority, PlacementPriority):
        raise InvalidConfiguration(f"Unknown placementPriority: {settings.placementPriority!r}")

    pct = settings.matchingBonusPercentage
    if pct < 0 or pct > HUNDRED:
        raise InvalidConfiguration(f"matchingBonusPercentage out of range: {pct}")

    for name in ("dailyCap", "weeklyCap", "monthlyCap"):
        if getattr(settings, name) < 0:
            raise InvalidConfiguration(f"{name} must be >= 0, got {getattr(settings, name)}")

    if settings.maxCarryForwardDays < 0:
        raise InvalidConfiguration(
            f"maxCarryForwardDays must be >= 0, got {settings.maxCarryForwardDays}"
        )

    if settings.minMatchAmount < 0:
        raise InvalidConfiguration(f"minMatchAmount must be >= 0, got {settings.minMatchAmount}")

    if settings.cappingEnabled:
        daily, weekly, monthly = settings.dailyCap, settings.weeklyCap, settings.monthlyCap

        if daily and monthly and daily > monthly:
            raise InvalidConfiguration(f"dailyCap {daily} exceeds monthlyCap {monthly}")

        violations = []
        if daily and weekly and daily > weekly:
            violations.append(f"dailyCap {daily} > weeklyCap {weekly}")
        if weekly and monthly and weekly > monthly:
            violations.append(f"weeklyCap {weekly} > monthlyCap {monthly}")

        if violations:
            if strict:
                raise InvalidConfiguration("; ".join(violations))
            logger.warning(f"Cap hierarchy not respected: {'; '.join(violations)}")

    return settings


def validate_package(package: Package) -> Package:
    """
    Reject packages the settings collaborator should have refused.

    Raises:
        InvalidConfiguration: On any invalid value
    """
    if package.minInvestment >= package.maxInvestment:
        raise InvalidConfiguration(
            f"Package {package.id}: minInvestment {package.minInvestment} "
            f">= maxInvestment {package.maxInvestment}"
        )

    if not 1 <= package.levelDepth <= MAX_LEVEL_DEPTH:
        raise InvalidConfiguration(
            f"Package {package.id}: levelDepth {package.levelDepth} not in 1..{MAX_LEVEL_DEPTH}"
        )

    if len(package.levelPercentages) > package.levelDepth:
        raise InvalidConfiguration(
            f"Package {package.id}: {len(package.levelPercentages)} level percentages "
            f"for levelDepth {package.levelDepth}"
        )

    if package.durationDays <= 0:
        raise InvalidConfiguration(f"Package {package.id}: durationDays must be positive")

    percentages = [
        ("dailyReturnPercentage", package.dailyReturnPercentage),
        ("directCommissionPercentage", package.directCommissionPercentage),
        ("binaryBonusPercentage", package.binaryBonusPercentage),
    ] + [
        (f"level {i}", pct) for i, pct in enumerate(package.levelPercentages, start=1)
    ]
    for name, pct in percentages:
        if pct < 0 or pct > HUNDRED:
            raise InvalidConfiguration(f"Package {package.id}: {name} percentage out of range: {pct}")

    return package
