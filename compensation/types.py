# compensation/types.py
"""
Value types shared by the services and the pure calculators.
"""
import json
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Position(Enum):
    """Slot of a node relative to its parent."""
    LEFT = "left"
    RIGHT = "right"
    ROOT = "root"


class SpilloverRule(Enum):
    AUTO = "auto"
    MANUAL = "manual"


class PlacementPriority(Enum):
    LEFT = "left"
    RIGHT = "right"
    WEAKER_LEG = "weaker-leg"
    BALANCED = "balanced"


class Period(Enum):
    """Cap window granularity."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class LevelStatus(Enum):
    ACTIVE = "active"
    LOCKED = "locked"


class CommissionKind(Enum):
    MATCHING_BONUS = "matching_bonus"
    LEVEL_INCOME = "level_income"
    DIRECT_COMMISSION = "direct_commission"


@dataclass(frozen=True)
class BinarySettings:
    """
    Admin-mutable binary plan settings.

    A cap of 0 disables that window. `version` is bumped by the settings
    collaborator on every write.
    """
    spilloverEnabled: bool = True
    spilloverRule: SpilloverRule = SpilloverRule.AUTO
    placementPriority: PlacementPriority = PlacementPriority.WEAKER_LEG
    cappingEnabled: bool = True
    dailyCap: Decimal = Decimal("5000")
    weeklyCap: Decimal = Decimal("30000")
    monthlyCap: Decimal = Decimal("100000")
    matchingBonusPercentage: Decimal = Decimal("10")
    carryForwardEnabled: bool = True
    maxCarryForwardDays: int = 30
    # Lesser leg (plus carry) below this is left for a later run
    minMatchAmount: Decimal = Decimal("0")
    version: int = 0

    def capFor(self, period: Period) -> Decimal:
        return {
            Period.DAY: self.dailyCap,
            Period.WEEK: self.weeklyCap,
            Period.MONTH: self.monthlyCap,
        }[period]


@dataclass(frozen=True)
class Package:
    """Investment package as seen by the core."""
    id: int
    name: str
    minInvestment: Decimal
    maxInvestment: Decimal
    dailyReturnPercentage: Decimal
    durationDays: int
    directCommissionPercentage: Decimal
    binaryBonusPercentage: Decimal
    levelDepth: int
    # Index 0 holds level 1
    levelPercentages: Tuple[Decimal, ...] = ()

    def levelPercentage(self, level: int) -> Decimal:
        """Commission percentage for 1-based `level` (0 when not configured)."""
        if 1 <= level <= len(self.levelPercentages):
            return self.levelPercentages[level - 1]
        return Decimal("0")


@dataclass(frozen=True)
class LevelResult:
    level: int
    percentage: Decimal
    amount: Decimal
    cumulative: Decimal
    status: LevelStatus
    recipientUserId: Optional[int] = None
    disbursed: bool = False


@dataclass(frozen=True)
class MatchingBreakdown:
    """Pure matching computation output (no state)."""
    leftVolume: Decimal
    rightVolume: Decimal
    carryIn: Decimal
    availableLesser: Decimal
    rawBonus: Decimal
    payout: Decimal
    residual: Decimal
    residualBonus: Decimal
    capped: bool
    bindingWindow: Optional[Period] = None


@dataclass(frozen=True)
class BonusResult:
    nodeId: int
    period: Period
    payout: Decimal
    residual: Decimal
    carriedForward: bool
    availableLesser: Decimal = Decimal("0")
    rawBonus: Decimal = Decimal("0")
    capped: bool = False
    # Nothing matched: lesser leg plus carry under minMatchAmount
    belowMinimum: bool = False


@dataclass(frozen=True)
class RoiProjection:
    dailyMin: Decimal
    dailyMax: Decimal
    totalMin: Decimal
    totalMax: Decimal


@dataclass(frozen=True)
class CommissionEntry:
    """Ledger append payload."""
    recipientUserId: int
    kind: CommissionKind
    amount: Decimal
    sourceEvent: str
    level: Optional[int] = None


@dataclass(frozen=True)
class SimulationResult:
    packageId: int
    investment: Decimal
    hasRobotAddon: bool
    dailyRoi: Dict[str, Decimal]
    totalReturn: Dict[str, Decimal]
    directCommission: Decimal
    levelCommissions: List[LevelResult] = field(default_factory=list)
    totalLevelIncome: Decimal = Decimal("0")
    binaryBonus: Decimal = Decimal("0")
    totalEarnings: Decimal = Decimal("0")
    activeLevels: int = 0
    matchingPreview: Optional[MatchingBreakdown] = None

    def to_dict(self) -> Dict:
        return _plain(asdict(self))

    def to_json(self) -> str:
        """Deterministic serialization: identical inputs give identical bytes."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))


def _plain(value):
    """Convert Decimals/Enums to JSON-safe primitives, preserving order."""
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value
