# compensation/utils/matching.py
"""
Pure matching bonus arithmetic.

Shared by MatchingBonusService (production) and SimulationEngine (preview),
so both produce identical numbers for identical inputs.
"""
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Optional

from compensation.config.plan import HUNDRED, VOLUME_QUANT
from compensation.types import BinarySettings, MatchingBreakdown, Period

ZERO = Decimal("0")


def remaining_room(settings: BinarySettings, accumulated: Dict[Period, Decimal]) -> Dict[Period, Decimal]:
    """
    Headroom left in every enabled cap window.

    A cap of 0 disables the window, so it does not appear in the result.
    """
    room = {}
    for period in Period:
        cap = settings.capFor(period)
        if cap <= 0:
            continue
        room[period] = max(cap - accumulated.get(period, ZERO), ZERO)
    return room


def calculate_matching_bonus(
        leftVolume: Decimal,
        rightVolume: Decimal,
        carry: Decimal,
        settings: BinarySettings,
        accumulated: Optional[Dict[Period, Decimal]] = None
) -> MatchingBreakdown:
    """
    Matching bonus for one node.

    Args:
        leftVolume: Unmatched left leg volume
        rightVolume: Unmatched right leg volume
        carry: Unexpired carry-forward volume (0 when none)
        settings: Binary settings in force
        accumulated: Payout already made in the current window per period

    Returns:
        MatchingBreakdown. The payout is exact; the residual is the
        volume a binding cap left unpaid (0 when no window binds)
    """
    accumulated = accumulated or {}
    pct = settings.matchingBonusPercentage

    availableLesser = min(leftVolume, rightVolume) + carry
    rawBonus = availableLesser * pct / HUNDRED

    payout = rawBonus
    bindingWindow = None

    if settings.cappingEnabled:
        # Tightest window wins; ties resolve to the shorter window
        for period, room in remaining_room(settings, accumulated).items():
            if room < payout:
                payout = room
                bindingWindow = period

    residual = ZERO
    if bindingWindow is not None and pct > 0:
        # Volume left unpaid by the cap; stored at DECIMAL(18,4) scale
        residual = availableLesser - payout * HUNDRED / pct
        residual = max(residual, ZERO).quantize(VOLUME_QUANT, rounding=ROUND_DOWN)

    residualBonus = residual * pct / HUNDRED

    return MatchingBreakdown(
        leftVolume=leftVolume,
        rightVolume=rightVolume,
        carryIn=carry,
        availableLesser=availableLesser,
        rawBonus=rawBonus,
        payout=payout,
        residual=residual,
        residualBonus=residualBonus,
        capped=bindingWindow is not None,
        bindingWindow=bindingWindow,
    )
