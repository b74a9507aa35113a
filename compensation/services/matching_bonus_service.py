# compensation/services/matching_bonus_service.py
"""
Binary matching bonus - per node, per period close.

Capping state lives in PeriodCounter rows (one per node and window), unpaid
lesser-leg volume in CarryForwardEntry rows. Both are read and written under
the node's row lock, so two computations for the same node serialize and
cannot overshoot a cap together.
"""
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Union
from sqlalchemy.orm import Session
from sqlalchemy import func, or_, select
import logging

from models.binary.binary_match import BinaryMatchRecord
from models.binary.binary_node import BinaryNode
from models.binary.carry_forward import CarryForwardEntry
from models.binary.period_counter import PeriodCounter
from compensation.config.plan import HUNDRED, validate_binary_settings
from compensation.errors import DependencyUnavailable, InvalidTreeState
from compensation.events.event_bus import eventBus, CompEvents
from compensation.interfaces import Ledger, PackageSettingsProvider
from compensation.services.ledger_service import append_to_ledger, default_ledger
from compensation.types import (
    BinarySettings,
    BonusResult,
    CommissionEntry,
    CommissionKind,
    Period,
)
from compensation.utils.matching import calculate_matching_bonus
from compensation.utils.periods import as_utc, is_boundary_crossed, period_start
from compensation.utils.time_machine import timeMachine
from compensation.utils.tree_store import TreeStore, LEFT, RIGHT

logger = logging.getLogger(__name__)


def _dec(value) -> Decimal:
    return Decimal(str(value if value is not None else 0))


class MatchingBonusService:
    """Service for binary matching bonus computation."""

    def __init__(
            self,
            session: Session,
            settingsProvider: Optional[PackageSettingsProvider] = None,
            ledger: Optional[Ledger] = None
    ):
        self.session = session
        self.tree = TreeStore(session)
        if settingsProvider is None:
            from compensation.services.settings_service import SettingsService
            settingsProvider = SettingsService(session)
        self.settingsProvider = settingsProvider
        self.ledger = ledger if ledger is not None else default_ledger(session)

    async def computeBonus(
            self,
            nodeId: int,
            period: Union[Period, str],
            settings: Optional[BinarySettings] = None
    ) -> BonusResult:
        """
        Compute and book the matching bonus for one node.

        Order of work: lock node -> roll expired counters -> take carry ->
        minimum check -> calculate -> consume unmatched legs -> match record ->
        replace or drop carry -> add payout to counters -> commit -> ledger -> event.

        A node whose lesser leg plus carry is under minMatchAmount is left
        untouched and the result has belowMinimum set.

        Args:
            nodeId: Binary node
            period: Period close that triggered the computation
            settings: Binary settings (loaded from the provider when omitted)

        Returns:
            BonusResult

        Raises:
            InvalidTreeState: Node missing
            InvalidConfiguration: Settings invalid
            DependencyUnavailable: Settings lookup failed
        """
        period = Period(period)
        if settings is None:
            settings = self.settingsProvider.getBinarySettings()
        validate_binary_settings(settings)

        now = timeMachine.now

        try:
            node = self.tree.lock_nodes([nodeId]).get(nodeId)
            if node is None:
                raise InvalidTreeState(f"Node {nodeId} not found", nodeId=nodeId)

            counters = self._lockCounters(nodeId, now)
            accumulated = {p: _dec(c.accumulatedPayout) for p, c in counters.items()}

            entry = self._lockCarry(nodeId)
            carry = Decimal("0")
            if entry is not None:
                if as_utc(entry.expiresAt) > now:
                    carry = _dec(entry.residualVolume)
                else:
                    logger.info(f"Carry-forward {entry.residualVolume} on node {nodeId} expired, dropped")

            leftUnmatched = _dec(node.leftUnmatched)
            rightUnmatched = _dec(node.rightUnmatched)

            lesser = min(leftUnmatched, rightUnmatched) + carry
            if lesser < settings.minMatchAmount:
                # Leave legs, carry and counters for a later run
                self.session.rollback()
                logger.debug(
                    f"Node {nodeId}: lesser {lesser} below minimum match {settings.minMatchAmount}"
                )
                return BonusResult(
                    nodeId=nodeId,
                    period=period,
                    payout=Decimal("0"),
                    residual=Decimal("0"),
                    carriedForward=carry > 0,
                    availableLesser=lesser,
                    belowMinimum=True,
                )

            breakdown = calculate_matching_bonus(
                leftUnmatched, rightUnmatched, carry, settings, accumulated
            )

            matched = min(leftUnmatched, rightUnmatched)
            node.leftUnmatched = leftUnmatched - matched
            node.rightUnmatched = rightUnmatched - matched

            if breakdown.availableLesser > 0:
                self.session.add(BinaryMatchRecord(
                    nodeID=nodeId,
                    userID=node.userID,
                    period=period.value,
                    leftBefore=leftUnmatched,
                    rightBefore=rightUnmatched,
                    leftAfter=node.leftUnmatched,
                    rightAfter=node.rightUnmatched,
                    matchedVolume=matched,
                    carryIn=carry,
                    payout=breakdown.payout,
                    percentage=settings.matchingBonusPercentage,
                    residual=breakdown.residual,
                    capped=breakdown.capped,
                    bindingWindow=breakdown.bindingWindow.value if breakdown.capped else None,
                    createdAt=now,
                ))

            if breakdown.payout > 0:
                paidVolume = breakdown.payout * HUNDRED / settings.matchingBonusPercentage
                node.matchedToDate = _dec(node.matchedToDate) + paidVolume
                node.lastMatchedAt = now

            carriedForward = settings.carryForwardEnabled and breakdown.residual > 0
            if carriedForward:
                leg = LEFT if leftUnmatched <= rightUnmatched else RIGHT
                if entry is None:
                    entry = CarryForwardEntry(nodeID=nodeId)
                    self.session.add(entry)
                entry.leg = leg
                entry.residualVolume = breakdown.residual
                entry.createdAt = now
                entry.expiresAt = now + timedelta(days=settings.maxCarryForwardDays)
            elif entry is not None:
                self.session.delete(entry)

            for counter in counters.values():
                counter.accumulatedPayout = _dec(counter.accumulatedPayout) + breakdown.payout

            userId = node.userID
            self.session.commit()

        except InvalidTreeState as e:
            self.session.rollback()
            logger.error(f"Matching for node {nodeId} halted: {e}", exc_info=True)
            raise
        except Exception:
            self.session.rollback()
            raise

        result = BonusResult(
            nodeId=nodeId,
            period=period,
            payout=breakdown.payout,
            residual=breakdown.residual,
            carriedForward=carriedForward,
            availableLesser=breakdown.availableLesser,
            rawBonus=breakdown.rawBonus,
            capped=breakdown.capped,
        )

        if breakdown.payout > 0:
            append_to_ledger(self.ledger, CommissionEntry(
                recipientUserId=userId,
                kind=CommissionKind.MATCHING_BONUS,
                amount=breakdown.payout,
                sourceEvent=f"binary_match:{period.value}:{nodeId}:{now.isoformat()}",
            ))

        logger.info(
            f"Matching node {nodeId} ({period.value}): lesser {breakdown.availableLesser}, "
            f"raw {breakdown.rawBonus}, payout {breakdown.payout}, residual {breakdown.residual}"
            f"{' carried' if carriedForward else ''}"
            f"{f' [cap {breakdown.bindingWindow.value}]' if breakdown.capped else ''}"
        )

        await eventBus.emit(CompEvents.BONUS_COMPUTED, {
            "nodeId": nodeId,
            "userId": userId,
            "period": period.value,
            "payout": result.payout,
            "residual": result.residual,
            "carriedForward": carriedForward,
            "capped": breakdown.capped,
        })

        return result

    def _lockCounters(self, nodeId: int, now) -> Dict[Period, PeriodCounter]:
        """Lock, lazily create and roll over the node's three window counters."""
        rows = (
            self.session.query(PeriodCounter)
            .filter_by(nodeID=nodeId)
            .populate_existing()
            .with_for_update()
            .all()
        )
        counters = {Period(c.period): c for c in rows}

        for period in Period:
            counter = counters.get(period)
            if counter is None:
                counter = PeriodCounter(
                    nodeID=nodeId,
                    period=period.value,
                    accumulatedPayout=Decimal("0"),
                    periodStart=period_start(period, now),
                )
                self.session.add(counter)
                counters[period] = counter
            elif is_boundary_crossed(period, counter.periodStart, now):
                counter.accumulatedPayout = Decimal("0")
                counter.periodStart = period_start(period, now)

        return counters

    def _lockCarry(self, nodeId: int) -> Optional[CarryForwardEntry]:
        return (
            self.session.query(CarryForwardEntry)
            .filter_by(nodeID=nodeId)
            .populate_existing()
            .with_for_update()
            .first()
        )

    # ============================================================
    # BATCH / SCHEDULED
    # ============================================================

    async def runMatchingForAll(
            self,
            period: Union[Period, str],
            settings: Optional[BinarySettings] = None
    ) -> Dict:
        """
        Period close: compute every node that has something to match.

        A broken node is reported in `errors` and skipped; a collaborator
        failure aborts the run.

        Nodes whose legs are under minMatchAmount are not selected, except
        those holding carry-forward (the carry may lift them over it).

        Returns:
            {"processed", "matched", "belowMinimum", "totalPayout", "errors"}
        """
        period = Period(period)
        if settings is None:
            settings = self.settingsProvider.getBinarySettings()

        carryNodes = select(CarryForwardEntry.nodeID)
        legsMatchable = (BinaryNode.leftUnmatched > 0) & (BinaryNode.rightUnmatched > 0)
        if settings.minMatchAmount > 0:
            legsMatchable = (
                legsMatchable
                & (BinaryNode.leftUnmatched >= settings.minMatchAmount)
                & (BinaryNode.rightUnmatched >= settings.minMatchAmount)
            )
        nodeIds = [
            row.nodeID for row in
            self.session.query(BinaryNode.nodeID)
            .filter(or_(legsMatchable, BinaryNode.nodeID.in_(carryNodes)))
            .order_by(BinaryNode.matchedToDate, BinaryNode.nodeID)
            .all()
        ]

        summary = {
            "processed": 0, "matched": 0, "belowMinimum": 0,
            "totalPayout": Decimal("0"), "errors": [],
        }
        logger.info(f"Matching run ({period.value}) started for {len(nodeIds)} nodes")

        for nodeId in nodeIds:
            summary["processed"] += 1
            try:
                result = await self.computeBonus(nodeId, period, settings)
            except InvalidTreeState as e:
                summary["errors"].append({"nodeId": nodeId, "error": str(e)})
                continue
            except DependencyUnavailable:
                logger.error(f"Matching run ({period.value}) aborted at node {nodeId}")
                raise

            if result.belowMinimum:
                summary["belowMinimum"] += 1
            if result.payout > 0:
                summary["matched"] += 1
                summary["totalPayout"] += result.payout

        logger.info(
            f"Matching run ({period.value}) done: {summary['matched']}/{summary['processed']} "
            f"matched, total {summary['totalPayout']}, {len(summary['errors'])} errors"
        )
        return summary

    async def resetExpiredPeriods(self) -> int:
        """
        Scheduled rollover: zero every counter whose window has closed.

        Uses the same row locks as computeBonus.

        Returns:
            Number of counters reset
        """
        now = timeMachine.now
        reset = 0

        try:
            counters = (
                self.session.query(PeriodCounter)
                .order_by(PeriodCounter.nodeID, PeriodCounter.counterID)
                .populate_existing()
                .with_for_update()
                .all()
            )
            for counter in counters:
                period = Period(counter.period)
                if is_boundary_crossed(period, counter.periodStart, now):
                    counter.accumulatedPayout = Decimal("0")
                    counter.periodStart = period_start(period, now)
                    reset += 1
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"Period rollover failed: {e}", exc_info=True)
            raise

        if reset:
            logger.info(f"Period rollover: {reset} counters reset")
            await eventBus.emit(CompEvents.PERIOD_RESET, {"reset": reset, "at": now})
        return reset

    async def purgeExpiredCarryForward(self) -> int:
        """Drop carry-forward entries past their expiry. Returns number removed."""
        now = timeMachine.now
        removed = 0

        try:
            entries = (
                self.session.query(CarryForwardEntry)
                .order_by(CarryForwardEntry.nodeID)
                .with_for_update()
                .all()
            )
            for entry in entries:
                if as_utc(entry.expiresAt) <= now:
                    self.session.delete(entry)
                    removed += 1
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"Carry-forward purge failed: {e}", exc_info=True)
            raise

        if removed:
            logger.info(f"Purged {removed} expired carry-forward entries")
        return removed

    # ============================================================
    # STATS
    # ============================================================

    def getNodeStats(self, nodeId: int, settings: Optional[BinarySettings] = None) -> Dict:
        """Volumes, matchable amount and window usage for one node."""
        node = self.tree.require_node(nodeId)
        if settings is None:
            settings = self.settingsProvider.getBinarySettings()

        now = timeMachine.now
        entry = self.session.query(CarryForwardEntry).filter_by(nodeID=nodeId).first()
        carry = _dec(entry.residualVolume) if entry and as_utc(entry.expiresAt) > now else Decimal("0")

        payouts = {}
        for counter in self.session.query(PeriodCounter).filter_by(nodeID=nodeId).all():
            period = Period(counter.period)
            expired = is_boundary_crossed(period, counter.periodStart, now)
            payouts[period.value] = Decimal("0") if expired else _dec(counter.accumulatedPayout)

        matchable = min(_dec(node.leftUnmatched), _dec(node.rightUnmatched)) + carry

        totalMatches, totalPayout = (
            self.session.query(func.count(BinaryMatchRecord.matchID), func.sum(BinaryMatchRecord.payout))
            .filter(BinaryMatchRecord.nodeID == nodeId)
            .one()
        )

        return {
            "nodeId": node.nodeID,
            "userId": node.userID,
            "leftVolume": _dec(node.leftVolume),
            "rightVolume": _dec(node.rightVolume),
            "leftUnmatched": _dec(node.leftUnmatched),
            "rightUnmatched": _dec(node.rightUnmatched),
            "carryForward": carry,
            "matchableVolume": matchable,
            "potentialPayout": matchable * settings.matchingBonusPercentage / HUNDRED,
            "matchedToDate": _dec(node.matchedToDate),
            "lastMatchedAt": node.lastMatchedAt,
            "periodPayouts": payouts,
            "totalMatches": int(totalMatches or 0),
            "totalMatchPayout": _dec(totalPayout),
        }

    def getMatchHistory(self, nodeId: int, limit: int = 50, offset: int = 0) -> List[Dict]:
        """Match records for a node, newest first."""
        rows = (
            self.session.query(BinaryMatchRecord)
            .filter_by(nodeID=nodeId)
            .order_by(BinaryMatchRecord.createdAt.desc(), BinaryMatchRecord.matchID.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )
        return [
            {
                "matchId": row.matchID,
                "period": row.period,
                "matchedVolume": _dec(row.matchedVolume),
                "carryIn": _dec(row.carryIn),
                "leftBefore": _dec(row.leftBefore),
                "rightBefore": _dec(row.rightBefore),
                "leftAfter": _dec(row.leftAfter),
                "rightAfter": _dec(row.rightAfter),
                "payout": _dec(row.payout),
                "percentage": _dec(row.percentage),
                "residual": _dec(row.residual),
                "capped": bool(row.capped),
                "bindingWindow": row.bindingWindow,
                "createdAt": row.createdAt,
            }
            for row in rows
        ]
