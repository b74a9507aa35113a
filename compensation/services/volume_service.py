# compensation/services/volume_service.py
"""
Volume aggregation - rolls investment amounts up the binary tree.
"""
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
import logging

from models.binary.binary_node import BinaryNode
from compensation.errors import InvalidTreeState
from compensation.events.event_bus import eventBus, CompEvents
from compensation.utils.tree_store import TreeStore, LEFT

logger = logging.getLogger(__name__)

AGGREGATE_FIELDS = ("leftVolume", "rightVolume", "leftCount", "rightCount")


def _dec(value) -> Decimal:
    return Decimal(str(value if value is not None else 0))


class VolumeService:
    """Service for binary leg volume updates and their consistency."""

    def __init__(self, session: Session):
        self.session = session
        self.tree = TreeStore(session)

    async def recordInvestment(self, nodeId: int, amount) -> None:
        """
        Add an investment to a node and to the matching leg of every ancestor.

        The whole ancestor path is locked (ascending id order) and updated in
        one transaction; nothing is committed if any step fails.

        Raises:
            ValueError: amount is not positive
            InvalidTreeState: Cycle, orphan or dangling reference on the path
        """
        amount = _dec(amount)
        if amount <= 0:
            raise ValueError(f"Investment amount must be positive, got {amount}")

        try:
            node = self.tree.require_node(nodeId)
            path = self.tree.walk_ancestors(node)

            locked = self.tree.lock_nodes([nodeId] + [a.nodeID for a, _ in path])
            node = locked[nodeId]
            node.personalVolume = _dec(node.personalVolume) + amount

            for ancestor, side in path:
                ancestor = locked[ancestor.nodeID]
                if side == LEFT:
                    ancestor.leftVolume = _dec(ancestor.leftVolume) + amount
                    ancestor.leftUnmatched = _dec(ancestor.leftUnmatched) + amount
                else:
                    ancestor.rightVolume = _dec(ancestor.rightVolume) + amount
                    ancestor.rightUnmatched = _dec(ancestor.rightUnmatched) + amount

            event = {
                "nodeId": nodeId,
                "userId": node.userID,
                "amount": amount,
                "ancestorsUpdated": len(path),
            }
            self.session.commit()

        except InvalidTreeState as e:
            self.session.rollback()
            logger.error(f"Volume for node {nodeId} not recorded: {e}", exc_info=True)
            raise
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Recorded {amount} on node {nodeId}, {len(path)} ancestors updated")
        await eventBus.emit(CompEvents.VOLUME_RECORDED, event)

    async def recordInvestmentForUser(self, userId: int, amount) -> Optional[int]:
        """
        Same as recordInvestment, addressed by user.

        Returns:
            nodeID, or None when the user has no binary node yet
        """
        if _dec(amount) <= 0:
            raise ValueError(f"Investment amount must be positive, got {amount}")

        node = self.tree.get_node_by_user(userId)
        if node is None:
            logger.warning(f"User {userId} has no binary node, volume not recorded")
            return None

        await self.recordInvestment(node.nodeID, amount)
        return node.nodeID

    # ============================================================
    # CONSISTENCY
    # ============================================================

    async def checkConsistency(self, nodeId: Optional[int] = None) -> List[Dict]:
        """
        Compare stored leg aggregates with a full recompute.

        Args:
            nodeId: Restrict the report to this node's subtree

        Returns:
            List of mismatches: {"nodeId", "field", "stored", "expected"}

        Raises:
            InvalidTreeState: Structure itself is broken (cycle, orphan, ...)
        """
        expected = self.tree.compute_aggregates()

        if nodeId is not None:
            nodes = list(self.tree.iter_subtree(nodeId))
        else:
            nodes = list(self.tree.load_arena().values())

        mismatches = []
        for node in nodes:
            want = expected[node.nodeID]
            for field in AGGREGATE_FIELDS:
                stored = getattr(node, field) or 0
                if field.endswith("Volume"):
                    stored = _dec(stored)
                if stored != want[field]:
                    mismatches.append({
                        "nodeId": node.nodeID,
                        "field": field,
                        "stored": stored,
                        "expected": want[field],
                    })

            for leg in ("left", "right"):
                unmatched = _dec(getattr(node, f"{leg}Unmatched"))
                if unmatched < 0 or unmatched > want[f"{leg}Volume"]:
                    mismatches.append({
                        "nodeId": node.nodeID,
                        "field": f"{leg}Unmatched",
                        "stored": unmatched,
                        "expected": f"0..{want[f'{leg}Volume']}",
                    })

        if mismatches:
            logger.warning(f"Consistency check found {len(mismatches)} mismatches")
        return mismatches

    async def assertConsistent(self, nodeId: Optional[int] = None) -> None:
        """Raise InvalidTreeState when stored aggregates disagree with a recompute."""
        mismatches = await self.checkConsistency(nodeId)
        if mismatches:
            first = mismatches[0]
            raise InvalidTreeState(
                f"{len(mismatches)} aggregate mismatches, first: node {first['nodeId']} "
                f"{first['field']} stored {first['stored']} expected {first['expected']}",
                nodeId=first["nodeId"]
            )

    async def rebuildAggregates(self) -> int:
        """
        Repair leg volumes and counts from personalVolume.

        Unmatched legs are clamped into [0, volume]; matching history is kept.

        Returns:
            Number of nodes changed
        """
        try:
            expected = self.tree.compute_aggregates()
            locked = self.tree.lock_nodes(expected.keys())

            changed = 0
            for nodeId, want in expected.items():
                node: BinaryNode = locked[nodeId]
                dirty = False

                for field in AGGREGATE_FIELDS:
                    current = getattr(node, field) or 0
                    if field.endswith("Volume"):
                        current = _dec(current)
                    if current != want[field]:
                        setattr(node, field, want[field])
                        dirty = True

                for leg in ("left", "right"):
                    unmatched = _dec(getattr(node, f"{leg}Unmatched"))
                    clamped = min(max(unmatched, Decimal("0")), want[f"{leg}Volume"])
                    if clamped != unmatched:
                        setattr(node, f"{leg}Unmatched", clamped)
                        dirty = True

                if dirty:
                    changed += 1

            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"Aggregate rebuild failed: {e}", exc_info=True)
            raise

        logger.info(f"Aggregate rebuild finished: {changed} nodes corrected")
        return changed
