# compensation/services/placement_service.py
"""
Binary tree placement - decides where a new user's node attaches.
"""
from typing import Optional, Tuple, Union
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import logging

from config import Config
from models.binary.binary_node import BinaryNode
from models.binary.placement_record import PlacementRecord
from compensation.config.plan import validate_binary_settings
from compensation.errors import (
    CompensationError,
    InvalidTreeState,
    PlacementDenied,
    SlotOccupied,
)
from compensation.events.event_bus import eventBus, CompEvents
from compensation.interfaces import PackageSettingsProvider
from compensation.types import BinarySettings, PlacementPriority, Position, SpilloverRule
from compensation.utils.tree_store import TreeStore, LEFT, RIGHT

logger = logging.getLogger(__name__)


class _SlotTaken(Exception):
    """Auto-placement target filled between search and lock; search again."""
    pass


class PlacementService:
    """Service for placing users into the binary tree."""

    def __init__(self, session: Session, settingsProvider: Optional[PackageSettingsProvider] = None):
        self.session = session
        self.tree = TreeStore(session)
        if settingsProvider is None:
            from compensation.services.settings_service import SettingsService
            settingsProvider = SettingsService(session)
        self.settingsProvider = settingsProvider

    async def place(
            self,
            newUserId: int,
            sponsorId: Optional[int],
            requestedPosition: Optional[Union[Position, str]] = None,
            reason: Optional[str] = None,
            placedBy: Optional[str] = None,
            settings: Optional[BinarySettings] = None
    ) -> int:
        """
        Place a new user under their sponsor.

        Args:
            newUserId: User to place
            sponsorId: Sponsor user id (ignored for the very first node)
            requestedPosition: left/right slot directly under the sponsor
            reason: Free text stored on the placement record
            placedBy: Admin or process that triggered the placement
            settings: Binary settings (loaded from the provider when omitted)

        Returns:
            nodeID of the new node

        Raises:
            SlotOccupied: Requested slot is taken
            PlacementDenied: Auto placement disabled, unknown sponsor or user already placed
            InvalidTreeState: Corrupted structure met during the search
        """
        position = self._normalizePosition(requestedPosition)
        if settings is None:
            settings = self.settingsProvider.getBinarySettings()
        validate_binary_settings(settings)

        maxRetries = Config.get(Config.PLACEMENT_MAX_RETRIES, 3)
        attempt = 0

        while True:
            attempt += 1
            try:
                node, parent, mode = self._placeOnce(newUserId, sponsorId, position, settings)

                self.session.add(PlacementRecord(
                    userID=newUserId,
                    sponsorUserID=sponsorId,
                    nodeID=node.nodeID,
                    parentNodeID=parent.nodeID if parent else None,
                    position=node.position,
                    mode=mode,
                    reason=reason,
                    placedBy=placedBy,
                ))

                event = {
                    "nodeId": node.nodeID,
                    "userId": newUserId,
                    "sponsorId": sponsorId,
                    "parentNodeId": parent.nodeID if parent else None,
                    "position": node.position,
                    "mode": mode,
                }
                self.session.commit()
                break

            except (_SlotTaken, IntegrityError) as e:
                self.session.rollback()

                if self.tree.get_node_by_user(newUserId) is not None:
                    raise PlacementDenied(f"User {newUserId} is already placed")
                if position is not None:
                    sponsorNode = self.tree.get_node_by_user(sponsorId)
                    raise SlotOccupied(sponsorNode.nodeID if sponsorNode else None, position)
                if attempt > maxRetries:
                    logger.error(f"Placement of user {newUserId} lost {attempt} races, giving up")
                    raise PlacementDenied(
                        f"Could not place user {newUserId} after {maxRetries} retries"
                    ) from e

                logger.warning(f"Placement race for user {newUserId} (attempt {attempt}), searching again")

            except InvalidTreeState as e:
                self.session.rollback()
                logger.error(f"Placement of user {newUserId} hit invalid tree: {e}", exc_info=True)
                raise

            except CompensationError:
                self.session.rollback()
                raise

            except Exception as e:
                self.session.rollback()
                logger.error(f"Placement of user {newUserId} failed: {e}", exc_info=True)
                raise

        logger.info(
            f"User {newUserId} placed: node {event['nodeId']} under {event['parentNodeId']} "
            f"({event['position']}, {event['mode']})"
        )
        await eventBus.emit(CompEvents.NODE_PLACED, event)

        return event["nodeId"]

    def _placeOnce(
            self,
            newUserId: int,
            sponsorId: Optional[int],
            position: Optional[str],
            settings: BinarySettings
    ) -> Tuple[BinaryNode, Optional[BinaryNode], str]:
        """One placement attempt inside the current transaction."""
        if self.tree.get_node_by_user(newUserId) is not None:
            raise PlacementDenied(f"User {newUserId} is already placed")

        if self.tree.is_empty():
            node = self.tree.create_root(newUserId)
            return node, None, "root"

        sponsorNode = self.tree.get_node_by_user(sponsorId) if sponsorId is not None else None
        if sponsorNode is None:
            raise PlacementDenied(f"Sponsor {sponsorId} is not in the binary tree")

        if position is not None:
            parent = self._lockPath(sponsorNode)
            if parent.childID(position) is not None:
                raise SlotOccupied(parent.nodeID, position)
            return self.tree.attach(parent, position, newUserId), parent, "manual"

        if not settings.spilloverEnabled or settings.spilloverRule == SpilloverRule.MANUAL:
            raise PlacementDenied(
                f"Automatic placement is disabled; a position under sponsor {sponsorId} is required"
            )

        parent, side = self._findSlot(sponsorNode, settings.placementPriority)
        parent = self._lockPath(parent)
        if parent.childID(side) is not None:
            raise _SlotTaken()

        return self.tree.attach(parent, side, newUserId), parent, "auto"

    def _lockPath(self, parent: BinaryNode) -> BinaryNode:
        """Lock the future parent and its ancestors (their counts change)."""
        ids = [parent.nodeID] + [a.nodeID for a, _ in self.tree.walk_ancestors(parent)]
        return self.tree.lock_nodes(ids)[parent.nodeID]

    def _findSlot(self, start: BinaryNode, priority: PlacementPriority) -> Tuple[BinaryNode, str]:
        """
        Walk down from the sponsor's node to the first empty slot.

        left / right follow the fixed side. weaker-leg and balanced pick the
        side with less volume or fewer nodes at every step, ties go left.
        """
        current = start
        visited = set()

        while True:
            if current.nodeID in visited:
                raise InvalidTreeState(f"Cycle detected at node {current.nodeID}", nodeId=current.nodeID)
            visited.add(current.nodeID)
            if len(visited) > self.tree.max_depth:
                raise InvalidTreeState(
                    f"Max depth ({self.tree.max_depth}) exceeded searching below node {start.nodeID}",
                    nodeId=start.nodeID
                )

            side = self._chooseSide(current, priority)
            childId = current.childID(side)
            if childId is None:
                return current, side

            child = self.tree.get_node(childId)
            if child is None:
                raise InvalidTreeState(
                    f"Dangling {side} child reference {childId} on node {current.nodeID}",
                    nodeId=current.nodeID
                )
            current = child

    @staticmethod
    def _chooseSide(node: BinaryNode, priority: PlacementPriority) -> str:
        if priority == PlacementPriority.LEFT:
            return LEFT
        if priority == PlacementPriority.RIGHT:
            return RIGHT
        if priority == PlacementPriority.WEAKER_LEG:
            return LEFT if (node.leftVolume or 0) <= (node.rightVolume or 0) else RIGHT
        if priority == PlacementPriority.BALANCED:
            return LEFT if (node.leftCount or 0) <= (node.rightCount or 0) else RIGHT
        raise ValueError(f"Unknown placement priority: {priority}")

    @staticmethod
    def _normalizePosition(requestedPosition) -> Optional[str]:
        if requestedPosition is None:
            return None
        value = requestedPosition.value if isinstance(requestedPosition, Position) else str(requestedPosition).lower()
        if value not in (LEFT, RIGHT):
            raise PlacementDenied(f"Requested position must be left or right, got '{value}'")
        return value

    # ============================================================
    # QUERIES
    # ============================================================

    def getPlacementHistory(self, userId: Optional[int] = None):
        query = self.session.query(PlacementRecord)
        if userId is not None:
            query = query.filter_by(userID=userId)
        return query.order_by(PlacementRecord.placementID).all()
