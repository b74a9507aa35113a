# compensation/utils/tree_store.py
"""
Arena-indexed binary tree storage.

Nodes live in a flat table keyed by nodeID and point at each other by id.
All traversals are iterative and validate structure as they go, so a
corrupted tree surfaces as InvalidTreeState instead of a hang or a
recursion error.
"""
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
from sqlalchemy.orm import Session
import logging

from config import Config
from models.binary.binary_node import BinaryNode
from compensation.errors import InvalidTreeState
from compensation.types import Position

logger = logging.getLogger(__name__)

LEFT = Position.LEFT.value
RIGHT = Position.RIGHT.value
ROOT = Position.ROOT.value


class TreeStore:
    """
    Authoritative node graph. No business rules: placement, volume and bonus
    logic live in the services.
    """

    def __init__(self, session: Session):
        self.session = session

    @property
    def max_depth(self) -> int:
        return Config.get(Config.MAX_TREE_DEPTH, 10000)

    # ============================================================
    # LOOKUPS
    # ============================================================

    def get_node(self, node_id: int) -> Optional[BinaryNode]:
        return self.session.query(BinaryNode).filter_by(nodeID=node_id).first()

    def require_node(self, node_id: int) -> BinaryNode:
        """Get node or raise InvalidTreeState."""
        node = self.get_node(node_id)
        if node is None:
            raise InvalidTreeState(f"Node {node_id} not found", nodeId=node_id)
        return node

    def get_node_by_user(self, user_id: int) -> Optional[BinaryNode]:
        return self.session.query(BinaryNode).filter_by(userID=user_id).first()

    def get_root(self) -> Optional[BinaryNode]:
        """
        Get the single root node.

        Raises:
            InvalidTreeState: If more than one root exists
        """
        roots = self.session.query(BinaryNode).filter(
            BinaryNode.parentID.is_(None)
        ).limit(2).all()

        if len(roots) > 1:
            raise InvalidTreeState(
                f"Multiple roots found: {[r.nodeID for r in roots]}"
            )
        return roots[0] if roots else None

    def is_empty(self) -> bool:
        return self.session.query(BinaryNode.nodeID).first() is None

    def children(self, node: BinaryNode) -> Tuple[Optional[BinaryNode], Optional[BinaryNode]]:
        left = self.get_node(node.leftChildID) if node.leftChildID else None
        right = self.get_node(node.rightChildID) if node.rightChildID else None
        return left, right

    def lock_nodes(self, node_ids: Iterable[int]) -> Dict[int, BinaryNode]:
        """
        Row-lock nodes in ascending id order and return them fresh.

        Locking in a fixed order lets concurrent writers that share
        ancestors queue up without deadlocking.
        """
        ids = sorted(set(node_ids))
        if not ids:
            return {}

        nodes = (
            self.session.query(BinaryNode)
            .filter(BinaryNode.nodeID.in_(ids))
            .order_by(BinaryNode.nodeID)
            .populate_existing()
            .with_for_update()
            .all()
        )
        return {n.nodeID: n for n in nodes}

    # ============================================================
    # MUTATIONS
    # ============================================================

    def create_root(self, user_id: int) -> BinaryNode:
        node = BinaryNode(
            userID=user_id,
            parentID=None,
            position=ROOT,
            level=0,
            personalVolume=Decimal("0"),
            leftVolume=Decimal("0"),
            rightVolume=Decimal("0"),
            leftUnmatched=Decimal("0"),
            rightUnmatched=Decimal("0"),
            leftCount=0,
            rightCount=0,
            isActive=True,
        )
        self.session.add(node)
        self.session.flush()
        logger.debug(f"Root node {node.nodeID} created for user {user_id}")
        return node

    def attach(self, parent: BinaryNode, position: str, user_id: int) -> BinaryNode:
        """
        Create a node in an empty slot and link it from the parent.

        Caller holds the parent row lock. Ancestor subtree counts are
        incremented along the whole path.
        """
        if position not in (LEFT, RIGHT):
            raise ValueError(f"Invalid position: {position}")

        node = BinaryNode(
            userID=user_id,
            parentID=parent.nodeID,
            position=position,
            level=parent.level + 1,
            personalVolume=Decimal("0"),
            leftVolume=Decimal("0"),
            rightVolume=Decimal("0"),
            leftUnmatched=Decimal("0"),
            rightUnmatched=Decimal("0"),
            leftCount=0,
            rightCount=0,
            isActive=True,
        )
        self.session.add(node)
        self.session.flush()

        parent.setChildID(position, node.nodeID)

        for ancestor, side in self.walk_ancestors(node):
            if side == LEFT:
                ancestor.leftCount = (ancestor.leftCount or 0) + 1
            else:
                ancestor.rightCount = (ancestor.rightCount or 0) + 1

        self.session.flush()
        return node

    # ============================================================
    # TRAVERSAL
    # ============================================================

    def walk_ancestors(self, node: BinaryNode) -> List[Tuple[BinaryNode, str]]:
        """
        Ancestors from parent up to root, each with the side the walk came from.

        Raises:
            InvalidTreeState: On cycle, orphan, dangling child reference,
                              inconsistent root marker or runaway depth
        """
        path = []
        visited = {node.nodeID}
        current = node
        depth = 0

        while current.parentID is not None:
            if current.position not in (LEFT, RIGHT):
                raise InvalidTreeState(
                    f"Node {current.nodeID} has parent {current.parentID} "
                    f"but position '{current.position}'",
                    nodeId=current.nodeID
                )

            parent = self.get_node(current.parentID)
            if parent is None:
                raise InvalidTreeState(
                    f"Orphaned node {current.nodeID}: parent {current.parentID} not found",
                    nodeId=current.nodeID
                )

            if parent.childID(current.position) != current.nodeID:
                raise InvalidTreeState(
                    f"Dangling reference: node {current.nodeID} claims {current.position} "
                    f"slot of {parent.nodeID}, which points to {parent.childID(current.position)}",
                    nodeId=current.nodeID
                )

            if parent.nodeID in visited:
                raise InvalidTreeState(
                    f"Cycle detected at node {parent.nodeID}",
                    nodeId=parent.nodeID
                )

            visited.add(parent.nodeID)
            path.append((parent, current.position))

            depth += 1
            if depth > self.max_depth:
                raise InvalidTreeState(
                    f"Max depth ({self.max_depth}) exceeded walking up from node {node.nodeID}",
                    nodeId=node.nodeID
                )

            current = parent

        if current.position != ROOT:
            raise InvalidTreeState(
                f"Node {current.nodeID} has no parent but position '{current.position}'",
                nodeId=current.nodeID
            )

        return path

    def iter_subtree(self, node_id: int) -> Iterator[BinaryNode]:
        """Breadth-first iteration over a subtree (root of subtree included)."""
        start = self.require_node(node_id)
        queue = [start]
        seen = {start.nodeID}

        while queue:
            node = queue.pop(0)
            yield node

            for child_id in (node.leftChildID, node.rightChildID):
                if child_id is None:
                    continue
                if child_id in seen:
                    raise InvalidTreeState(
                        f"Cycle detected: node {child_id} reached twice under {node_id}",
                        nodeId=child_id
                    )
                child = self.get_node(child_id)
                if child is None:
                    raise InvalidTreeState(
                        f"Dangling child reference {child_id} on node {node.nodeID}",
                        nodeId=node.nodeID
                    )
                seen.add(child_id)
                queue.append(child)

    def subtree_volume(self, node_id: Optional[int]) -> Decimal:
        """Sum of personalVolume over a subtree (0 for an empty slot)."""
        if node_id is None:
            return Decimal("0")
        return sum(
            (Decimal(str(n.personalVolume or 0)) for n in self.iter_subtree(node_id)),
            Decimal("0")
        )

    def subtree_count(self, node_id: Optional[int]) -> int:
        if node_id is None:
            return 0
        return sum(1 for _ in self.iter_subtree(node_id))

    def load_arena(self) -> Dict[int, BinaryNode]:
        """All nodes keyed by id."""
        return {n.nodeID: n for n in self.session.query(BinaryNode).all()}

    def compute_aggregates(self) -> Dict[int, Dict[str, object]]:
        """
        Full recompute of leg volumes and counts from personalVolume.

        Iterative post-order over the whole arena. Nodes not reachable
        from the root are reported by raising InvalidTreeState.

        Returns:
            {nodeID: {"leftVolume", "rightVolume", "leftCount", "rightCount"}}
        """
        arena = self.load_arena()
        if not arena:
            return {}

        root = self.get_root()
        if root is None:
            raise InvalidTreeState("Tree has nodes but no root")

        totals: Dict[int, Tuple[Decimal, int]] = {}  # subtree volume, subtree count
        result: Dict[int, Dict[str, object]] = {}

        stack = [(root.nodeID, False)]
        visited = set()

        while stack:
            node_id, expanded = stack.pop()
            node = arena.get(node_id)
            if node is None:
                raise InvalidTreeState(f"Dangling child reference {node_id}", nodeId=node_id)

            if not expanded:
                if node_id in visited:
                    raise InvalidTreeState(f"Cycle detected at node {node_id}", nodeId=node_id)
                visited.add(node_id)
                stack.append((node_id, True))
                for child_id in (node.rightChildID, node.leftChildID):
                    if child_id is not None:
                        stack.append((child_id, False))
                continue

            left_vol, left_cnt = totals.get(node.leftChildID, (Decimal("0"), 0)) \
                if node.leftChildID else (Decimal("0"), 0)
            right_vol, right_cnt = totals.get(node.rightChildID, (Decimal("0"), 0)) \
                if node.rightChildID else (Decimal("0"), 0)

            personal = Decimal(str(node.personalVolume or 0))
            totals[node_id] = (personal + left_vol + right_vol, 1 + left_cnt + right_cnt)
            result[node_id] = {
                "leftVolume": left_vol,
                "rightVolume": right_vol,
                "leftCount": left_cnt,
                "rightCount": right_cnt,
            }

        unreachable = set(arena) - visited
        if unreachable:
            raise InvalidTreeState(
                f"Nodes not connected to root {root.nodeID}: {sorted(unreachable)}"
            )

        return result
