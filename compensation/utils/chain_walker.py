# compensation/utils/chain_walker.py
"""
Safe sponsor chain walking utilities.
Prevents infinite loops and validates chain integrity.
"""
from typing import Callable, List, Optional
import logging

from compensation.errors import InvalidTreeState
from compensation.interfaces import SponsorDirectory

logger = logging.getLogger(__name__)


class ChainWalker:
    """
    Walks the sponsor (unilevel) chain upwards.
    Independent of the binary tree.
    """

    def __init__(self, directory: SponsorDirectory):
        self.directory = directory

    def walk_upline(
            self,
            start_user_id: int,
            callback: Callable[[int, int], bool],
            max_depth: int = 50
    ) -> int:
        """
        Walk up the sponsor chain, calling callback(sponsor_id, level).

        Args:
            start_user_id: Investor user id
            callback: Function(sponsor_id, level) -> continue_walking (bool)
            max_depth: Number of hops to walk at most

        Returns:
            Number of sponsors processed

        Raises:
            InvalidTreeState: If the chain loops back on itself
        """
        current = start_user_id
        level = 1
        processed = 0
        visited = {start_user_id}

        while level <= max_depth:
            sponsor_id = self.directory.getSponsor(current)
            if sponsor_id is None:
                break

            if sponsor_id in visited:
                logger.error(f"Sponsor cycle detected at user {sponsor_id} (from {start_user_id})")
                raise InvalidTreeState(
                    f"Sponsor chain cycle at user {sponsor_id} starting from {start_user_id}"
                )

            visited.add(sponsor_id)
            processed += 1

            if not callback(sponsor_id, level):
                break

            current = sponsor_id
            level += 1

        return processed

    def get_upline_chain(self, user_id: int, max_depth: int = 50) -> List[int]:
        """
        Sponsor ids from immediate sponsor upwards.

        Index 0 is the level 1 recipient.
        """
        chain = []

        def collect(sponsor_id, level):
            chain.append(sponsor_id)
            return True  # Continue

        self.walk_upline(user_id, collect, max_depth)
        return chain

    def get_sponsor_at(self, user_id: int, level: int) -> Optional[int]:
        """Ancestor `level` hops up, or None when the chain is shorter."""
        chain = self.get_upline_chain(user_id, max_depth=level)
        return chain[level - 1] if len(chain) >= level else None
