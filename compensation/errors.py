# compensation/errors.py
"""
Exceptions raised by the compensation core.

PlacementError subclasses are user-correctable and never retried.
InvalidTreeState is fatal for the affected node/subtree.
DependencyUnavailable is retried by the caller, never by the core.
"""


class CompensationError(Exception):
    """Base class for all compensation core errors."""
    pass


class PlacementError(CompensationError):
    """Placement request cannot be satisfied."""
    pass


class SlotOccupied(PlacementError):
    """Requested slot under the sponsor is already taken."""

    def __init__(self, parentNodeId: int, position: str):
        self.parentNodeId = parentNodeId
        self.position = position
        super().__init__(f"Slot {position} under node {parentNodeId} is occupied")


class PlacementDenied(PlacementError):
    """Placement is not allowed (manual-only mode, unknown sponsor, duplicate user)."""
    pass


class InvalidTreeState(CompensationError):
    """Cycle, orphaned node or dangling child reference."""

    def __init__(self, message: str, nodeId: int = None):
        self.nodeId = nodeId
        super().__init__(message)


class DependencyUnavailable(CompensationError):
    """Package / settings / sponsor / ledger lookup failed or timed out."""
    pass


class InvalidConfiguration(CompensationError):
    """Settings or package that should have been rejected at write time."""
    pass


class PackageNotFound(CompensationError):
    """Unknown package id."""
    pass
