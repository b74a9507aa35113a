# compensation/interfaces.py
"""
Collaborator contracts consumed by the core.

The core never reaches past these: package/settings lookups, the sponsor
directory and the commission ledger are owned elsewhere. Default
database-backed implementations live in compensation.services.
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List, Optional

from compensation.types import BinarySettings, CommissionEntry, Package


class PackageSettingsProvider(ABC):
    """Package and binary settings lookups (read-mostly, cached)."""

    @abstractmethod
    def getPackage(self, packageId: int) -> Package:
        """Raises PackageNotFound or DependencyUnavailable."""

    @abstractmethod
    def getBinarySettings(self) -> BinarySettings:
        """Raises DependencyUnavailable."""

    @abstractmethod
    def getLevelCommissionTable(self, packageId: int) -> List[Dict[str, Decimal]]:
        """[{"level": 1, "percentage": Decimal("5")}, ...]"""


class SponsorDirectory(ABC):
    """Referral chain lookups."""

    @abstractmethod
    def getSponsor(self, userId: int) -> Optional[int]:
        """Sponsor user id, or None at the top of the chain."""


class Ledger(ABC):
    """Commission journal. Retries are the ledger's own business."""

    @abstractmethod
    def appendCommission(self, entry: CommissionEntry) -> None:
        """Append one commission entry."""
