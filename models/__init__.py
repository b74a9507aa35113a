"""
Database models for the compensation core.
Import all models here so Base.metadata knows every table.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Binary tree models
from models.binary.binary_node import BinaryNode
from models.binary.binary_settings import BinarySettingsRecord
from models.binary.period_counter import PeriodCounter
from models.binary.carry_forward import CarryForwardEntry
from models.binary.placement_record import PlacementRecord
from models.binary.binary_match import BinaryMatchRecord

# Collaborator-owned models
from models.package import Package, PackageLevelCommission
from models.sponsor_link import SponsorLink
from models.commission_ledger import CommissionLedgerEntry

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Binary
    'BinaryNode',
    'BinarySettingsRecord',
    'PeriodCounter',
    'CarryForwardEntry',
    'PlacementRecord',
    'BinaryMatchRecord',

    # Collaborators
    'Package',
    'PackageLevelCommission',
    'SponsorLink',
    'CommissionLedgerEntry',
]
