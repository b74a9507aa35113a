"""
Compensation core - binary tree placement, volume roll-up, matching bonus,
level income and simulation.
"""

# Services
from compensation.services.placement_service import PlacementService
from compensation.services.volume_service import VolumeService
from compensation.services.matching_bonus_service import MatchingBonusService
from compensation.services.level_income_service import LevelIncomeService
from compensation.services.simulation_service import SimulationEngine
from compensation.services.compensation_service import CompensationService
from compensation.services.settings_service import SettingsService

# Types and errors
from compensation.types import (
    BinarySettings,
    Package,
    Period,
    PlacementPriority,
    Position,
    SpilloverRule,
)
from compensation.errors import (
    CompensationError,
    DependencyUnavailable,
    InvalidConfiguration,
    InvalidTreeState,
    PackageNotFound,
    PlacementDenied,
    PlacementError,
    SlotOccupied,
)

# Utilities
from compensation.utils.time_machine import timeMachine

# Events
from compensation.events.event_bus import eventBus, CompEvents

__all__ = [
    # Services
    'PlacementService',
    'VolumeService',
    'MatchingBonusService',
    'LevelIncomeService',
    'SimulationEngine',
    'CompensationService',
    'SettingsService',

    # Types
    'BinarySettings',
    'Package',
    'Period',
    'PlacementPriority',
    'Position',
    'SpilloverRule',

    # Errors
    'CompensationError',
    'DependencyUnavailable',
    'InvalidConfiguration',
    'InvalidTreeState',
    'PackageNotFound',
    'PlacementDenied',
    'PlacementError',
    'SlotOccupied',

    # Utils
    'timeMachine',

    # Events
    'eventBus',
    'CompEvents',
]
