# tests/conftest.py
"""
Pytest configuration and shared fixtures for the compensation core tests.

Every test gets a fresh in-memory SQLite database (StaticPool, so all
sessions share the one connection).

Run:
    pytest tests/ -v
"""
import asyncio
from dataclasses import replace
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import Config
from models import Base, BinaryNode
from compensation.events.event_bus import eventBus
from compensation.interfaces import Ledger, SponsorDirectory
from compensation.services.placement_service import PlacementService
from compensation.services.settings_service import invalidate_settings_cache
from compensation.types import BinarySettings, CommissionEntry, Package
from compensation.utils.time_machine import timeMachine


# =============================================================================
# GLOBAL STATE
# =============================================================================

@pytest.fixture(autouse=True)
def reset_global_state():
    """Config, settings cache, clock and event bus are process-wide."""
    Config.reset()
    invalidate_settings_cache()
    timeMachine.resetToRealTime()
    eventBus.clear()
    yield
    Config.reset()
    invalidate_settings_cache()
    timeMachine.resetToRealTime()
    eventBus.clear()


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    """Create database session for each test."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def session_pair(tmp_path):
    """
    Two sessions on an on-disk database, each with its own connection.

    Used to interleave two writers by hand; the in-memory fixtures share
    one connection and therefore one transaction.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'compensation.db'}")
    Base.metadata.create_all(engine)
    # Rows stay loaded after commit, so each writer holds stale copies
    # unless it re-reads them
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    first, second = factory(), factory()
    yield first, second
    first.close()
    second.close()
    engine.dispose()


# =============================================================================
# COLLABORATOR DOUBLES
# =============================================================================

class RecordingLedger(Ledger):
    """Ledger that keeps entries in memory."""

    def __init__(self):
        self.entries: List[CommissionEntry] = []

    def appendCommission(self, entry: CommissionEntry) -> None:
        self.entries.append(entry)

    def total(self, recipientUserId: Optional[int] = None) -> Decimal:
        return sum(
            (e.amount for e in self.entries
             if recipientUserId is None or e.recipientUserId == recipientUserId),
            Decimal("0")
        )


class FailingLedger(Ledger):
    def appendCommission(self, entry: CommissionEntry) -> None:
        raise RuntimeError("ledger down")


class DictSponsorDirectory(SponsorDirectory):
    """Sponsor chain given as {userId: sponsorId}."""

    def __init__(self, links: Dict[int, int]):
        self.links = dict(links)

    def getSponsor(self, userId: int) -> Optional[int]:
        return self.links.get(userId)


@pytest.fixture
def ledger():
    return RecordingLedger()


@pytest.fixture
def failing_ledger():
    return FailingLedger()


@pytest.fixture
def sponsor_directory():
    """Factory: sponsor_directory({2: 1, 3: 2})."""
    return DictSponsorDirectory


# =============================================================================
# SETTINGS / PACKAGE FIXTURES
# =============================================================================

@pytest.fixture
def settings():
    """Default binary settings (spillover auto, weaker-leg, 5000/30000/100000, 10%)."""
    return BinarySettings()


@pytest.fixture
def make_settings():
    """Default settings with overrides."""

    def _make(**overrides) -> BinarySettings:
        return replace(BinarySettings(), **overrides)

    return _make


@pytest.fixture
def package():
    """Ten-level package, 5% daily for 30 days."""
    return Package(
        id=1,
        name="Growth",
        minInvestment=Decimal("100"),
        maxInvestment=Decimal("100000"),
        dailyReturnPercentage=Decimal("5"),
        durationDays=30,
        directCommissionPercentage=Decimal("10"),
        binaryBonusPercentage=Decimal("8"),
        levelDepth=10,
        levelPercentages=(
            Decimal("5"), Decimal("4"), Decimal("3"), Decimal("2"), Decimal("1"),
            Decimal("1"), Decimal("1"), Decimal("0.5"), Decimal("0.5"), Decimal("0.5"),
        ),
    )


# =============================================================================
# TREE HELPERS
# =============================================================================

@pytest.fixture
def place(session, settings):
    """
    Place a user synchronously.

    Usage:
        node_id = place(2, sponsor=1, position="left")
    """

    def _place(user_id, sponsor=None, position=None, with_settings=None, **kwargs):
        service = PlacementService(session)
        return asyncio.run(service.place(
            user_id, sponsor, position,
            settings=with_settings or settings,
            **kwargs
        ))

    return _place


@pytest.fixture
def small_tree(place):
    """
    Three levels, manual positions:

              1
           /     \\
          2       3
         / \\       \\
        4   5       6

    Returns {userId: nodeId}.
    """
    nodes = {1: place(1)}
    nodes[2] = place(2, sponsor=1, position="left")
    nodes[3] = place(3, sponsor=1, position="right")
    nodes[4] = place(4, sponsor=2, position="left")
    nodes[5] = place(5, sponsor=2, position="right")
    nodes[6] = place(6, sponsor=3, position="right")
    return nodes


@pytest.fixture
def node_of(session):
    """Fresh BinaryNode for a user."""

    def _get(user_id) -> BinaryNode:
        return session.query(BinaryNode).populate_existing().filter_by(userID=user_id).one()

    return _get
