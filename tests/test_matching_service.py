# tests/test_matching_service.py
"""
Tests for MatchingBonusService: capping across computations, carry-forward,
period rollover, the batch period close, match history, the minimum match
amount and two sessions on one node.

Clock is frozen on Wednesday 2024-01-10 12:00 UTC unless a test moves it.

Run:
    pytest tests/test_matching_service.py -v
"""
import asyncio
import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from models.binary.carry_forward import CarryForwardEntry
from models.binary.period_counter import PeriodCounter
from compensation.errors import DependencyUnavailable, InvalidTreeState
from compensation.events.event_bus import eventBus, CompEvents
from compensation.services.matching_bonus_service import MatchingBonusService
from compensation.services.placement_service import PlacementService
from compensation.services.volume_service import VolumeService
from compensation.types import CommissionKind, Period
from compensation.utils.periods import is_boundary_crossed
from compensation.utils.time_machine import timeMachine

D = Decimal
WEDNESDAY = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def at(day, hour=12):
    return datetime(2024, 1, day, hour, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    timeMachine.setTime(WEDNESDAY)
    return timeMachine


@pytest.fixture
def legs(session, small_tree, clock):
    """Root legs: 8000 left (user 2), 6000 right (user 3)."""
    volume = VolumeService(session)
    asyncio.run(volume.recordInvestment(small_tree[2], 8000))
    asyncio.run(volume.recordInvestment(small_tree[3], 6000))
    return small_tree


@pytest.fixture
def capped(make_settings):
    return make_settings(dailyCap=D("500"))


@pytest.fixture
def service(session, ledger):
    return MatchingBonusService(session, ledger=ledger)


def compute(service, node_id, settings, period=Period.DAY):
    return asyncio.run(service.computeBonus(node_id, period, settings))


def counters_of(session, node_id):
    rows = session.query(PeriodCounter).populate_existing().filter_by(nodeID=node_id).all()
    return {Period(c.period): c.accumulatedPayout for c in rows}


def carry_of(session, node_id):
    return session.query(CarryForwardEntry).populate_existing().filter_by(nodeID=node_id).first()


# =============================================================================
# TEST CLASS: Single computation
# =============================================================================

class TestComputeBonus:

    def test_capped_payout_and_carry(self, session, legs, service, capped, ledger, node_of):
        """
        TEST: 8000 / 6000, 10%, daily cap 500.

        Expected:
        - payout 500 booked to the ledger
        - 1000 volume carried forward on the lesser (right) leg
        - unmatched legs consumed by 6000, lifetime legs untouched
        """
        result = compute(service, legs[1], capped)

        assert result.payout == D("500")
        assert result.residual == D("1000")
        assert result.carriedForward is True
        assert result.capped is True

        entry = carry_of(session, legs[1])
        assert entry.residualVolume == D("1000")
        assert entry.leg == "right"

        root = node_of(1)
        assert (root.leftVolume, root.rightVolume) == (D("8000"), D("6000"))
        assert (root.leftUnmatched, root.rightUnmatched) == (D("2000"), D("0"))
        assert root.matchedToDate == D("5000")
        assert root.lastMatchedAt is not None

        assert counters_of(session, legs[1]) == {
            Period.DAY: D("500"), Period.WEEK: D("500"), Period.MONTH: D("500")
        }

        assert len(ledger.entries) == 1
        assert ledger.entries[0].kind == CommissionKind.MATCHING_BONUS
        assert ledger.entries[0].recipientUserId == 1
        assert ledger.entries[0].amount == D("500")

    def test_same_day_recompute_pays_nothing(self, session, legs, service, capped, ledger):
        """TEST: Daily window exhausted, carry kept."""
        compute(service, legs[1], capped)
        second = compute(service, legs[1], capped)

        assert second.payout == D("0")
        assert second.residual == D("1000")
        assert carry_of(session, legs[1]).residualVolume == D("1000")
        assert len(ledger.entries) == 1

    def test_next_day_pays_carry(self, session, legs, service, capped, clock, ledger):
        """
        TEST: New daily window -> carry 1000 pays 100 and is consumed.
        """
        compute(service, legs[1], capped)
        clock.setTime(at(11))

        result = compute(service, legs[1], capped)

        assert result.payout == D("100")
        assert result.carriedForward is False
        assert carry_of(session, legs[1]) is None
        assert counters_of(session, legs[1]) == {
            Period.DAY: D("100"), Period.WEEK: D("600"), Period.MONTH: D("600")
        }
        assert ledger.total(1) == D("600")

    def test_uncapped_has_no_residual(self, session, legs, service, settings):
        result = compute(service, legs[1], settings)

        assert result.payout == D("600")
        assert result.carriedForward is False
        assert carry_of(session, legs[1]) is None

    def test_capping_off_odd_amounts_carry_nothing(self, session, small_tree, service, make_settings, clock):
        """TEST: 1.005 / 1.005 at 10% pays 0.1005 exactly; no carry entry."""
        volume = VolumeService(session)
        asyncio.run(volume.recordInvestment(small_tree[2], "1.005"))
        asyncio.run(volume.recordInvestment(small_tree[3], "1.005"))

        result = compute(service, small_tree[1], make_settings(cappingEnabled=False))

        assert result.payout == D("0.1005")
        assert result.residual == D("0")
        assert result.carriedForward is False
        assert carry_of(session, small_tree[1]) is None

    def test_carry_forward_disabled(self, session, legs, service, make_settings):
        settings = make_settings(dailyCap=D("500"), carryForwardEnabled=False)

        result = compute(service, legs[1], settings)

        assert result.residual == D("1000")
        assert result.carriedForward is False
        assert carry_of(session, legs[1]) is None

    def test_expired_carry_ignored(self, session, legs, service, make_settings, clock):
        settings = make_settings(dailyCap=D("500"), maxCarryForwardDays=1)
        compute(service, legs[1], settings)
        clock.setTime(at(13))

        result = compute(service, legs[1], settings)

        assert result.availableLesser == D("0")
        assert result.payout == D("0")
        assert carry_of(session, legs[1]) is None

    def test_no_volume_on_one_leg(self, session, small_tree, service, settings, clock):
        asyncio.run(VolumeService(session).recordInvestment(small_tree[4], 500))

        result = compute(service, small_tree[1], settings)

        assert result.payout == D("0")
        assert result.carriedForward is False

    def test_unknown_node(self, session, small_tree, service, settings):
        with pytest.raises(InvalidTreeState):
            compute(service, 9999, settings)

    def test_period_given_as_string(self, legs, service, settings):
        result = asyncio.run(service.computeBonus(legs[1], "week", settings))
        assert result.period == Period.WEEK

    def test_ledger_failure_keeps_result(self, session, legs, failing_ledger, capped, node_of):
        """
        TEST: Ledger down -> bonus still booked, error only logged.
        """
        service = MatchingBonusService(session, ledger=failing_ledger)

        result = compute(service, legs[1], capped)

        assert result.payout == D("500")
        assert node_of(1).matchedToDate == D("5000")

    def test_bonus_event(self, legs, service, capped):
        received = []
        eventBus.subscribe(CompEvents.BONUS_COMPUTED, received.append)

        compute(service, legs[1], capped)

        assert len(received) == 1
        assert received[0]["payout"] == D("500")
        assert received[0]["capped"] is True
        assert received[0]["period"] == "day"


# =============================================================================
# TEST CLASS: Batch close and housekeeping
# =============================================================================

class TestPeriodClose:

    @pytest.fixture
    def two_matchable(self, session, small_tree, clock):
        """
        Root: L 300 / R 1000, node 2: L 100 / R 200, nothing else matchable.
        """
        volume = VolumeService(session)
        for user_id, amount in ((4, 100), (5, 200), (3, 1000)):
            asyncio.run(volume.recordInvestment(small_tree[user_id], amount))
        return small_tree

    def test_run_for_all(self, two_matchable, service, settings, ledger):
        summary = asyncio.run(service.runMatchingForAll(Period.DAY, settings))

        assert summary["processed"] == 2
        assert summary["matched"] == 2
        assert summary["totalPayout"] == D("40")
        assert summary["errors"] == []
        assert ledger.total() == D("40")

    def test_nothing_left_after_run(self, two_matchable, service, settings):
        asyncio.run(service.runMatchingForAll(Period.DAY, settings))
        summary = asyncio.run(service.runMatchingForAll(Period.DAY, settings))

        assert summary["processed"] == 0

    def test_broken_node_reported(self, two_matchable, service, settings):
        """TEST: One node fails with InvalidTreeState, the rest still run."""
        real = service.computeBonus

        async def broken_for_node_2(nodeId, period, settings=None):
            if nodeId == two_matchable[2]:
                raise InvalidTreeState("broken", nodeId=nodeId)
            return await real(nodeId, period, settings)

        service.computeBonus = broken_for_node_2
        summary = asyncio.run(service.runMatchingForAll(Period.DAY, settings))

        assert summary["processed"] == 2
        assert summary["matched"] == 1
        assert summary["errors"] == [{"nodeId": two_matchable[2], "error": "broken"}]

    def test_dependency_failure_aborts(self, two_matchable, service, settings):
        async def unavailable(nodeId, period, settings=None):
            raise DependencyUnavailable("settings store down")

        service.computeBonus = unavailable

        with pytest.raises(DependencyUnavailable):
            asyncio.run(service.runMatchingForAll(Period.DAY, settings))

    def test_carry_only_node_included(self, session, legs, service, capped, clock):
        compute(service, legs[1], capped)
        clock.setTime(at(11))

        summary = asyncio.run(service.runMatchingForAll(Period.DAY, capped))

        assert summary["processed"] == 1
        assert summary["totalPayout"] == D("100")

    def test_reset_next_day(self, session, legs, service, capped, clock):
        compute(service, legs[1], capped)
        clock.setTime(at(11))

        assert asyncio.run(service.resetExpiredPeriods()) == 1
        assert counters_of(session, legs[1])[Period.DAY] == D("0")
        assert counters_of(session, legs[1])[Period.WEEK] == D("500")

    def test_reset_next_monday(self, session, legs, service, capped, clock):
        """TEST: 2024-01-15 is a Monday -> daily and weekly reset, monthly kept."""
        compute(service, legs[1], capped)
        clock.setTime(at(15, hour=0))

        assert asyncio.run(service.resetExpiredPeriods()) == 2
        assert counters_of(session, legs[1])[Period.MONTH] == D("500")

    def test_reset_event(self, legs, service, capped, clock):
        received = []
        eventBus.subscribe(CompEvents.PERIOD_RESET, received.append)
        compute(service, legs[1], capped)

        assert asyncio.run(service.resetExpiredPeriods()) == 0
        assert received == []

        clock.setTime(at(11))
        asyncio.run(service.resetExpiredPeriods())
        assert received[0]["reset"] == 1

    def test_purge_expired_carry(self, session, legs, service, capped, clock):
        compute(service, legs[1], capped)

        assert asyncio.run(service.purgeExpiredCarryForward()) == 0

        clock.setTime(datetime(2024, 2, 10, tzinfo=timezone.utc))
        assert asyncio.run(service.purgeExpiredCarryForward()) == 1
        assert carry_of(session, legs[1]) is None


# =============================================================================
# TEST CLASS: Match history
# =============================================================================

class TestMatchHistory:

    def test_record_per_computation(self, legs, service, capped, clock):
        """
        TEST: Capped match, then the carry paid out the next day.

        History is newest first and keeps the unmatched legs before and after.
        """
        compute(service, legs[1], capped)
        clock.setTime(at(11))
        compute(service, legs[1], capped)

        history = service.getMatchHistory(legs[1])

        assert len(history) == 2
        carry_run, first_run = history

        assert first_run["matchedVolume"] == D("6000")
        assert (first_run["leftBefore"], first_run["rightBefore"]) == (D("8000"), D("6000"))
        assert (first_run["leftAfter"], first_run["rightAfter"]) == (D("2000"), D("0"))
        assert first_run["payout"] == D("500")
        assert first_run["percentage"] == D("10")
        assert first_run["residual"] == D("1000")
        assert first_run["capped"] is True
        assert first_run["bindingWindow"] == "day"

        assert carry_run["matchedVolume"] == D("0")
        assert carry_run["carryIn"] == D("1000")
        assert carry_run["payout"] == D("100")
        assert carry_run["bindingWindow"] is None

    def test_nothing_matched_nothing_recorded(self, session, small_tree, service, settings, clock):
        asyncio.run(VolumeService(session).recordInvestment(small_tree[4], 500))

        compute(service, small_tree[1], settings)

        assert service.getMatchHistory(small_tree[1]) == []

    def test_paging(self, session, small_tree, service, settings, clock):
        volume = VolumeService(session)
        for day in (10, 11, 12):
            clock.setTime(at(day))
            asyncio.run(volume.recordInvestment(small_tree[2], 100))
            asyncio.run(volume.recordInvestment(small_tree[3], 100))
            compute(service, small_tree[1], settings)

        assert len(service.getMatchHistory(small_tree[1], limit=2)) == 2
        assert len(service.getMatchHistory(small_tree[1], limit=2, offset=2)) == 1

    def test_stats_totals(self, legs, service, capped, clock):
        compute(service, legs[1], capped)
        clock.setTime(at(11))
        compute(service, legs[1], capped)

        stats = service.getNodeStats(legs[1], capped)

        assert stats["totalMatches"] == 2
        assert stats["totalMatchPayout"] == D("600")


# =============================================================================
# TEST CLASS: Minimum match amount
# =============================================================================

class TestMinimumMatch:

    def test_below_minimum_untouched(self, session, legs, service, make_settings, ledger, node_of):
        """TEST: Lesser leg 6000 under a 7000 minimum -> nothing consumed or paid."""
        result = compute(service, legs[1], make_settings(minMatchAmount=D("7000")))

        assert result.belowMinimum is True
        assert result.payout == D("0")
        assert result.availableLesser == D("6000")

        root = node_of(1)
        assert (root.leftUnmatched, root.rightUnmatched) == (D("8000"), D("6000"))
        assert counters_of(session, legs[1]) == {}
        assert service.getMatchHistory(legs[1]) == []
        assert ledger.entries == []

    def test_at_minimum_matches(self, legs, service, make_settings):
        result = compute(service, legs[1], make_settings(minMatchAmount=D("6000")))

        assert result.belowMinimum is False
        assert result.payout == D("600")

    def test_carry_kept_below_minimum(self, session, legs, service, make_settings, clock):
        """TEST: Next day only the 1000 carry is left, minimum 1500 -> carry stays."""
        compute(service, legs[1], make_settings(dailyCap=D("500")))
        clock.setTime(at(11))

        result = compute(service, legs[1], make_settings(dailyCap=D("500"), minMatchAmount=D("1500")))

        assert result.belowMinimum is True
        assert result.carriedForward is True
        assert carry_of(session, legs[1]).residualVolume == D("1000")

    def test_batch_skips_small_legs(self, session, small_tree, service, make_settings, clock, ledger):
        """
        TEST: Root L 300 / R 1000, node 2 L 100 / R 200, minimum 250.

        Only the root is selected.
        """
        volume = VolumeService(session)
        for user_id, amount in ((4, 100), (5, 200), (3, 1000)):
            asyncio.run(volume.recordInvestment(small_tree[user_id], amount))

        summary = asyncio.run(service.runMatchingForAll(Period.DAY, make_settings(minMatchAmount=D("250"))))

        assert summary["processed"] == 1
        assert summary["matched"] == 1
        assert summary["totalPayout"] == D("30")
        assert [e.recipientUserId for e in ledger.entries] == [1]


# =============================================================================
# TEST CLASS: Generated sequences
# =============================================================================

def room_left(session, node_id, settings, now):
    """Smallest room across enabled windows, from the stored counters."""
    used = {}
    for counter in session.query(PeriodCounter).populate_existing().filter_by(nodeID=node_id):
        period = Period(counter.period)
        if not is_boundary_crossed(period, counter.periodStart, now):
            used[period] = counter.accumulatedPayout
    return min(
        max(settings.capFor(p) - used.get(p, D("0")), D("0"))
        for p in Period if settings.capFor(p) > 0
    )


class TestGeneratedSequences:

    @pytest.mark.parametrize("seed", [5, 11, 99])
    def test_payout_within_room(self, session, small_tree, service, make_settings, clock, seed):
        """
        TEST: Random investments and computations over about six weeks,
        crossing day, week and month boundaries.

        Every payout fits the smallest remaining window and no counter
        ends above its cap.
        """
        rng = random.Random(seed)
        settings = make_settings(dailyCap=D("300"), weeklyCap=D("1200"), monthlyCap=D("3000"))
        volume = VolumeService(session)
        matchable = [small_tree[1], small_tree[2], small_tree[3]]
        now = WEDNESDAY

        for _ in range(80):
            now += timedelta(hours=rng.randint(1, 20))
            clock.setTime(now)

            for _ in range(rng.randint(0, 3)):
                node_id = small_tree[rng.choice(list(small_tree))]
                asyncio.run(volume.recordInvestment(node_id, D(rng.randint(100, 600000)) / 100))

            if rng.random() < 0.2:
                asyncio.run(service.resetExpiredPeriods())

            node_id = rng.choice(matchable)
            room = room_left(session, node_id, settings, now)

            result = compute(service, node_id, settings)

            assert result.payout <= room
            assert result.payout * 10 + result.residual <= result.availableLesser
            for period, used in counters_of(session, node_id).items():
                assert used <= settings.capFor(period)


# =============================================================================
# TEST CLASS: Two sessions
# =============================================================================

class TestTwoSessions:

    def test_alternating_sessions_share_the_cap(self, session_pair, make_settings, clock, ledger):
        """
        TEST: Two services on separate connections alternate on the root.

        Each holds stale counters from its previous run; both re-read under
        lock, so together they pay exactly the 500 daily cap.
        """
        first, second = session_pair
        settings = make_settings(dailyCap=D("500"))

        placement = PlacementService(first)
        nodes = {}
        for user_id, sponsor, position in ((1, None, None), (2, 1, "left"), (3, 1, "right")):
            nodes[user_id] = asyncio.run(placement.place(user_id, sponsor, position, settings=settings))

        volume = VolumeService(first)
        services = [MatchingBonusService(first, ledger=ledger), MatchingBonusService(second, ledger=ledger)]
        payouts = []

        for step in range(6):
            asyncio.run(volume.recordInvestment(nodes[2], 1000))
            asyncio.run(volume.recordInvestment(nodes[3], 1000))
            result = asyncio.run(services[step % 2].computeBonus(nodes[1], Period.DAY, settings))
            payouts.append(result.payout)

        assert payouts == [D("100")] * 5 + [D("0")]
        assert ledger.total(1) == D("500")

        first.expire_all()
        assert counters_of(first, nodes[1])[Period.DAY] == D("500")
        assert carry_of(first, nodes[1]).residualVolume == D("1000")


# =============================================================================
# TEST CLASS: Stats
# =============================================================================

class TestNodeStats:

    def test_stats_after_capped_run(self, legs, service, capped, clock):
        compute(service, legs[1], capped)

        stats = service.getNodeStats(legs[1], capped)

        assert stats["leftVolume"] == D("8000")
        assert stats["leftUnmatched"] == D("2000")
        assert stats["rightUnmatched"] == D("0")
        assert stats["carryForward"] == D("1000")
        assert stats["matchableVolume"] == D("1000")
        assert stats["potentialPayout"] == D("100")
        assert stats["periodPayouts"]["day"] == D("500")

        clock.setTime(at(11))
        assert service.getNodeStats(legs[1], capped)["periodPayouts"]["day"] == D("0")

    def test_stats_unknown_node(self, session, service, settings):
        with pytest.raises(InvalidTreeState):
            service.getNodeStats(1234, settings)
