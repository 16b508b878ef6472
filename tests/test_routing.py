"""
Tests for ferry/routing policies

Covers:
- Copy splitting in binary and single-copy modes
- Sector mapping and heading derivation
- Direction filter admission and sector bookkeeping
- Strata learning and contact-history forwarding rules
- Buffer pressure predicates
"""

import math

import pytest

from ferry.config import RoutingConfig, RoutingPolicy
from ferry.errors import MissingReplicationState
from ferry.mesh import Contact, heading_between
from ferry.packet import Message
from ferry.routing import (
    ContactHistoryFilter,
    DirectionFilter,
    ReplicationController,
    ReplicationMode,
    Strata,
    buffer_ratio,
    running_high,
    running_low,
    sector_of,
)

from conftest import EAST, NORTH, SOUTH, WEST


# ============================================================================
# Replication
# ============================================================================

class TestReplication:

    def test_binary_split_of_six(self):
        replication = ReplicationController(RoutingConfig(initial_copies=6, binary_mode=True))
        assert replication.mode == ReplicationMode.BINARY
        assert replication.split(6) == (3, 3)

    def test_single_copy_split_of_six(self):
        replication = ReplicationController(RoutingConfig(initial_copies=6, binary_mode=False))
        assert replication.mode == ReplicationMode.SINGLE
        assert replication.split(6) == (1, 5)

    def test_binary_odd_counts_favor_receiver(self):
        replication = ReplicationController(RoutingConfig(binary_mode=True))
        assert replication.split(5) == (3, 2)
        assert replication.split(2) == (1, 1)
        assert replication.split(1) == (1, 0)

    @pytest.mark.parametrize("binary_mode", [True, False])
    def test_copies_conserved(self, binary_mode):
        replication = ReplicationController(RoutingConfig(binary_mode=binary_mode))
        for n in range(1, 65):
            receiver, sender = replication.split(n)
            assert receiver + sender == n
            assert receiver >= 1

    def test_cannot_split_nothing(self):
        replication = ReplicationController(RoutingConfig())
        with pytest.raises(ValueError):
            replication.receiver_copies(0)
        with pytest.raises(ValueError):
            replication.sender_copies(0)

    def test_spreadable_only_above_one(self):
        replication = ReplicationController(RoutingConfig())
        assert ReplicationController.can_spread(2)
        assert not ReplicationController.can_spread(1)
        assert not ReplicationController.can_spread(0)

    def test_missing_copy_count(self):
        replication = ReplicationController(RoutingConfig())
        msg = Message(id="m", source="a", destination="b", size=1)
        with pytest.raises(MissingReplicationState):
            replication.copies_of(msg)


# ============================================================================
# Sectors and headings
# ============================================================================

class TestSectors:

    @pytest.mark.parametrize("heading,expected", [
        (0.1, 0),
        (1.5, 0),
        (3.2, 2),
        (0.0, 0),
        (math.pi, 2),
        (5.0, 3),
    ])
    def test_four_sectors(self, heading, expected):
        assert sector_of(heading, 4) == expected

    def test_headings_are_normalized(self):
        assert sector_of(-0.1, 4) == 3
        assert sector_of(2 * math.pi, 4) == 0
        assert sector_of(2 * math.pi + 0.1, 4) == 0
        assert sector_of(math.nextafter(2 * math.pi, 0), 4) == 3

    def test_single_sector(self):
        for heading in (0.0, 1.0, 3.0, 6.0):
            assert sector_of(heading, 1) == 0

    def test_always_in_range(self):
        for k in range(1, 9):
            for step in range(-100, 200):
                assert 0 <= sector_of(step * 0.05, k) < k

    def test_invalid_sector_count(self):
        with pytest.raises(ValueError):
            sector_of(1.0, 0)

    def test_heading_between(self):
        assert heading_between((0, 0), EAST) == 0.0
        assert heading_between((0, 0), NORTH) == pytest.approx(math.pi / 2)
        assert heading_between((0, 0), WEST) == pytest.approx(math.pi)
        assert heading_between((0, 0), SOUTH) == pytest.approx(3 * math.pi / 2)
        assert heading_between((3, 4), (3, 4)) is None


# ============================================================================
# Direction filter
# ============================================================================

class TestDirectionFilter:

    def _contacts(self, world, host):
        return world.current_contacts(host)

    def test_admits_peer_heading_elsewhere(self, direction_world):
        world = direction_world
        world.connect("a", "b")
        router = world.engine.router("a")

        admitted = router.policy.filter_contacts(router, self._contacts(world, "a"))

        assert [c.peer for c in admitted] == ["b"]

    def test_same_heading_needs_higher_speed(self, make_world):
        world = make_world(policy=RoutingPolicy.DIRECTION)
        world.add_host("a", waypoint=EAST, speed=2.0)
        world.add_host("slow", position=(0, 1), waypoint=(10, 1), speed=1.0)
        world.add_host("fast", position=(0, 2), waypoint=(10, 2), speed=3.0)
        world.connect("a", "slow")
        world.connect("a", "fast")
        router = world.engine.router("a")

        admitted = router.policy.filter_contacts(router, self._contacts(world, "a"))

        assert [c.peer for c in admitted] == ["fast"]

    def test_no_own_heading_admits_nobody(self, direction_world):
        world = direction_world
        world.connect("c", "a")
        router = world.engine.router("c")
        assert router.policy.filter_contacts(router, self._contacts(world, "c")) == []

    def test_peer_without_heading_skipped(self, direction_world):
        world = direction_world
        world.connect("a", "c")
        router = world.engine.router("a")
        assert router.policy.filter_contacts(router, self._contacts(world, "a")) == []

    def test_sector_bookkeeping(self, direction_world):
        world = direction_world
        router_a = world.engine.router("a")
        router_b = world.engine.router("b")
        policy = router_a.policy
        assert isinstance(policy, DirectionFilter)

        msg = world.engine.create_message("a", "m1", destination="c", size=10)
        contact = Contact(local="a", peer="b")

        assert policy.allows(router_a, msg, contact, router_b)
        assert policy.is_candidate(router_a, msg, [contact])

        msg.state.sectors_sent.add(policy.sector_of_host("b"))

        assert not policy.allows(router_a, msg, contact, router_b)
        assert not policy.is_candidate(router_a, msg, [contact])

    def test_message_without_sector_state(self, direction_world):
        world = direction_world
        router_a = world.engine.router("a")
        msg = Message(id="m", source="a", destination="c", size=1, copies_left=3)
        with pytest.raises(MissingReplicationState):
            router_a.policy.is_candidate(router_a, msg, [Contact(local="a", peer="b")])


# ============================================================================
# Contact history
# ============================================================================

class TestStrata:

    def test_first_hop_counts(self):
        strata = Strata()
        assert strata.add_first_hop("x") == 1
        assert strata.add_first_hop("x") == 2
        assert strata.first_hop == {"x": 2}

    def test_learns_from_peer_excluding_self_and_known(self):
        mine = Strata(first_hop={"p": 1})
        theirs = Strata(first_hop={"me": 3, "d": 1, "p": 1}, multi_hop={"e"}, mules={"m"})

        learned = mine.add_multi_hop(theirs, "me", mule_hosts=["m"])

        assert sorted(learned) == ["d", "e", "m"]
        assert mine.multi_hop == {"d", "e", "m"}
        assert mine.mules == {"m"}
        assert "me" not in mine.known_hosts()

    def test_direct_encounter_leaves_multi_hop(self):
        strata = Strata(multi_hop={"d"})
        strata.add_first_hop("d")
        assert "d" in strata.first_hop
        assert "d" not in strata.multi_hop

    def test_strata_stay_disjoint(self):
        mine = Strata()
        for peer in ("p", "q", "r"):
            mine.add_first_hop(peer)
            mine.add_multi_hop(Strata(first_hop={"p": 1, "x": 1, "y": 2}), "me")
        mine.add_first_hop("x")
        assert not set(mine.first_hop) & mine.multi_hop
        assert mine.multi_hop == {"y"}


class TestBufferPressure:

    def test_ratio(self):
        assert buffer_ratio(1000, 250) == 4.0
        assert buffer_ratio(1000, 0) == float("inf")

    def test_low_and_high(self):
        assert running_low(1000, 100, 4)
        assert not running_low(1000, 250, 4)
        assert running_high(1000, 1000, 2)
        assert not running_high(1000, 500, 2)

    def test_monotonic_in_free_space(self):
        lows = [running_low(1000, free, 4) for free in range(0, 1001, 10)]
        highs = [running_high(1000, free, 2) for free in range(0, 1001, 10)]
        # low: True then False as free grows; high: False then True
        assert lows == sorted(lows, reverse=True)
        assert highs == sorted(highs)


class TestContactHistoryFilter:

    @pytest.fixture
    def pair(self, make_world):
        """x and y with 1000 byte buffers; x holds a message for d."""
        world = make_world(policy=RoutingPolicy.CONTACT_HISTORY, buffer_size=1_000)
        world.add_host("x")
        world.add_host("y")
        msg = world.engine.create_message("x", "m1", destination="d", size=100)
        return world, msg

    def _allows(self, world, msg):
        x, y = world.engine.router("x"), world.engine.router("y")
        return x.policy.allows(x, msg, Contact(local="x", peer="y"), y)

    def test_forwards_to_better_connected_peer_with_room(self, pair):
        world, msg = pair
        x, y = world.engine.router("x"), world.engine.router("y")
        x.policy.strata.first_hop["d"] = 2
        y.policy.strata.first_hop["d"] = 5

        # x: 800 of 1000 used (ratio 5, low); y: empty (ratio 1, high)
        world.engine.create_message("x", "fill", destination="z", size=700)

        assert self._allows(world, msg)

    def test_not_forwarded_without_peer_headroom(self, pair):
        world, msg = pair
        x, y = world.engine.router("x"), world.engine.router("y")
        x.policy.strata.first_hop["d"] = 2
        y.policy.strata.first_hop["d"] = 5
        world.engine.create_message("x", "fill", destination="z", size=700)

        # y: 600 of 1000 used (ratio 2.5, not high)
        world.engine.create_message("y", "y_fill", destination="z", size=600)

        assert not self._allows(world, msg)

    def test_not_forwarded_when_own_buffer_roomy(self, pair):
        world, msg = pair
        x, y = world.engine.router("x"), world.engine.router("y")
        x.policy.strata.first_hop["d"] = 2
        y.policy.strata.first_hop["d"] = 5
        assert not self._allows(world, msg)

    def test_peer_headroom_from_its_own_capacity(self, make_world):
        world = make_world(
            policy=RoutingPolicy.CONTACT_HISTORY,
            buffer_size=1_000,
            mule_buffer_threshold=100_000,
        )
        world.add_host("x")
        world.add_host("y", buffer_size=10_000)
        msg = world.engine.create_message("x", "m1", destination="d", size=100)
        x, y = world.engine.router("x"), world.engine.router("y")
        x.policy.strata.first_hop["d"] = 2
        y.policy.strata.first_hop["d"] = 5

        # x: 800 of 1000 used (ratio 5, low)
        world.engine.create_message("x", "fill", destination="z", size=700)
        # y: 600 used; would be ratio 2.5 in 1000 bytes, is ~1.06 in 10000
        world.engine.create_message("y", "y_fill", destination="z", size=600)

        assert x.buffer.capacity == 1_000
        assert y.buffer.capacity == 10_000
        assert not x.policy.is_mule("y")
        assert x.policy.allows(x, msg, Contact(local="x", peer="y"), y)

    def test_peer_met_destination_less_often(self, pair):
        world, msg = pair
        x, y = world.engine.router("x"), world.engine.router("y")
        x.policy.strata.first_hop["d"] = 5
        y.policy.strata.first_hop["d"] = 2
        world.engine.create_message("x", "fill", destination="z", size=700)
        assert not self._allows(world, msg)

    def test_multi_hop_knowledge_defers_to_first_hop_peer(self, pair):
        world, msg = pair
        x, y = world.engine.router("x"), world.engine.router("y")
        x.policy.strata.multi_hop.add("d")
        y.policy.strata.first_hop["d"] = 1
        world.engine.create_message("x", "fill", destination="z", size=700)
        assert self._allows(world, msg)

    def test_peer_knows_destination_we_do_not(self, pair):
        world, msg = pair
        y = world.engine.router("y")
        y.policy.strata.multi_hop.add("d")
        assert self._allows(world, msg)

    def test_nobody_knows_destination(self, pair):
        world, msg = pair
        assert not self._allows(world, msg)

    def test_mule_that_knows_destination(self, make_world):
        world = make_world(
            policy=RoutingPolicy.CONTACT_HISTORY,
            buffer_size=1_000,
            mule_buffer_threshold=5_000,
        )
        world.add_host("x")
        world.add_host("y", buffer_size=5_000)
        msg = world.engine.create_message("x", "m1", destination="d", size=100)
        x, y = world.engine.router("x"), world.engine.router("y")
        x.policy.strata.first_hop["d"] = 9
        y.policy.strata.multi_hop.add("d")

        assert x.policy.is_mule("y")
        assert x.policy.allows(x, msg, Contact(local="x", peer="y"), y)

    def test_contact_up_updates_strata(self, history_world):
        world = history_world
        world.connect("b", "c")
        world.connect("a", "b")

        a = world.engine.router("a").policy
        b = world.engine.router("b").policy
        assert isinstance(a, ContactHistoryFilter)

        assert a.strata.first_hop == {"b": 1}
        assert a.strata.multi_hop == {"c"}
        assert b.strata.first_hop == {"c": 1, "a": 1}

        world.disconnect("a", "b")
        world.connect("a", "b")
        assert a.strata.first_hop == {"b": 2}

        world.connect("a", "c")
        assert a.strata.first_hop == {"b": 2, "c": 1}
        assert "c" not in a.strata.multi_hop

    def test_contact_up_tags_mules(self, history_world):
        world = history_world
        world.add_host("mule", buffer_size=10_000)
        world.connect("mule", "c")
        world.connect("a", "mule")
        world.connect("b", "a")

        a = world.engine.router("a").policy
        b = world.engine.router("b").policy
        assert a.strata.mules == {"mule"}
        assert "mule" in b.strata.mules
        assert "mule" in b.strata.multi_hop
