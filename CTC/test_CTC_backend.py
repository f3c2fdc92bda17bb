import sys, os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import logging
import math
import pytest
from CTC.CTC_backend import FleetManager
from trackModel.route_backend import TrackSection, TrainRoute
from trackModel.track_model_backend import TrackNetwork
from trainModel.train_model_backend import Train
from universal.global_clock import SimulationClock
from universal.universal import ServiceDefinition, TrainState


def line_infra():
    coords = {f"M{i}": [i * 0.005, 0.0] for i in range(11)}
    coords["K1"] = [0.0, 0.001]
    return {
        "node_coords": coords,
        "ways": {
            "L": {"nodes": [f"M{i}" for i in range(0, 5)], "bidi": False},
            "L2": {"nodes": [f"M{i}" for i in range(4, 11)], "bidi": False},
            "S": {"nodes": ["M0", "K1"], "bidi": False},
            "H": {"nodes": ["ghost1", "ghost2"], "bidi": False},
        },
    }


def make_route(network, way_ids, stops=()):
    return TrainRoute.from_service(network, ServiceDefinition(
        name="Line", color="#fccc0a", bullet="Q",
        stop_node_ids=list(stops), way_ids=list(way_ids)))


@pytest.fixture
def network():
    return TrackNetwork(line_infra())


@pytest.fixture
def ctc(network):
    """Fleet manager on the sample line."""
    return FleetManager(network)


@pytest.fixture
def route(network):
    return make_route(network, ["L", "L2"])


# --------------------------------------------------------
# Test: dispatch_train
# --------------------------------------------------------

def test_dispatch_train_assigns_sequential_ids(ctc, route):
    assert ctc.dispatch_train(route) == "train-1"
    assert ctc.dispatch_train(route, start_offset_m=500.0) == "train-2"
    assert [t.train_id for t in ctc.get_trains()] == ["train-1", "train-2"]
    assert len(ctc) == 2

def test_dispatch_train_starts_powering(ctc, route):
    train = ctc.get_train(ctc.dispatch_train(route, dwell_time=25.0))
    assert train.acceleration == train.base_acceleration
    assert train.dwell_time == 25.0
    assert train.route_position == 0.0

def test_dispatch_rejected_on_empty_network():
    fleet = FleetManager(TrackNetwork())
    route = TrainRoute(fleet.network)
    assert fleet.dispatch_train(route) is None
    assert len(fleet) == 0

def test_dispatch_rejected_without_geometry(ctc, network):
    route = TrainRoute.from_sections(network, [TrackSection(network, "H")])
    assert ctc.dispatch_train(route) is None
    assert ctc.dispatch_train(None) is None

def test_dispatch_rejected_off_route_keeps_numbering(ctc, route):
    assert ctc.dispatch_train(route, start_offset_m=route.total_distance + 1.0) is None
    assert ctc.dispatch_train(route) == "train-1"

def test_on_train_created_callback(ctc, route):
    created = []
    ctc.on_train_created = lambda train_id, r: created.append((train_id, r))
    ctc.dispatch_train(route)
    assert created == [("train-1", route)]

# --------------------------------------------------------
# Test: tick
# --------------------------------------------------------

def test_tick_rejects_negative_dt(ctc, route):
    ctc.dispatch_train(route)
    with pytest.raises(ValueError):
        ctc.tick(-0.1)
    with pytest.raises(ValueError):
        ctc.tick(0.1, rate=-1.0)

def test_tick_scales_by_rate(ctc, route):
    train = ctc.get_train(ctc.dispatch_train(route))
    ctc.tick(0.1, rate=10.0)
    assert ctc.elapsed_sim_s == pytest.approx(1.0)
    assert train.velocity == pytest.approx(1.0)
    assert train.route_position == pytest.approx(1.0)

def test_zero_rate_freezes_fleet(ctc, route):
    train = ctc.get_train(ctc.dispatch_train(route))
    ctc.set_speed(0.0)
    ctc.tick(1.0)
    assert train.route_position == 0.0
    assert ctc.elapsed_sim_s == 0.0

def test_set_speed_clamps_negative(ctc):
    ctc.set_speed(-3.0)
    assert ctc.time_multiplier == 0.0

def test_train_crosses_section_boundary(ctc, route):
    first_length = route.way_sections[0].get_distance()
    train = ctc.get_train(
        ctc.dispatch_train(route, start_offset_m=first_length - 0.5))
    ctc.tick(1.0)
    assert train.section_index == 1
    assert train.way_section.way_id == "L2"
    assert train.distance_along == 0.0
    assert len(ctc) == 1

def test_train_removed_at_route_end(ctc, network):
    removed = []
    ctc.on_train_removed = removed.append
    train_id = ctc.dispatch_train(make_route(network, ["S"]))

    finished = []
    for _ in range(30):
        finished = ctc.tick(1.0)
        if finished:
            break
    assert finished == [train_id]
    assert removed == [train_id]
    assert ctc.get_train(train_id) is None
    assert len(ctc) == 0

def test_error_in_one_train_is_contained(ctc, route, monkeypatch, caplog):
    broken = ctc.get_train(ctc.dispatch_train(route))
    healthy = ctc.get_train(ctc.dispatch_train(route, start_offset_m=1000.0))

    def boom(dt, others):
        raise RuntimeError("corrupt state")
    monkeypatch.setattr(broken, "update", boom)

    with caplog.at_level(logging.ERROR, logger="CTC.CTC_backend"):
        ctc.tick(1.0)

    assert healthy.route_position == pytest.approx(1001.0)
    assert ctc.get_train(broken.train_id) is broken
    assert any("train-1" in r.getMessage() for r in caplog.records)

def test_error_changing_section_is_contained(ctc, network, route, monkeypatch, caplog):
    first_length = route.way_sections[0].get_distance()
    broken = ctc.get_train(
        ctc.dispatch_train(route, start_offset_m=first_length - 0.5))
    shuttle = make_route(network, ["S"])
    finishing_id = ctc.dispatch_train(
        shuttle, start_offset_m=shuttle.total_distance - 0.5)

    def boom():
        raise RuntimeError("bad geometry")
    monkeypatch.setattr(broken, "move_to_next_section", boom)

    with caplog.at_level(logging.ERROR, logger="CTC.CTC_backend"):
        finished = ctc.tick(1.0)

    assert finished == [finishing_id]
    assert ctc.get_train(finishing_id) is None
    assert ctc.get_train(broken.train_id) is broken
    assert any(broken.train_id in r.getMessage() for r in caplog.records)

def test_trains_dispatched_at_route_start_separate(ctc, route):
    first = ctc.get_train(ctc.dispatch_train(route))
    second = ctc.get_train(ctc.dispatch_train(route))

    snaps = ctc.snapshot()
    assert first.distance_to_train_ahead(snaps) == math.inf
    assert second.distance_to_train_ahead(snaps) == 0.0

    for _ in range(200):
        ctc.tick(0.5)
        assert second.route_position <= first.route_position
    assert first.route_position - second.route_position >= (
        Train.MIN_SEPARATION_M - 1e-6)
    assert second.route_position > 0

def test_tick_uses_pre_tick_snapshot(network, route):
    """Update order does not change the outcome of one tick."""
    results = []
    for leader_first in (True, False):
        fleet = FleetManager(network)
        if leader_first:
            leader_id = fleet.dispatch_train(route, start_offset_m=105.0)
            trailer_id = fleet.dispatch_train(route, start_offset_m=100.0)
        else:
            trailer_id = fleet.dispatch_train(route, start_offset_m=100.0)
            leader_id = fleet.dispatch_train(route, start_offset_m=105.0)
        for train in fleet.get_trains():
            train.velocity = 10.0
            train.acceleration = 0.0

        fleet.tick(1.0)
        results.append((fleet.get_train(leader_id).route_position,
                        fleet.get_train(trailer_id).route_position))

    assert results[0] == pytest.approx(results[1])
    leader_position, trailer_position = results[0]
    assert leader_position == pytest.approx(116.0)
    # emergency braking, then held at the minimum separation from the
    # leader's pre-tick position
    assert trailer_position == pytest.approx(104.0)

@pytest.mark.parametrize("rate", [1.0, 20.0, 100.0])
def test_followers_never_pass(network, route, rate):
    fleet = FleetManager(network)
    trailer_id = fleet.dispatch_train(route)
    leader_id = fleet.dispatch_train(route, start_offset_m=400.0)

    for _ in range(400):
        fleet.tick(0.1, rate=rate)
        trailer = fleet.get_train(trailer_id)
        leader = fleet.get_train(leader_id)
        if trailer is None or leader is None:
            break
        assert trailer.route_position <= leader.route_position

def test_trains_dwell_at_stops(network):
    fleet = FleetManager(network)
    train = fleet.get_train(
        fleet.dispatch_train(make_route(network, ["L"], ["M2"]), dwell_time=5.0))
    for _ in range(2000):
        fleet.tick(0.1)
        if train.is_at_stop:
            break
    assert train.state == TrainState.DWELLING
    assert train.remaining_dwell_time == 5.0

# --------------------------------------------------------
# Test: fleet management
# --------------------------------------------------------

def test_remove_train(ctc, route):
    train_id = ctc.dispatch_train(route)
    assert ctc.remove_train(train_id) is True
    assert ctc.remove_train(train_id) is False
    assert ctc.get_trains() == []

def test_reset_all_restarts_numbering(ctc, route):
    ctc.dispatch_train(route)
    ctc.dispatch_train(route)
    ctc.tick(1.0)
    ctc.reset_all()
    assert len(ctc) == 0
    assert ctc.elapsed_sim_s == 0.0
    assert ctc.dispatch_train(route) == "train-1"

def test_snapshot_and_report_state(ctc, route):
    ctc.dispatch_train(route)
    ctc.dispatch_train(route, start_offset_m=300.0)
    ctc.tick(1.0)

    snaps = ctc.snapshot()
    assert [s.train_id for s in snaps] == ["train-1", "train-2"]
    assert all(s.way_id == "L" for s in snaps)
    assert all(s.coordinates is not None for s in snaps)

    state = ctc.report_state()
    assert state["train_count"] == 2
    assert state["elapsed_sim_s"] == pytest.approx(1.0)
    assert state["trains"][1]["train_id"] == "train-2"

def test_clock_drives_fleet(ctc, route):
    times = iter([100.0, 101.0, 101.5])
    clock = SimulationClock(time_source=lambda: next(times))
    clock.set_speed(2.0)
    clock.register_listener(ctc.on_clock_tick)
    train = ctc.get_train(ctc.dispatch_train(route))

    clock.tick()
    assert ctc.elapsed_sim_s == 0.0
    clock.tick()
    assert ctc.elapsed_sim_s == pytest.approx(2.0)
    clock.tick()
    assert ctc.elapsed_sim_s == pytest.approx(3.0)
    assert train.route_position > 0
