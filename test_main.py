import json
import sys, os
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest
import main
from universal.global_clock import clock


class SteppingTime:
    """Time source that moves forward a fixed step on every read."""

    def __init__(self, step: float):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


@pytest.fixture
def input_files(tmp_path):
    infra = {
        "node_coords": {f"M{i}": [i * 0.005, 0.0] for i in range(5)},
        "ways": {"L": {"nodes": [f"M{i}" for i in range(5)], "bidi": False}},
    }
    services = {
        "services": [{
            "name": "Line", "color": "#fccc0a", "bullet": "Q",
            "stop_node_ids": ["M2"], "route_way_ids": ["L"],
        }]
    }
    infra_path = tmp_path / "infra.json"
    services_path = tmp_path / "services.json"
    infra_path.write_text(json.dumps(infra), encoding="utf-8")
    services_path.write_text(json.dumps(services), encoding="utf-8")
    return str(infra_path), str(services_path)


def test_fixed_step_run(input_files):
    infra, services = input_files
    assert main.main(["--infra", infra, "--services", services,
                      "--duration", "30", "--step", "1"]) == 0


def test_clock_driven_run_uses_shared_clock(input_files, monkeypatch):
    infra, services = input_files
    monkeypatch.setattr(clock, "_time_source", SteppingTime(0.5))
    monkeypatch.setattr(clock, "tick_interval", 0.0)
    monkeypatch.setattr(clock, "time_multiplier", clock.time_multiplier)
    monkeypatch.setattr(clock, "elapsed_sim_s", 0.0)
    listeners_before = list(clock._listeners)

    assert main.main(["--infra", infra, "--services", services,
                      "--duration", "20", "--step", "0", "--rate", "2"]) == 0

    assert clock.time_multiplier == 2.0
    assert clock.elapsed_sim_s >= 20.0
    assert not clock.running
    assert clock._listeners == listeners_before


def test_missing_input_file(tmp_path, input_files):
    _, services = input_files
    missing = str(tmp_path / "absent.json")
    assert main.main(["--infra", missing, "--services", services]) == 1
