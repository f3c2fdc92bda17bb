import math
import pytest
from universal.universal import (
    ConversionFunctions,
    DiagnosticKind,
    KinematicLimits,
    RouteDiagnostic,
    SectionRecord,
    ServiceDefinition,
    UserRouteRecord,
)

def test_mph_to_mps():
    """Test mph to m/s conversion."""
    result = ConversionFunctions.mph_to_mps(55)
    expected = 55 * 0.44704
    assert abs(result - expected) < 0.001
def test_mps_to_mph():
    """Test m/s to mph conversion."""
    result = ConversionFunctions.mps_to_mph(24.5872)
    expected = 24.5872 / 0.44704
    assert abs(result - expected) < 0.001

def test_km_to_meters():
    """Test km to meters conversion."""
    assert ConversionFunctions.km_to_meters(0.075) == pytest.approx(75.0)
    assert ConversionFunctions.meters_to_km(5.0) == pytest.approx(0.005)

def test_degrees_to_radians():
    """Test angle conversions."""
    assert ConversionFunctions.degrees_to_radians(180) == pytest.approx(math.pi)
    assert ConversionFunctions.radians_to_degrees(math.pi / 2) == pytest.approx(90.0)

def test_default_kinematic_limits():
    """Defaults match the fleet-wide performance limits."""
    limits = KinematicLimits()
    assert limits.base_acceleration == 1.0
    assert limits.base_deceleration == 2.0
    assert limits.emergency_deceleration == 5.0
    assert ConversionFunctions.mps_to_mph(limits.max_speed) == pytest.approx(60.0)

def test_route_diagnostic_is_frozen():
    diagnostic = RouteDiagnostic(DiagnosticKind.TOPOLOGICAL, "gap")
    with pytest.raises(AttributeError):
        diagnostic.message = "other"

def test_service_definition_from_dict():
    service = ServiceDefinition.from_dict({
        "name": "Broadway Local",
        "color": "#ee352e",
        "bullet": "1",
        "stop_node_ids": [101, "102"],
        "route_way_ids": [5, 6],
    })
    assert service.bullet == "1"
    assert service.stop_node_ids == ["101", "102"]
    assert service.way_ids == ["5", "6"]

def test_service_definition_defaults():
    service = ServiceDefinition.from_dict({})
    assert service.name == ""
    assert service.color == "#000000"
    assert service.way_ids == []

def test_user_route_record_to_dict():
    record = UserRouteRecord(
        id="abc", name="Crosstown", color="#6cbe45", bullet="G",
        way_sections=[SectionRecord("w1", "n1", "n2")], created_at=1700000000000)
    assert record.to_dict() == {
        "id": "abc",
        "name": "Crosstown",
        "color": "#6cbe45",
        "bullet": "G",
        "waySections": [{"wayId": "w1", "startNodeId": "n1", "endNodeId": "n2"}],
        "createdAt": 1700000000000,
    }

def test_user_route_record_from_dict_defaults():
    record = UserRouteRecord.from_dict({"id": "abc", "waySections": []})
    assert record.name == "My Route"
    assert record.color == "#0039a6"
    assert record.bullet == "R"
    assert record.created_at is None

@pytest.mark.parametrize("data", [
    {"name": "no id"},
    {"id": "abc", "waySections": [{"wayId": "w1", "startNodeId": "n1"}]},
    {"id": "abc", "waySections": [None]},
])
def test_user_route_record_from_dict_rejects_malformed(data):
    with pytest.raises(ValueError):
        UserRouteRecord.from_dict(data)

if __name__ == "__main__":
    pytest.main([__file__, "-v"])
