"""Test battery drain, charging and status inference."""
import pytest

from engine.model import Unit
from engine.power import apply_power, infer_status, next_battery


def make_unit(**kw) -> Unit:
    return Unit(id=1, name="U1", type="Vehicle", position=(53.0, 10.0), **kw)


def test_drain_per_five_seconds():
    assert next_battery(50.0, False, 5.0) == pytest.approx(49.95)
    assert next_battery(50.0, False, 10.0) == pytest.approx(49.9)


def test_external_power_charges_and_caps():
    assert next_battery(50.0, True, 5.0) == 50.5
    assert next_battery(99.9, True, 5.0) == 100.0


def test_battery_never_negative():
    assert next_battery(0.0, False, 500.0) == 0.0


def test_depleted_unit_goes_offline():
    u = make_unit(battery=0.02, status="Moving", speed=40.0, hop_count=2, signal_strength=-80)
    out = apply_power(u, 5.0)
    assert out.battery == 0.0
    assert not out.is_active
    assert out.status == "Offline"
    assert out.hop_count == 0
    assert out.signal_strength == -120


def test_depletion_overrides_sticky_alarm():
    out = apply_power(make_unit(battery=0.01, status="Alarm"), 5.0)
    assert out.status == "Offline"
    assert not out.is_active


@pytest.mark.parametrize("status", ["Alarm", "Maintenance"])
def test_sticky_statuses_survive_inference(status):
    assert infer_status(status, 50.0, False, 30.0) == status
    assert apply_power(make_unit(status=status, speed=30.0), 5.0).status == status


def test_status_from_speed():
    assert infer_status("Online", 50.0, False, 5.0) == "Moving"
    assert infer_status("Moving", 50.0, False, 0.5) == "Idle"
    assert infer_status("Idle", 0.0, False, 0.0) == "Offline"


def test_externally_powered_empty_battery_stays_active():
    out = apply_power(make_unit(battery=0.0, is_externally_powered=True), 2.0)
    assert out.is_active
    assert out.status == "Idle"
    assert out.battery == pytest.approx(0.2)


def test_short_intervals_still_drain():
    battery = 100.0
    for _ in range(4000):
        battery = next_battery(battery, False, 0.25)
    assert next_battery(100.0, False, 0.25) < 100.0
    assert battery == pytest.approx(90.0)
