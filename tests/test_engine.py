"""Test the tick pipeline and administrative operations."""
from dataclasses import FrozenInstanceError

import pytest

from engine.chatter import emit_chatter
from engine.engine import Engine
from engine.errors import ConfigurationConflictError, InvalidRequestError, UnknownEntityError
from engine.geo import destination_point, distance_km
from engine.model import Group, OutboundMessage, PatrolAssignment, State, Unit
from engine.power import force_offline
from engine.rng import DRNG

GATEWAY = (53.1975, 10.8451)


def make_unit(uid: int, position=GATEWAY, **kw) -> Unit:
    kw.setdefault("type", "Vehicle")
    kw.setdefault("send_interval", 5.0)
    return Unit(id=uid, name=f"U{uid}", position=position, **kw)


def make_engine(units, seed: int = 42, **kw) -> Engine:
    kw.setdefault("gateway", GATEWAY)
    state = State(ts_ms=0, units={u.id: u for u in units}, **kw)
    return Engine(seed, state)


def assert_invariants(eng: Engine):
    for u in eng.state.units.values():
        assert 0.0 <= u.battery <= 100.0
        if not u.is_active:
            assert u.status == "Offline"
            assert u.hop_count == 0
            assert u.signal_strength == -120


def test_depleted_battery_takes_unit_offline():
    u = make_unit(1, battery=0.02, status="Moving", speed=40.0)
    eng = make_engine([u])
    eng.step(5000)
    out = eng.state.units[1]
    assert out.battery == 0.0
    assert not out.is_active
    assert out.status == "Offline"
    assert out.hop_count == 0


def test_unit_waits_for_its_send_interval():
    u = make_unit(1, send_interval=10.0, speed=50.0, heading=90.0, battery=80.0)
    eng = make_engine([u])
    eng.step(5000)
    out = eng.state.units[1]
    assert out.position == u.position
    assert out.timestamp == 0
    assert out.battery == 80.0

    eng.step(5000)
    out = eng.state.units[1]
    assert out.timestamp == 10000
    assert out.battery < 80.0


def test_externally_powered_units_update_every_two_seconds():
    u = make_unit(1, send_interval=30.0, is_externally_powered=True, battery=50.0)
    eng = make_engine([u])
    eng.step(2000)
    out = eng.state.units[1]
    assert out.timestamp == 2000
    assert out.battery == pytest.approx(50.2)


def test_externally_powered_units_never_run_dry():
    u = make_unit(1, battery=0.01, is_externally_powered=True)
    eng = make_engine([u])
    for _ in range(50):
        eng.step(1000)
        assert eng.state.units[1].battery > 0


def test_patrol_keeps_units_inside_disc():
    center = (53.20, 10.85)
    units = [make_unit(i, center, group_id=1) for i in range(1, 5)]
    eng = make_engine(units, groups={1: Group(1, "Patrol")},
                      assignments={1: PatrolAssignment(1, center, 1.0)})
    moved = False
    for _ in range(300):
        eng.step(5000)
        for u in eng.state.units.values():
            assert distance_km(center, u.position) <= 1.0
            moved = moved or u.position != center
    assert moved


def test_three_nearest_units_head_for_alarm():
    alarm = make_unit(1, GATEWAY, type="Personnel", status="Alarm")
    others = [make_unit(i + 2, destination_point(GATEWAY, 0.0, d))
              for i, d in enumerate([0.5, 0.8, 1.2, 2.0])]
    eng = make_engine([alarm] + others)
    eng.step(5000)
    after = eng.state.units
    for u in others[:3]:
        assert after[u.id].speed > 0
        assert distance_km(after[u.id].position, after[1].position) < \
            distance_km(u.position, alarm.position)


def test_rally_brings_units_to_gateway():
    units = [make_unit(i, destination_point(GATEWAY, 60.0 * i, 2.0)) for i in range(1, 4)]
    eng = make_engine(units, is_rallying=True)
    for _ in range(40):
        eng.step(5000)
    for u in eng.state.units.values():
        assert distance_km(u.position, GATEWAY) <= 0.6


def test_invariants_hold_over_many_ticks():
    rng = DRNG(9)
    units = []
    for i in range(1, 16):
        pos = destination_point(GATEWAY, rng.uniform(0, 360), rng.uniform(0, 6))
        units.append(make_unit(
            i, pos,
            type=["Vehicle", "Personnel", "Air", "Support"][i % 4],
            battery=[100.0, 0.3, 0.0, 55.0][i % 4],
            status="Alarm" if i == 5 else "Online",
            group_id=(i % 3) + 1,
            send_interval=float(1 + i % 7),
            is_externally_powered=(i == 7),
        ))
    eng = make_engine(units, groups={g: Group(g, f"G{g}") for g in (1, 2, 3)},
                      assignments={2: PatrolAssignment(2, GATEWAY, 1.5)})
    for tick in range(200):
        if tick == 100:
            eng.set_rallying(True)
        eng.step(1000)
        assert_invariants(eng)


def test_no_gateway_skips_topology():
    u = make_unit(1, destination_point(GATEWAY, 0.0, 50.0), hop_count=2, signal_strength=-85)
    eng = make_engine([u], gateway=None)
    eng.step(5000)
    out = eng.state.units[1]
    assert out.hop_count == 2
    assert out.signal_strength == -85
    assert out.is_active


def test_faulty_unit_keeps_previous_state(monkeypatch):
    import engine.engine as engine_mod
    real_integrate = engine_mod.integrate

    def flaky(unit, directive, elapsed_s):
        if unit.id == 2:
            raise RuntimeError("boom")
        return real_integrate(unit, directive, elapsed_s)

    monkeypatch.setattr(engine_mod, "integrate", flaky)
    eng = make_engine([make_unit(1, speed=40.0), make_unit(2, speed=40.0)])
    eng.step(5000)
    assert eng.state.units[1].timestamp == 5000
    assert eng.state.units[2].timestamp == 0
    assert eng.state.units[2].position == GATEWAY


def test_same_seed_same_trajectory():
    def run():
        units = [make_unit(i, destination_point(GATEWAY, 45.0 * i, 1.0), speed=10.0)
                 for i in range(1, 6)]
        eng = make_engine(units, seed=123)
        for _ in range(50):
            eng.step(1000)
        return [(u.position, u.heading, u.speed, u.battery) for u in eng.state.units.values()]

    assert run() == run()


def test_chatter_skips_offline_units():
    live = make_unit(1)
    dead = make_unit(2, status="Offline", is_active=False, battery=0.0)
    units, msgs = emit_chatter([live, dead], DRNG(1), 1234, p=1.0)
    assert [m.unit_id for m in msgs] == [1]
    assert units[0].last_message.source == "unit"
    assert units[0].last_message.timestamp == 1234
    assert units[1].last_message is None


def test_snapshot_drains_pending_messages():
    eng = make_engine([make_unit(1)], outbox=(OutboundMessage(1, "U1", "All clear.", 10),))
    first = eng.snapshot()
    assert [m.text for m in first.pending_messages] == ["All clear."]
    assert eng.snapshot().pending_messages == []


# --- administrative operations -------------------------------------------


def test_add_unit_defaults():
    eng = make_engine([make_unit(1)])
    u = eng.add_unit(unit_type="Air")
    assert u.id == 2
    assert u.name == "Air-2"
    assert u.hop_count == 1
    assert u.signal_strength == -75
    assert u.status == "Online"
    assert distance_km(u.position, GATEWAY) < 2.0
    assert eng.state.units[2] == u


def test_invalid_request_leaves_state_unchanged():
    eng = make_engine([make_unit(1)])
    version = eng.store.version
    with pytest.raises(InvalidRequestError):
        eng.add_unit(unit_type="Submarine")
    with pytest.raises(UnknownEntityError):
        eng.charge_unit(99)
    with pytest.raises(UnknownEntityError):
        eng.assign_patrol(7, GATEWAY, 1.0)
    assert eng.store.version == version
    assert list(eng.state.units) == [1]


def test_remove_group_detaches_members():
    u = make_unit(1, group_id=1, patrol_target=GATEWAY)
    eng = make_engine([u], groups={1: Group(1, "A")},
                      assignments={1: PatrolAssignment(1, GATEWAY, 1.0)})
    eng.remove_group(1)
    out = eng.state.units[1]
    assert out.group_id is None
    assert out.patrol_target is None
    assert eng.state.assignments == {}
    assert eng.state.groups == {}


def test_new_assignment_resets_patrol_state():
    u = make_unit(1, group_id=1, patrol_target=GATEWAY, patrol_target_index=3)
    eng = make_engine([u], groups={1: Group(1, "A")})
    eng.assign_pendulum(1, [GATEWAY, destination_point(GATEWAY, 0.0, 1.0)])
    assert eng.state.units[1].patrol_target is None
    assert eng.state.units[1].patrol_target_index == 0

    eng.assign_patrol(1, GATEWAY, 0.5)
    assert eng.state.assignments[1].kind == "patrol"
    assert eng.state.units[1].patrol_target_index is None

    with pytest.raises(InvalidRequestError):
        eng.assign_pendulum(1, [])


def test_charge_lifts_offline():
    eng = make_engine([make_unit(1, battery=0.0, status="Offline", is_active=False)])
    out = eng.charge_unit(1)
    assert out.battery == 100.0
    assert out.status == "Online"
    assert out.is_active


def test_send_message_to_group_reaches_active_members_only():
    units = [make_unit(1, group_id=1), make_unit(2, group_id=2),
             make_unit(3, group_id=1, is_active=False, status="Offline", battery=0.0)]
    eng = make_engine(units, groups={1: Group(1, "A"), 2: Group(2, "B")})
    assert eng.send_message("Hold position", 1) == 1
    assert eng.state.units[1].last_message.source == "control"
    assert eng.state.units[2].last_message is None
    assert eng.state.units[3].last_message is None


def test_reposition_requires_gateway():
    units = [make_unit(i, destination_point(GATEWAY, 0.0, 20.0), speed=30.0) for i in (1, 2)]
    eng = make_engine(units)
    eng.reposition_all_units(1.0)
    for u in eng.state.units.values():
        assert distance_km(u.position, GATEWAY) <= 1.0 + 1e-9
        assert u.speed == 0.0

    eng.set_gateway_position(None)
    with pytest.raises(InvalidRequestError):
        eng.reposition_all_units(1.0)


def test_mapping_in_use_cannot_be_removed():
    eng = make_engine([make_unit(1, type="Vehicle", status="Idle")])
    with pytest.raises(ConfigurationConflictError):
        eng.remove_type_mapping(0)
    with pytest.raises(ConfigurationConflictError):
        eng.remove_status_mapping(2)
    with pytest.raises(ConfigurationConflictError):
        eng.add_type_mapping(0, "Boat")

    eng.remove_type_mapping(5)
    assert 5 not in eng.state.type_mapping
    eng.remove_status_mapping(5)
    assert "Maintenance" not in eng.state.status_mapping.values()
    assert eng.state.type_mapping[0] == "Vehicle"


def test_set_status_validates_against_mapping():
    eng = make_engine([make_unit(1)])
    assert eng.set_unit_status(1, "Alarm").status == "Alarm"
    with pytest.raises(InvalidRequestError):
        eng.set_unit_status(1, "Sleeping")
    eng.add_status_mapping(10, "Sleeping")
    assert eng.set_unit_status(1, "Sleeping").status == "Sleeping"


def test_sub_second_interval_drains_battery():
    eng = make_engine([make_unit(1, type="Personnel", send_interval=0.25)])
    for _ in range(4000):
        eng.step(250)
    assert eng.state.units[1].battery == pytest.approx(90.0)


def test_offline_unit_status_cannot_be_set():
    eng = make_engine([force_offline(make_unit(1, battery=0.0))])
    version = eng.store.version
    with pytest.raises(InvalidRequestError):
        eng.set_unit_status(1, "Alarm")
    assert eng.store.version == version
    out = eng.snapshot().units[0]
    assert not out.is_active
    assert out.status == "Offline"

    assert eng.charge_unit(1).is_active
    assert eng.set_unit_status(1, "Alarm").status == "Alarm"


def test_snapshot_units_are_read_only():
    eng = make_engine([make_unit(1)])
    unit = eng.snapshot().units[0]
    with pytest.raises(FrozenInstanceError):
        unit.battery = 0.0
    assert eng.state.units[1].battery == 100.0


def test_failed_tick_keeps_previous_state(monkeypatch):
    import engine.engine as engine_mod

    def broken(*args, **kwargs):
        raise RuntimeError("topology failure")

    monkeypatch.setattr(engine_mod, "build_topology", broken)
    eng = make_engine([make_unit(1, speed=40.0)])
    version = eng.store.version
    assert eng.step(5000) == []
    assert eng.store.version == version
    assert eng.state.ts_ms == 0
    assert eng.state.units[1].timestamp == 0
