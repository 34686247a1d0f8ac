"""Test the async tick runner."""
import asyncio

import pytest

from engine.engine import Engine
from engine.model import OutboundMessage, State, Unit
from runtime.runner import TickRunner

GATEWAY = (53.1975, 10.8451)


def make_runner(**kw) -> TickRunner:
    units = {1: Unit(id=1, name="U1", type="Vehicle", position=GATEWAY, send_interval=1.0)}
    return TickRunner(Engine(7, State(ts_ms=0, units=units, gateway=GATEWAY)), **kw)


@pytest.mark.asyncio
async def test_tick_advances_clock():
    runner = make_runner(tick_ms=500)
    await runner.tick()
    await runner.tick()
    assert runner.ticks == 2
    assert runner.engine.state.ts_ms == 1000


@pytest.mark.asyncio
async def test_execute_runs_operation_under_lock():
    runner = make_runner()
    group = await runner.execute(runner.engine.add_group, "Crew")
    assert runner.engine.state.groups[group.id].name == "Crew"


@pytest.mark.asyncio
async def test_start_and_stop():
    runner = make_runner(tick_ms=10, time_compression=10.0)
    await runner.start()
    assert runner.running
    await asyncio.sleep(0.05)
    await runner.stop()
    assert not runner.running
    assert runner.ticks > 0
    ticks = runner.ticks
    await asyncio.sleep(0.02)
    assert runner.ticks == ticks


@pytest.mark.asyncio
async def test_snapshot_drains_messages():
    runner = make_runner()
    state = runner.engine.state
    runner.engine.store.replace(
        State(ts_ms=state.ts_ms, units=state.units, gateway=GATEWAY,
              outbox=(OutboundMessage(1, "U1", "Acknowledged.", 0),)),
        runner.engine.store.version)
    snap = await runner.snapshot()
    assert len(snap.pending_messages) == 1
    assert (await runner.snapshot()).pending_messages == []


def test_time_compression_is_clamped():
    runner = make_runner(tick_ms=1000)
    runner.set_time_compression(5000.0)
    assert runner.time_compression == 1000.0
    runner.set_time_compression(0.0)
    assert runner.time_compression == 0.1
    assert runner.sleep_s == pytest.approx(10.0)
