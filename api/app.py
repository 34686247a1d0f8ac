import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from engine.advisory import AdvisoryClient, build_analysis_request
from engine.commands import execute_command
from engine.engine import Engine
from engine.errors import (AdvisoryUnavailableError, ConfigurationConflictError,
                           InvalidRequestError, StaleStateError, UnknownEntityError)
from engine.model import Group, State, Unit
from engine.power import force_offline
from engine.rng import DRNG
from runtime.config import settings
from runtime.runner import TickRunner
from .schemas import (AnalysisResponse, AssignmentIn, CommandsIn, CommandsResponse, ConfigUpdate,
                      GatewayIn, GroupIn, MappingIn, MessageIn, PatrolIn, RallyIn, RepositionIn,
                      StartRequest, StatusIn, StepRequest, UnitCreate, UnitUpdate)

app = FastAPI(title="Mesh Fleet Simulator API")
runner: TickRunner | None = None
advisory = AdvisoryClient(settings.advisory_url, settings.advisory_timeout_s)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


app.add_exception_handler(UnknownEntityError, _error_handler(404))
app.add_exception_handler(InvalidRequestError, _error_handler(422))
app.add_exception_handler(ConfigurationConflictError, _error_handler(409))
app.add_exception_handler(StaleStateError, _error_handler(409))
app.add_exception_handler(AdvisoryUnavailableError, _error_handler(503))


def _make_initial_state(seed: int, now_ms: Optional[int] = None) -> State:
    """Create the default fleet scattered around the control center."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    rng = DRNG(seed)
    base = settings.gateway or (53.19745, 10.84507)

    def near():
        return (base[0] + rng.uniform(-0.5, 0.5) * 0.02, base[1] + rng.uniform(-0.5, 0.5) * 0.02)

    # (id, name, type, status, speed, heading, battery, send_interval, ext_power, group)
    fleet = [
        (1, "HLF-20", "Vehicle", "Online", 0, 45, 95, 5, False, 1),
        (2, "AT-1", "Personnel", "Online", 3, 180, 88, 10, False, 2),
        (3, "ELW-1", "Vehicle", "Alarm", 0, 270, 15, 5, False, 1),
        (4, "AT-2", "Personnel", "Offline", 0, 0, 0, 30, False, 2),
        (5, "DLK-23", "Vehicle", "Idle", 0, 90, 100, 8, True, 1),
        (6, "RTW", "Vehicle", "Moving", 45, 120, 75, 5, False, 3),
        (7, "NEF", "Vehicle", "Moving", 70, 110, 80, 5, False, 3),
        (8, "MTF", "Vehicle", "Idle", 0, 300, 90, 15, False, 1),
        (9, "Wassertrupp", "Support", "Online", 2, 210, 92, 10, False, 2),
        (10, "Einsatzleiter", "Personnel", "Online", 1, 0, 98, 10, False, 1),
    ]
    units = {}
    for uid, name, utype, status, speed, heading, battery, si, ext, gid in fleet:
        u = Unit(id=uid, name=name, type=utype, position=near(), status=status,
                 speed=float(speed), heading=float(heading), battery=float(battery),
                 send_interval=float(si), is_externally_powered=ext, group_id=gid,
                 timestamp=now_ms if battery > 0 else now_ms - 600_000)
        units[uid] = u if u.is_powered else force_offline(u)

    groups = {
        1: Group(1, "Command & Engines"),
        2: Group(2, "Crew"),
        3: Group(3, "Medical"),
    }
    return State(ts_ms=now_ms, units=units, groups=groups, gateway=settings.gateway,
                 max_range_km=settings.max_range_km)


def _require_runner() -> TickRunner:
    if not runner:
        raise HTTPException(400, "Simulation not initialised")
    return runner


def _unit_json(u: Unit) -> dict:
    return {
        "id": u.id,
        "name": u.name,
        "type": u.type,
        "status": u.status,
        "position": {"lat": u.position[0], "lng": u.position[1]},
        "speed": u.speed,
        "heading": u.heading,
        "battery": round(u.battery, 2),
        "is_externally_powered": u.is_externally_powered,
        "is_active": u.is_active,
        "timestamp": u.timestamp,
        "send_interval": u.send_interval,
        "signal_strength": u.signal_strength,
        "hop_count": u.hop_count,
        "group_id": u.group_id,
        "patrol_target": ({"lat": u.patrol_target[0], "lng": u.patrol_target[1]}
                          if u.patrol_target else None),
        "patrol_target_index": u.patrol_target_index,
        "last_message": ({"text": u.last_message.text, "timestamp": u.last_message.timestamp,
                          "source": u.last_message.source} if u.last_message else None),
    }


def _assignment_json(a) -> dict:
    if a.kind == "patrol":
        return {"kind": "patrol", "group_id": a.group_id,
                "target": {"lat": a.target[0], "lng": a.target[1]}, "radius_km": a.radius}
    return {"kind": "pendulum", "group_id": a.group_id,
            "points": [{"lat": p[0], "lng": p[1]} for p in a.points]}


@app.get("/")
async def root():
    """API root endpoint."""
    return {
        "message": "Mesh Fleet Simulator API",
        "docs": "/docs",
        "version": "1.0"
    }


@app.on_event("startup")
async def startup():
    """Initialize and optionally start the simulation on app startup."""
    global runner
    eng = Engine(seed=settings.seed, initial_state=_make_initial_state(settings.seed))
    runner = TickRunner(eng, tick_ms=settings.tick_ms, time_compression=settings.time_compression)
    if settings.autostart:
        await runner.start()


@app.on_event("shutdown")
async def shutdown():
    """Stop the simulation on app shutdown."""
    if runner:
        await runner.stop()


@app.post("/simulation/start")
async def start_simulation(req: StartRequest):
    """Start a fresh simulation with the specified seed."""
    await shutdown()
    global runner
    eng = Engine(seed=req.seed, initial_state=_make_initial_state(req.seed))
    runner = TickRunner(eng, tick_ms=settings.tick_ms, time_compression=settings.time_compression)
    if req.run:
        await runner.start()
    logger.info(f"[API] Simulation reset with seed {req.seed}")
    return {"running": runner.running, "seed": req.seed}


@app.post("/simulation/stop")
async def stop_simulation():
    r = _require_runner()
    await r.stop()
    return {"running": False}


@app.post("/simulation/resume")
async def resume_simulation():
    r = _require_runner()
    await r.start()
    return {"running": True}


@app.get("/simulation/status")
async def simulation_status():
    r = _require_runner()
    return {"running": r.running, "ticks": r.ticks, "ts_ms": r.engine.state.ts_ms}


@app.post("/simulation/step")
async def step_simulation(req: StepRequest):
    """Advance the simulation manually by a number of ticks."""
    r = _require_runner()
    for _ in range(req.ticks):
        await r.tick()
    return {"ticks": r.ticks, "ts_ms": r.engine.state.ts_ms}


@app.get("/network/snapshot")
async def get_snapshot():
    """Get current network snapshot; pending messages are delivered once."""
    s = await _require_runner().snapshot()
    return {
        "ts_ms": s.ts_ms,
        "units": [_unit_json(u) for u in s.units],
        "groups": [{"id": g.id, "name": g.name} for g in s.groups],
        "assignments": [_assignment_json(a) for a in s.assignments],
        "type_mapping": {str(k): v for k, v in s.type_mapping.items()},
        "status_mapping": {str(k): v for k, v in s.status_mapping.items()},
        "max_range_km": s.max_range_km,
        "is_rallying": s.is_rallying,
        "gateway": {"lat": s.gateway[0], "lng": s.gateway[1]} if s.gateway else None,
        "pending_messages": [
            {"unit_id": m.unit_id, "unit_name": m.unit_name, "text": m.text, "timestamp": m.timestamp}
            for m in s.pending_messages
        ],
    }


@app.post("/units", status_code=201)
async def add_unit(req: UnitCreate):
    r = _require_runner()
    unit = await r.execute(
        r.engine.add_unit, name=req.name, unit_type=req.type,
        position=req.position.as_position() if req.position else None,
        group_id=req.group_id, send_interval=req.send_interval, battery=req.battery,
        is_externally_powered=req.is_externally_powered)
    return _unit_json(unit)


@app.patch("/units/{unit_id}")
async def update_unit(unit_id: int, req: UnitUpdate):
    r = _require_runner()
    changes = req.model_dump(exclude_none=True)
    if req.position is not None:
        changes["position"] = req.position.as_position()
    unit = await r.execute(r.engine.update_unit, unit_id, **changes)
    return _unit_json(unit)


@app.delete("/units/{unit_id}")
async def remove_unit(unit_id: int):
    r = _require_runner()
    await r.execute(r.engine.remove_unit, unit_id)
    return {"removed": unit_id}


@app.post("/units/charge")
async def charge_all_units():
    r = _require_runner()
    count = await r.execute(r.engine.charge_all_units)
    return {"charged": count}


@app.post("/units/reposition")
async def reposition_units(req: RepositionIn):
    r = _require_runner()
    await r.execute(r.engine.reposition_all_units, req.radius_km)
    return {"radius_km": req.radius_km}


@app.post("/units/{unit_id}/charge")
async def charge_unit(unit_id: int):
    r = _require_runner()
    return _unit_json(await r.execute(r.engine.charge_unit, unit_id))


@app.post("/units/{unit_id}/status")
async def set_unit_status(unit_id: int, req: StatusIn):
    r = _require_runner()
    return _unit_json(await r.execute(r.engine.set_unit_status, unit_id, req.status))


@app.delete("/units/{unit_id}/group")
async def leave_group(unit_id: int):
    r = _require_runner()
    return _unit_json(await r.execute(r.engine.assign_unit_to_group, unit_id, None))


@app.post("/messages")
async def send_message(req: MessageIn):
    r = _require_runner()
    count = await r.execute(r.engine.send_message, req.text, req.group_id)
    return {"recipients": count}


@app.post("/groups", status_code=201)
async def add_group(req: GroupIn):
    r = _require_runner()
    group = await r.execute(r.engine.add_group, req.name)
    return {"id": group.id, "name": group.name}


@app.patch("/groups/{group_id}")
async def rename_group(group_id: int, req: GroupIn):
    r = _require_runner()
    group = await r.execute(r.engine.rename_group, group_id, req.name)
    return {"id": group.id, "name": group.name}


@app.delete("/groups/{group_id}")
async def remove_group(group_id: int):
    r = _require_runner()
    await r.execute(r.engine.remove_group, group_id)
    return {"removed": group_id}


@app.put("/groups/{group_id}/units/{unit_id}")
async def join_group(group_id: int, unit_id: int):
    r = _require_runner()
    return _unit_json(await r.execute(r.engine.assign_unit_to_group, unit_id, group_id))


@app.put("/groups/{group_id}/assignment")
async def set_assignment(group_id: int, req: AssignmentIn):
    r = _require_runner()
    if isinstance(req, PatrolIn):
        a = await r.execute(r.engine.assign_patrol, group_id, req.target.as_position(), req.radius_km)
    else:
        a = await r.execute(r.engine.assign_pendulum, group_id, [p.as_position() for p in req.points])
    return _assignment_json(a)


@app.delete("/groups/{group_id}/assignment")
async def remove_assignment(group_id: int):
    r = _require_runner()
    await r.execute(r.engine.remove_assignment, group_id)
    return {"group_id": group_id, "assignment": None}


@app.put("/rally")
async def set_rally(req: RallyIn):
    r = _require_runner()
    await r.execute(r.engine.set_rallying, req.enabled)
    return {"is_rallying": req.enabled}


@app.put("/gateway")
async def set_gateway(req: GatewayIn):
    r = _require_runner()
    pos = req.position.as_position() if req.position else None
    await r.execute(r.engine.set_gateway_position, pos)
    return {"gateway": {"lat": pos[0], "lng": pos[1]} if pos else None}


@app.get("/config")
async def get_config():
    s = _require_runner().engine.state
    return {
        "type_mapping": {str(k): v for k, v in s.type_mapping.items()},
        "status_mapping": {str(k): v for k, v in s.status_mapping.items()},
        "max_range_km": s.max_range_km,
    }


@app.patch("/config")
async def update_config(req: ConfigUpdate):
    r = _require_runner()
    await r.execute(r.engine.set_max_range, req.max_range_km)
    return {"max_range_km": req.max_range_km}


@app.post("/config/types", status_code=201)
async def add_type_mapping(req: MappingIn):
    r = _require_runner()
    await r.execute(r.engine.add_type_mapping, req.code, req.name)
    return {"code": req.code, "name": req.name}


@app.delete("/config/types/{code}")
async def remove_type_mapping(code: int):
    r = _require_runner()
    await r.execute(r.engine.remove_type_mapping, code)
    return {"removed": code}


@app.post("/config/statuses", status_code=201)
async def add_status_mapping(req: MappingIn):
    r = _require_runner()
    await r.execute(r.engine.add_status_mapping, req.code, req.name)
    return {"code": req.code, "name": req.name}


@app.delete("/config/statuses/{code}")
async def remove_status_mapping(code: int):
    r = _require_runner()
    await r.execute(r.engine.remove_status_mapping, code)
    return {"removed": code}


@app.post("/commands")
async def run_commands(req: CommandsIn):
    """Execute operator commands in order; stops at the first failing one."""
    r = _require_runner()
    results = []
    for cmd in req.commands:
        results.append(await r.execute(execute_command, r.engine, cmd))
    logger.info(f"[API] Executed {len(results)} command(s)")
    return CommandsResponse(results=results)


@app.post("/analysis")
async def analyze_network():
    """Forward the current fleet to the advisory service for a health report."""
    r = _require_runner()
    if not advisory.configured:
        raise AdvisoryUnavailableError("No advisory service configured")
    s = r.engine.snapshot(drain=False)
    request = build_analysis_request(s.units, s.type_mapping, s.status_mapping)
    result = await advisory.analyze(request)
    return AnalysisResponse(summary=result.summary, details=result.details)


@app.post("/simulation/time-control")
async def set_time_control(time_compression: float):
    """Set simulation time compression (1.0 = real-time, higher = faster)."""
    r = _require_runner()
    r.set_time_compression(time_compression)
    return {"time_compression": r.time_compression}


@app.get("/simulation/time-control")
async def get_time_control():
    """Get current time compression setting."""
    r = _require_runner()
    return {"time_compression": r.time_compression}
