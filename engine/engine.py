from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from .behavior import build_context, resolve, BehaviorContext
from .chatter import emit_chatter
from .errors import (ConfigurationConflictError, InvalidRequestError, UnknownEntityError)
from .geo import Position, destination_point
from .kinematics import integrate
from .model import (Assignment, Group, OutboundMessage, PatrolAssignment, PendulumAssignment,
                    State, Unit, UnitMessage, UnitStatus, DEFAULT_SIGNAL)
from .power import apply_power, force_offline
from .rng import DRNG
from .store import StateStore
from .topology import build_topology

# Fallback spawn centre when no gateway is configured
BASE_POSITION: Position = (53.19745, 10.84507)
SPAWN_SPREAD_DEG = 0.02

UPDATABLE_UNIT_FIELDS = {"name", "type", "send_interval", "is_externally_powered",
                         "position", "heading", "group_id"}


@dataclass
class Snapshot:
    """Point-in-time view; its units, groups and assignments are frozen records.

    Pending messages are drained on read.
    """
    ts_ms: int
    units: List[Unit]
    groups: List[Group]
    assignments: List[Assignment]
    type_mapping: Dict[int, str]
    status_mapping: Dict[int, str]
    max_range_km: float
    is_rallying: bool
    gateway: Optional[Position]
    pending_messages: List[OutboundMessage] = field(default_factory=list)


class Engine:
    """Deterministic mesh fleet simulation engine."""

    def __init__(self, seed: int, initial_state: State):
        self.store = StateStore(initial_state)
        self._rng = DRNG(seed)
        self.last_topology_passes = 0

    @property
    def state(self) -> State:
        return self.store.state

    # ------------------------------------------------------------------
    # Tick pipeline
    # ------------------------------------------------------------------

    def _advance_unit(self, u: Unit, ctx: BehaviorContext, now: int) -> Unit:
        """Behavior, kinematics and power for one unit, if its send interval has elapsed."""
        elapsed_s = (now - u.timestamp) / 1000.0
        if elapsed_s < u.effective_send_interval:
            return u

        if not u.is_powered:
            return apply_power(replace(u, speed=0.0, timestamp=now), elapsed_s)

        directive = resolve(u, ctx)
        position, heading, speed = integrate(u, directive, elapsed_s)
        moved = replace(u, position=position, heading=heading, speed=speed, timestamp=now,
                        patrol_target=directive.patrol_target,
                        patrol_target_index=directive.patrol_target_index)
        return apply_power(moved, elapsed_s)

    def _advance_units(self, state: State, now: int) -> List[Unit]:
        units = list(state.units.values())
        ctx = build_context(units, self._rng, state.assignments, state.gateway, state.is_rallying)
        advanced: List[Unit] = []
        for u in units:
            try:
                advanced.append(self._advance_unit(u, ctx, now))
            except Exception:
                # One faulty unit must not stall the population
                logger.exception(f"[Engine] Unit {u.id} ({u.name}) failed to advance, keeping previous state")
                advanced.append(u)
        return advanced

    def step(self, dt_ms: int) -> List[OutboundMessage]:
        """Advance simulation by dt_ms milliseconds and return newly queued messages.

        A failure outside the per-unit updates is logged and the tick is dropped;
        the state stays as it was before the call.
        """
        state, version = self.store.read()
        try:
            new_state, msgs = self._next_state(state, state.ts_ms + dt_ms)
            self.store.replace(new_state, version)
        except Exception:
            logger.exception(f"[Engine] Tick at {state.ts_ms} ms failed, keeping previous state")
            return []
        return msgs

    def _next_state(self, state: State, now: int) -> Tuple[State, List[OutboundMessage]]:
        units = self._advance_units(state, now)

        if state.gateway is not None:
            topo = build_topology(units, state.gateway, state.max_range_km)
            units = topo.units
            self.last_topology_passes = topo.passes
            if topo.stranded:
                logger.debug(f"[Engine] {topo.stranded} unit(s) out of mesh reach")

        units, msgs = emit_chatter(units, self._rng, now)

        new_state = replace(state, ts_ms=now, units={u.id: u for u in units},
                            outbox=state.outbox + tuple(msgs))
        return new_state, msgs

    def snapshot(self, drain: bool = True) -> Snapshot:
        """Return the current state; by default the outbound queue is emptied."""
        state, version = self.store.read()
        pending = list(state.outbox)
        if drain and pending:
            self.store.replace(replace(state, outbox=()), version)
        return Snapshot(
            ts_ms=state.ts_ms,
            units=list(state.units.values()),
            groups=list(state.groups.values()),
            assignments=list(state.assignments.values()),
            type_mapping=dict(state.type_mapping),
            status_mapping=dict(state.status_mapping),
            max_range_km=state.max_range_km,
            is_rallying=state.is_rallying,
            gateway=state.gateway,
            pending_messages=pending,
        )

    # ------------------------------------------------------------------
    # Administrative operations
    # ------------------------------------------------------------------

    def _commit(self, build: Callable[[State], Tuple[State, object]]):
        """Read state, build the next one (validating first) and swap it in."""
        state, version = self.store.read()
        new_state, result = build(state)
        self.store.replace(new_state, version)
        return result

    @staticmethod
    def _unit(state: State, unit_id: int) -> Unit:
        u = state.units.get(unit_id)
        if u is None:
            raise UnknownEntityError("unit", unit_id)
        return u

    @staticmethod
    def _group(state: State, group_id: int) -> Group:
        g = state.groups.get(group_id)
        if g is None:
            raise UnknownEntityError("group", group_id)
        return g

    @staticmethod
    def _with_units(state: State, units: Iterable[Unit]) -> State:
        merged = dict(state.units)
        for u in units:
            merged[u.id] = u
        return replace(state, units=merged)

    def find_unit(self, name: str) -> Unit:
        """Look up a unit by name (case-insensitive)."""
        wanted = name.strip().lower()
        for u in self.state.units.values():
            if u.name.lower() == wanted:
                return u
        raise UnknownEntityError("unit", name)

    def find_group(self, name: str) -> Group:
        wanted = name.strip().lower()
        for g in self.state.groups.values():
            if g.name.lower() == wanted:
                return g
        raise UnknownEntityError("group", name)

    def _check_name_free(self, state: State, name: str, unit_id: Optional[int] = None):
        for u in state.units.values():
            if u.id != unit_id and u.name.lower() == name.lower():
                raise InvalidRequestError(f"Unit name {name!r} is already in use")

    def add_unit(self, name: Optional[str] = None, unit_type: Optional[str] = None,
                 position: Optional[Position] = None, group_id: Optional[int] = None,
                 send_interval: float = 10.0, battery: float = 100.0,
                 is_externally_powered: bool = False) -> Unit:
        def build(state: State):
            known_types = list(state.type_mapping.values())
            t = unit_type
            if t is None:
                t = self._rng.choice(known_types) if known_types else "Support"
            elif t not in known_types:
                raise InvalidRequestError(f"Unknown unit type {t!r}")
            if group_id is not None:
                self._group(state, group_id)
            if send_interval <= 0:
                raise InvalidRequestError("send_interval must be positive")
            if not 0 <= battery <= 100:
                raise InvalidRequestError("battery must be within [0, 100]")

            new_id = max(state.units, default=0) + 1
            unit_name = name or f"{t}-{new_id}"
            self._check_name_free(state, unit_name)

            pos = position
            if pos is None:
                base = state.gateway or BASE_POSITION
                pos = (base[0] + self._rng.uniform(-0.5, 0.5) * SPAWN_SPREAD_DEG,
                       base[1] + self._rng.uniform(-0.5, 0.5) * SPAWN_SPREAD_DEG)

            unit = Unit(id=new_id, name=unit_name, type=t, position=pos,
                        heading=float(int(self._rng.uniform(0, 360))), battery=battery,
                        is_externally_powered=is_externally_powered, timestamp=state.ts_ms,
                        send_interval=send_interval, group_id=group_id,
                        signal_strength=DEFAULT_SIGNAL, hop_count=1)
            if not unit.is_powered:
                unit = force_offline(unit)
            return self._with_units(state, [unit]), unit

        unit = self._commit(build)
        logger.info(f"[Engine] Added unit {unit.id} ({unit.name}, {unit.type})")
        return unit

    def update_unit(self, unit_id: int, **changes) -> Unit:
        unknown = set(changes) - UPDATABLE_UNIT_FIELDS
        if unknown:
            raise InvalidRequestError(f"Fields cannot be updated: {sorted(unknown)}")
        if changes.get("position") is not None:
            changes["position"] = tuple(changes["position"])

        def build(state: State):
            u = self._unit(state, unit_id)
            if "type" in changes and changes["type"] not in state.type_mapping.values():
                raise InvalidRequestError(f"Unknown unit type {changes['type']!r}")
            if "name" in changes:
                self._check_name_free(state, changes["name"], unit_id)
            if changes.get("group_id") is not None:
                self._group(state, changes["group_id"])
            if "send_interval" in changes and changes["send_interval"] <= 0:
                raise InvalidRequestError("send_interval must be positive")
            updated = replace(u, **changes)
            if "group_id" in changes and changes["group_id"] != u.group_id:
                updated = replace(updated, patrol_target=None, patrol_target_index=None)
            return self._with_units(state, [updated]), updated

        return self._commit(build)

    def remove_unit(self, unit_id: int) -> None:
        def build(state: State):
            self._unit(state, unit_id)
            units = {uid: u for uid, u in state.units.items() if uid != unit_id}
            return replace(state, units=units), None

        self._commit(build)
        logger.info(f"[Engine] Removed unit {unit_id}")

    def set_unit_status(self, unit_id: int, status: str) -> Unit:
        def build(state: State):
            u = self._unit(state, unit_id)
            if status not in state.status_mapping.values():
                raise InvalidRequestError(f"Unknown status {status!r}")
            if not u.is_active and status != UnitStatus.OFFLINE:
                raise InvalidRequestError(f"Unit {u.name} is offline; charge it before changing its status")
            updated = replace(u, status=status)
            return self._with_units(state, [updated]), updated

        unit = self._commit(build)
        logger.info(f"[Engine] Unit {unit.name} status set to {status}")
        return unit

    @staticmethod
    def _charged(u: Unit) -> Unit:
        status = UnitStatus.ONLINE.value if u.status == UnitStatus.OFFLINE else u.status
        return replace(u, battery=100.0, is_active=True, status=status)

    def charge_unit(self, unit_id: int) -> Unit:
        def build(state: State):
            updated = self._charged(self._unit(state, unit_id))
            return self._with_units(state, [updated]), updated

        return self._commit(build)

    def charge_all_units(self) -> int:
        def build(state: State):
            return self._with_units(state, [self._charged(u) for u in state.units.values()]), len(state.units)

        return self._commit(build)

    def send_message(self, text: str, group_id: Optional[int] = None) -> int:
        """Deliver a control-center message to all active units, or one group's. Returns recipients."""
        if not text.strip():
            raise InvalidRequestError("Message text must not be empty")

        def build(state: State):
            if group_id is not None:
                self._group(state, group_id)
            msg = UnitMessage(text=text, timestamp=state.ts_ms, source="control")
            recipients = [replace(u, last_message=msg) for u in state.units.values()
                          if u.is_active and (group_id is None or u.group_id == group_id)]
            return self._with_units(state, recipients), len(recipients)

        return self._commit(build)

    def reposition_all_units(self, radius_km: float) -> None:
        """Scatter every unit uniformly within radius_km of the gateway, at rest."""
        if radius_km <= 0:
            raise InvalidRequestError("radius_km must be positive")

        def build(state: State):
            if state.gateway is None:
                raise InvalidRequestError("No gateway position configured")
            moved = []
            for u in state.units.values():
                dist = radius_km * (self._rng.random() ** 0.5)
                bearing = self._rng.uniform(0, 360)
                powered = u.is_powered
                moved.append(replace(
                    u,
                    position=destination_point(state.gateway, bearing, dist),
                    speed=0.0,
                    heading=float(int(self._rng.uniform(0, 360))),
                    status=UnitStatus.ONLINE.value if powered else UnitStatus.OFFLINE.value,
                    is_active=powered,
                    timestamp=state.ts_ms,
                ))
            moved = [u if u.is_active else force_offline(u) for u in moved]
            return self._with_units(state, moved), None

        self._commit(build)
        logger.info(f"[Engine] Repositioned all units within {radius_km} km of the gateway")

    def add_group(self, name: str) -> Group:
        if not name.strip():
            raise InvalidRequestError("Group name must not be empty")

        def build(state: State):
            new_id = max(state.groups, default=0) + 1
            group = Group(id=new_id, name=name.strip())
            return replace(state, groups={**state.groups, new_id: group}), group

        group = self._commit(build)
        logger.info(f"[Engine] Added group {group.id} ({group.name})")
        return group

    def rename_group(self, group_id: int, name: str) -> Group:
        def build(state: State):
            group = replace(self._group(state, group_id), name=name.strip())
            return replace(state, groups={**state.groups, group_id: group}), group

        return self._commit(build)

    def remove_group(self, group_id: int) -> None:
        def build(state: State):
            self._group(state, group_id)
            groups = {gid: g for gid, g in state.groups.items() if gid != group_id}
            assignments = {gid: a for gid, a in state.assignments.items() if gid != group_id}
            members = [replace(u, group_id=None, patrol_target=None, patrol_target_index=None)
                       for u in state.units.values() if u.group_id == group_id]
            return self._with_units(replace(state, groups=groups, assignments=assignments), members), None

        self._commit(build)
        logger.info(f"[Engine] Removed group {group_id}")

    def assign_unit_to_group(self, unit_id: int, group_id: Optional[int]) -> Unit:
        return self.update_unit(unit_id, group_id=group_id)

    def _set_assignment(self, group_id: int, assignment: Assignment, index: Optional[int]) -> Assignment:
        def build(state: State):
            self._group(state, group_id)
            members = [replace(u, patrol_target=None, patrol_target_index=index)
                       for u in state.units.values() if u.group_id == group_id]
            assignments = {**state.assignments, group_id: assignment}
            return self._with_units(replace(state, assignments=assignments), members), assignment

        result = self._commit(build)
        logger.info(f"[Engine] Group {group_id} assigned {assignment.kind}")
        return result

    def assign_patrol(self, group_id: int, target: Position, radius_km: float) -> Assignment:
        if radius_km <= 0:
            raise InvalidRequestError("Patrol radius must be positive")
        return self._set_assignment(group_id, PatrolAssignment(group_id, tuple(target), radius_km), None)

    def assign_pendulum(self, group_id: int, points: List[Position]) -> Assignment:
        if not points:
            raise InvalidRequestError("Pendulum needs at least one waypoint")
        waypoints = tuple(tuple(p) for p in points)
        return self._set_assignment(group_id, PendulumAssignment(group_id, waypoints), 0)

    def remove_assignment(self, group_id: int) -> None:
        def build(state: State):
            self._group(state, group_id)
            assignments = {gid: a for gid, a in state.assignments.items() if gid != group_id}
            members = [replace(u, patrol_target=None, patrol_target_index=None)
                       for u in state.units.values() if u.group_id == group_id]
            return self._with_units(replace(state, assignments=assignments), members), None

        self._commit(build)

    def set_rallying(self, is_rallying: bool) -> None:
        self._commit(lambda state: (replace(state, is_rallying=is_rallying), None))
        logger.info(f"[Engine] Rallying {'enabled' if is_rallying else 'disabled'}")

    def set_gateway_position(self, position: Optional[Position]) -> None:
        if position is not None and not (-90 <= position[0] <= 90 and -180 <= position[1] <= 180):
            raise InvalidRequestError(f"Invalid gateway position {position!r}")
        gateway = tuple(position) if position is not None else None
        self._commit(lambda state: (replace(state, gateway=gateway), None))
        logger.info(f"[Engine] Gateway position set to {gateway}")

    def set_max_range(self, max_range_km: float) -> None:
        if max_range_km <= 0:
            raise InvalidRequestError("max_range_km must be positive")
        self._commit(lambda state: (replace(state, max_range_km=max_range_km), None))

    # ------------------------------------------------------------------
    # Type / status mappings
    # ------------------------------------------------------------------

    def add_type_mapping(self, code: int, name: str) -> None:
        def build(state: State):
            if code in state.type_mapping:
                raise ConfigurationConflictError(f"Type code {code} already exists")
            return replace(state, type_mapping={**state.type_mapping, code: name}), None

        self._commit(build)

    def remove_type_mapping(self, code: int) -> None:
        def build(state: State):
            name = state.type_mapping.get(code)
            if name is None:
                raise UnknownEntityError("type code", code)
            in_use = [u for u in state.units.values() if u.type == name]
            if in_use:
                raise ConfigurationConflictError(
                    f"Type {name!r} is still used by {len(in_use)} unit(s) and cannot be removed")
            mapping = {c: n for c, n in state.type_mapping.items() if c != code}
            return replace(state, type_mapping=mapping), None

        self._commit(build)

    def add_status_mapping(self, code: int, name: str) -> None:
        def build(state: State):
            if code in state.status_mapping:
                raise ConfigurationConflictError(f"Status code {code} already exists")
            return replace(state, status_mapping={**state.status_mapping, code: name}), None

        self._commit(build)

    def remove_status_mapping(self, code: int) -> None:
        def build(state: State):
            name = state.status_mapping.get(code)
            if name is None:
                raise UnknownEntityError("status code", code)
            in_use = [u for u in state.units.values() if u.status == name]
            if in_use:
                raise ConfigurationConflictError(
                    f"Status {name!r} is still used by {len(in_use)} unit(s) and cannot be removed")
            mapping = {c: n for c, n in state.status_mapping.items() if c != code}
            return replace(state, status_mapping=mapping), None

        self._commit(build)
