"""Behavior resolution: one Directive per unit per tick.

Directives come from a fixed priority chain, first match wins:

  rally > alarm response > assignment > group cohesion > wander

Population-wide aggregates (group centroids, alarm responders) are computed
once per tick by ``build_context`` and shared by every unit's resolution.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .geo import Position, bearing_deg, distance_km, normalize_heading, random_point_in_disc
from .model import (Assignment, Directive, DirectiveKind, PatrolAssignment, PendulumAssignment,
                    Unit, UnitStatus)
from .rng import DRNG

RALLY_STOP_KM = 0.5
DEFAULT_STOP_KM = 0.1
PATROL_REPICK_KM = 0.2
PENDULUM_ADVANCE_KM = 0.1
COHESION_RADIUS_KM = 1.0
RESPONDERS_PER_ALARM = 3

LOITER_SPEED_KMH = 5.0
LOITER_SPREAD_DEG = 22.5
WANDER_STAY_PROBABILITY = 0.9
WANDER_SPREAD_FROM_REST_DEG = 30.0
WANDER_SPREAD_MOVING_DEG = 7.5
MOVING_THRESHOLD_KMH = 1.0


@dataclass
class BehaviorContext:
    """Everything the resolver needs besides the unit itself."""
    units: List[Unit]
    rng: DRNG
    assignments: Dict[int, Assignment] = field(default_factory=dict)
    centroids: Dict[int, Position] = field(default_factory=dict)
    responders: Dict[int, Position] = field(default_factory=dict)  # responder id -> alarm position
    gateway: Optional[Position] = None
    is_rallying: bool = False


def group_centroids(units: List[Unit]) -> Dict[int, Position]:
    """Unweighted mean position of active members, for groups with 2+ active members."""
    members: Dict[int, List[Position]] = {}
    for u in units:
        if u.group_id is not None and u.is_active:
            members.setdefault(u.group_id, []).append(u.position)

    centroids: Dict[int, Position] = {}
    for gid, positions in members.items():
        if len(positions) < 2:
            continue
        lat = sum(p[0] for p in positions) / len(positions)
        lng = sum(p[1] for p in positions) / len(positions)
        centroids[gid] = (lat, lng)
    return centroids


def alarm_responders(units: List[Unit]) -> Dict[int, Position]:
    """Map each responding unit id to the position of the alarm it answers.

    Alarm units are visited in population order; each claims the nearest
    active non-alarm units that are not already responding elsewhere.
    """
    alarms = [u for u in units if u.is_active and u.status == UnitStatus.ALARM]
    if not alarms:
        return {}
    candidates = [u for u in units if u.is_active and u.status != UnitStatus.ALARM]

    responders: Dict[int, Position] = {}
    for alarm in alarms:
        free = [c for c in candidates if c.id not in responders]
        # sorted() is stable, so equal distances keep population order
        free.sort(key=lambda c: distance_km(alarm.position, c.position))
        for c in free[:RESPONDERS_PER_ALARM]:
            responders[c.id] = alarm.position
    return responders


def build_context(units: List[Unit], rng: DRNG, assignments: Dict[int, Assignment],
                  gateway: Optional[Position], is_rallying: bool) -> BehaviorContext:
    return BehaviorContext(
        units=units,
        rng=rng,
        assignments=assignments,
        centroids=group_centroids(units),
        responders=alarm_responders(units),
        gateway=gateway,
        is_rallying=is_rallying,
    )


def _steer(unit: Unit, kind: DirectiveKind, target: Position, stop_km: float, rng: DRNG,
           patrol_target: Optional[Position], patrol_index: Optional[int]) -> Directive:
    """Build a directive toward target, handling arrival."""
    dist = distance_km(unit.position, target)
    if dist <= stop_km:
        if kind == DirectiveKind.RALLY and unit.speed > MOVING_THRESHOLD_KMH:
            # Loiter around the rally point instead of stopping dead
            heading = normalize_heading(rng.perturb(unit.heading, LOITER_SPREAD_DEG))
            return Directive(kind, LOITER_SPEED_KMH, heading=heading, arrived=True,
                             patrol_target=patrol_target, patrol_target_index=patrol_index)
        return Directive(kind, 0.0, target=target, arrived=True,
                         patrol_target=patrol_target, patrol_target_index=patrol_index)

    return Directive(kind, unit.get_profile().cruise_speed_kmh, target=target,
                     heading=bearing_deg(unit.position, target),
                     patrol_target=patrol_target, patrol_target_index=patrol_index)


def _follow_patrol(unit: Unit, assignment: PatrolAssignment, rng: DRNG) -> Directive:
    center, radius = assignment.target, assignment.radius
    if distance_km(unit.position, center) > radius:
        return _steer(unit, DirectiveKind.ASSIGNMENT, center, DEFAULT_STOP_KM, rng,
                      unit.patrol_target, unit.patrol_target_index)

    pick = unit.patrol_target
    if pick is None or distance_km(unit.position, pick) < PATROL_REPICK_KM:
        pick = random_point_in_disc(center, radius, rng)
    return _steer(unit, DirectiveKind.ASSIGNMENT, pick, DEFAULT_STOP_KM, rng,
                  pick, unit.patrol_target_index)


def _follow_pendulum(unit: Unit, assignment: PendulumAssignment, rng: DRNG) -> Directive:
    points = assignment.points
    idx = unit.patrol_target_index
    if idx is None or idx >= len(points):
        idx = 0
    if distance_km(unit.position, points[idx]) < PENDULUM_ADVANCE_KM:
        idx = (idx + 1) % len(points)
    return _steer(unit, DirectiveKind.ASSIGNMENT, points[idx], DEFAULT_STOP_KM, rng,
                  unit.patrol_target, idx)


def wander(unit: Unit, rng: DRNG) -> Directive:
    """Default roaming when no higher priority applies."""
    moving = unit.speed > MOVING_THRESHOLD_KMH
    if not moving and rng.bernoulli(WANDER_STAY_PROBABILITY):
        return Directive(DirectiveKind.WANDER, 0.0,
                         patrol_target=unit.patrol_target,
                         patrol_target_index=unit.patrol_target_index)

    spread = WANDER_SPREAD_MOVING_DEG if moving else WANDER_SPREAD_FROM_REST_DEG
    heading = normalize_heading(rng.perturb(unit.heading, spread))
    return Directive(DirectiveKind.WANDER, unit.get_profile().wander_speed_kmh, heading=heading,
                     patrol_target=unit.patrol_target,
                     patrol_target_index=unit.patrol_target_index)


def resolve(unit: Unit, ctx: BehaviorContext) -> Directive:
    """Evaluate the priority chain for one unit."""
    rng = ctx.rng

    if ctx.is_rallying and ctx.gateway is not None:
        return _steer(unit, DirectiveKind.RALLY, ctx.gateway, RALLY_STOP_KM, rng, None, None)

    alarm_pos = ctx.responders.get(unit.id)
    if alarm_pos is not None:
        return _steer(unit, DirectiveKind.ALARM, alarm_pos, DEFAULT_STOP_KM, rng,
                      unit.patrol_target, unit.patrol_target_index)

    assignment = ctx.assignments.get(unit.group_id) if unit.group_id is not None else None
    if isinstance(assignment, PatrolAssignment):
        return _follow_patrol(unit, assignment, rng)
    if isinstance(assignment, PendulumAssignment) and assignment.points:
        return _follow_pendulum(unit, assignment, rng)

    centroid = ctx.centroids.get(unit.group_id) if unit.group_id is not None else None
    if centroid is not None and distance_km(unit.position, centroid) > COHESION_RADIUS_KM:
        return _steer(unit, DirectiveKind.COHESION, centroid, DEFAULT_STOP_KM, rng,
                      unit.patrol_target, unit.patrol_target_index)

    return wander(unit, rng)
