from typing import Tuple

from .geo import Position, distance_km, equirectangular_step, normalize_heading
from .model import Directive, Unit, UnitProfile

MIN_MOVING_SPEED_KMH = 0.1


def approach_speed(current: float, target: float, profile: UnitProfile, elapsed_s: float) -> float:
    """Move current speed toward target with bounded acceleration, no overshoot."""
    if target > current:
        return min(target, current + profile.accel_kmh_per_s * elapsed_s)
    if target < current:
        return max(target, current - profile.decel_kmh_per_s * elapsed_s)
    return current


def integrate(unit: Unit, directive: Directive, elapsed_s: float) -> Tuple[Position, float, float]:
    """Advance one unit by elapsed_s seconds under a directive.

    Returns (position, heading, speed).
    """
    heading = unit.heading
    if directive.heading is not None:
        heading = normalize_heading(directive.heading)

    speed = max(0.0, approach_speed(unit.speed, directive.target_speed,
                                    unit.get_profile(), elapsed_s))

    position = unit.position
    if speed > MIN_MOVING_SPEED_KMH and elapsed_s > 0:
        step_km = (speed / 3600.0) * elapsed_s
        if directive.target is not None:
            # Never run past the point being steered at
            step_km = min(step_km, distance_km(position, directive.target))
        if step_km > 0:
            position = equirectangular_step(position, heading, step_km)

    return position, heading, speed
