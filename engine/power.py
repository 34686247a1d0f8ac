from dataclasses import replace

from .model import SIGNAL_FLOOR, STICKY_STATUSES, Unit, UnitStatus

CHARGE_PER_5S = 0.5
DRAIN_PER_5S = 0.05
MOVING_THRESHOLD_KMH = 1.0


def next_battery(battery: float, externally_powered: bool, elapsed_s: float) -> float:
    """Battery level after elapsed_s seconds, clamped to [0, 100] and not rounded."""
    if externally_powered:
        level = min(100.0, battery + CHARGE_PER_5S * (elapsed_s / 5.0))
    elif battery > 0:
        level = max(0.0, battery - DRAIN_PER_5S * (elapsed_s / 5.0))
    else:
        level = 0.0
    return max(0.0, min(100.0, level))


def infer_status(status: str, battery: float, externally_powered: bool, speed: float) -> str:
    if status in STICKY_STATUSES:
        return status
    if battery <= 0 and not externally_powered:
        return UnitStatus.OFFLINE.value
    if speed > MOVING_THRESHOLD_KMH:
        return UnitStatus.MOVING.value
    return UnitStatus.IDLE.value


def force_offline(unit: Unit) -> Unit:
    """Apply the inactive-unit invariant: Offline, no hops, signal at the floor."""
    return replace(unit, is_active=False, status=UnitStatus.OFFLINE.value,
                   hop_count=0, signal_strength=SIGNAL_FLOOR)


def apply_power(unit: Unit, elapsed_s: float) -> Unit:
    """Update battery, derive status and the active flag for one unit."""
    battery = next_battery(unit.battery, unit.is_externally_powered, elapsed_s)
    status = infer_status(unit.status, battery, unit.is_externally_powered, unit.speed)
    updated = replace(unit, battery=battery, status=status,
                      is_active=battery > 0 or unit.is_externally_powered)
    if not updated.is_active:
        return force_offline(updated)
    return updated
