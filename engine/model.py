from dataclasses import dataclass, field
from typing import Dict, Literal, Optional, Tuple, Union
from enum import Enum

from .geo import Position

MessageSource = Literal["unit", "control"]


class UnitType(str, Enum):
    """Built-in unit kinds. Further kinds may come from the type mapping."""
    VEHICLE = "Vehicle"
    PERSONNEL = "Personnel"
    SUPPORT = "Support"
    MILITARY = "Military"
    POLICE = "Police"
    AIR = "Air"


class UnitStatus(str, Enum):
    ONLINE = "Online"
    MOVING = "Moving"
    IDLE = "Idle"
    ALARM = "Alarm"
    OFFLINE = "Offline"
    MAINTENANCE = "Maintenance"


# Statuses the inference step never overwrites
STICKY_STATUSES = {UnitStatus.ALARM.value, UnitStatus.MAINTENANCE.value}

SIGNAL_FLOOR = -120
DEFAULT_SIGNAL = -75


@dataclass
class UnitProfile:
    """Template defining motion characteristics of a unit type"""
    cruise_speed_kmh: float  # en-route speed toward a directive target
    wander_speed_kmh: float  # speed while roaming without a directive
    accel_kmh_per_s: float  # deceleration is twice this

    @property
    def decel_kmh_per_s(self) -> float:
        return self.accel_kmh_per_s * 2


_ROAD = UnitProfile(cruise_speed_kmh=80, wander_speed_kmh=50, accel_kmh_per_s=15)
_FOOT = UnitProfile(cruise_speed_kmh=5, wander_speed_kmh=4, accel_kmh_per_s=2)

UNIT_PROFILES: Dict[str, UnitProfile] = {
    UnitType.VEHICLE.value: _ROAD,
    UnitType.MILITARY.value: _ROAD,
    UnitType.POLICE.value: _ROAD,
    UnitType.AIR.value: UnitProfile(cruise_speed_kmh=300, wander_speed_kmh=50, accel_kmh_per_s=40),
    UnitType.PERSONNEL.value: _FOOT,
    UnitType.SUPPORT.value: _FOOT,
}

# Types only known through the mapping move like road units but cruise at walking pace
DEFAULT_PROFILE = UnitProfile(cruise_speed_kmh=5, wander_speed_kmh=50, accel_kmh_per_s=15)

DEFAULT_TYPE_MAPPING: Dict[int, str] = {i: t.value for i, t in enumerate(UnitType)}
DEFAULT_STATUS_MAPPING: Dict[int, str] = {i: s.value for i, s in enumerate(UnitStatus)}


@dataclass(frozen=True)
class UnitMessage:
    text: str
    timestamp: int
    source: MessageSource = "unit"


@dataclass(frozen=True)
class Unit:
    id: int
    name: str
    type: str  # Key into UNIT_PROFILES, or a mapped custom type
    position: Position
    heading: float = 0.0  # degrees, [0, 360)
    speed: float = 0.0  # km/h
    battery: float = 100.0  # percent
    is_externally_powered: bool = False
    status: str = UnitStatus.ONLINE.value
    is_active: bool = True
    timestamp: int = 0  # epoch ms of last advance
    send_interval: float = 10.0  # seconds
    signal_strength: int = DEFAULT_SIGNAL
    hop_count: int = 1
    group_id: Optional[int] = None
    patrol_target: Optional[Position] = None
    patrol_target_index: Optional[int] = None
    last_message: Optional[UnitMessage] = None

    def get_profile(self) -> UnitProfile:
        """Get the UnitProfile for this unit's type"""
        return UNIT_PROFILES.get(self.type, DEFAULT_PROFILE)

    @property
    def effective_send_interval(self) -> float:
        return 2.0 if self.is_externally_powered else self.send_interval

    @property
    def is_powered(self) -> bool:
        return self.battery > 0 or self.is_externally_powered


@dataclass(frozen=True)
class Group:
    id: int
    name: str


@dataclass(frozen=True)
class PatrolAssignment:
    group_id: int
    target: Position
    radius: float  # km
    kind: Literal["patrol"] = "patrol"


@dataclass(frozen=True)
class PendulumAssignment:
    group_id: int
    points: Tuple[Position, ...]
    kind: Literal["pendulum"] = "pendulum"


Assignment = Union[PatrolAssignment, PendulumAssignment]


class DirectiveKind(Enum):
    """Which level of the priority chain produced a directive"""
    RALLY = "rally"
    ALARM = "alarm"
    ASSIGNMENT = "assignment"
    COHESION = "cohesion"
    WANDER = "wander"


@dataclass
class Directive:
    """Resolved movement intent for one unit in one tick."""
    kind: DirectiveKind
    target_speed: float
    target: Optional[Position] = None
    heading: Optional[float] = None  # explicit heading when not steering at a target
    arrived: bool = False
    patrol_target: Optional[Position] = None
    patrol_target_index: Optional[int] = None


@dataclass(frozen=True)
class OutboundMessage:
    unit_id: int
    unit_name: str
    text: str
    timestamp: int


@dataclass
class State:
    ts_ms: int
    units: Dict[int, Unit] = field(default_factory=dict)
    groups: Dict[int, Group] = field(default_factory=dict)
    assignments: Dict[int, Assignment] = field(default_factory=dict)  # keyed by group id
    gateway: Optional[Position] = None
    is_rallying: bool = False
    max_range_km: float = 3.0
    type_mapping: Dict[int, str] = field(default_factory=lambda: dict(DEFAULT_TYPE_MAPPING))
    status_mapping: Dict[int, str] = field(default_factory=lambda: dict(DEFAULT_STATUS_MAPPING))
    outbox: Tuple[OutboundMessage, ...] = ()
