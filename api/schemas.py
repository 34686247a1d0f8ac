from typing import List, Literal, Optional, Union
from pydantic import BaseModel, Field

from engine.commands import Command, LatLng


class StartRequest(BaseModel):
    """Simulation start request schema."""
    seed: int = 42
    run: bool = True  # False builds the fleet without starting the tick loop


class StepRequest(BaseModel):
    ticks: int = Field(default=1, ge=1, le=10000)


class UnitCreate(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    position: Optional[LatLng] = None
    group_id: Optional[int] = None
    send_interval: float = Field(default=10.0, gt=0)
    battery: float = Field(default=100.0, ge=0, le=100)
    is_externally_powered: bool = False


class UnitUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    position: Optional[LatLng] = None
    heading: Optional[float] = Field(default=None, ge=0, lt=360)
    send_interval: Optional[float] = Field(default=None, gt=0)
    is_externally_powered: Optional[bool] = None


class StatusIn(BaseModel):
    status: str


class RepositionIn(BaseModel):
    radius_km: float = Field(gt=0)


class MessageIn(BaseModel):
    text: str = Field(min_length=1)
    group_id: Optional[int] = None  # None sends to all active units


class GroupIn(BaseModel):
    name: str = Field(min_length=1)


class PatrolIn(BaseModel):
    kind: Literal["patrol"]
    target: LatLng
    radius_km: float = Field(gt=0)


class PendulumIn(BaseModel):
    kind: Literal["pendulum"]
    points: List[LatLng] = Field(min_length=1)


AssignmentIn = Union[PatrolIn, PendulumIn]


class RallyIn(BaseModel):
    enabled: bool


class GatewayIn(BaseModel):
    position: Optional[LatLng] = None  # None removes the gateway


class ConfigUpdate(BaseModel):
    max_range_km: float = Field(gt=0)


class MappingIn(BaseModel):
    code: int
    name: str = Field(min_length=1)


class CommandsIn(BaseModel):
    commands: List[Command]


class CommandsResponse(BaseModel):
    results: List[str]


class AnalysisResponse(BaseModel):
    summary: str
    details: str
