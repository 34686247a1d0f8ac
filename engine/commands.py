"""Discrete, name-addressed commands translated into engine operations.

Commands reference units and groups by their display names, the way an
operator (or an assistant relaying an operator) speaks about them. Names are
resolved against the current state; an unknown name raises
UnknownEntityError and nothing is changed.
"""
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from .engine import Engine


class _Command(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LatLng(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)

    def as_position(self):
        return (self.lat, self.lng)


class SetStatus(_Command):
    action: Literal["SET_STATUS"]
    unit_name: str
    new_status: str


class SendMessage(_Command):
    action: Literal["SEND_MESSAGE"]
    message: str
    group_name: Optional[str] = None  # None addresses every active unit


class Reposition(_Command):
    action: Literal["REPOSITION"]
    radius_km: float = Field(gt=0)


class AssignPatrol(_Command):
    action: Literal["ASSIGN_PATROL"]
    group_name: str
    target: LatLng
    radius_km: float = Field(gt=0)


class AssignPendulum(_Command):
    action: Literal["ASSIGN_PENDULUM"]
    group_name: str
    points: List[LatLng] = Field(min_length=1)


class RemoveAssignment(_Command):
    action: Literal["REMOVE_ASSIGNMENT"]
    group_name: str


class AddUnit(_Command):
    action: Literal["ADD_UNIT"]
    name: Optional[str] = None
    unit_type: Optional[str] = None
    group_name: Optional[str] = None


class RemoveUnit(_Command):
    action: Literal["REMOVE_UNIT"]
    unit_name: str


class ChargeUnit(_Command):
    action: Literal["CHARGE_UNIT"]
    unit_name: str


class AddGroup(_Command):
    action: Literal["ADD_GROUP"]
    group_name: str


class RemoveGroup(_Command):
    action: Literal["REMOVE_GROUP"]
    group_name: str


Command = Annotated[
    Union[SetStatus, SendMessage, Reposition, AssignPatrol, AssignPendulum, RemoveAssignment,
          AddUnit, RemoveUnit, ChargeUnit, AddGroup, RemoveGroup],
    Field(discriminator="action"),
]

command_adapter = TypeAdapter(Command)


def parse_command(data: dict) -> Command:
    """Validate a raw command dict (camelCase or snake_case keys)."""
    return command_adapter.validate_python(data)


def execute_command(engine: Engine, cmd: Command) -> str:
    """Apply one command and return a short confirmation."""
    if isinstance(cmd, SetStatus):
        unit = engine.find_unit(cmd.unit_name)
        engine.set_unit_status(unit.id, cmd.new_status)
        return f"{unit.name} set to {cmd.new_status}"

    if isinstance(cmd, SendMessage):
        group_id = engine.find_group(cmd.group_name).id if cmd.group_name else None
        count = engine.send_message(cmd.message, group_id)
        return f"Message delivered to {count} unit(s)"

    if isinstance(cmd, Reposition):
        engine.reposition_all_units(cmd.radius_km)
        return f"Units repositioned within {cmd.radius_km} km"

    if isinstance(cmd, AssignPatrol):
        group = engine.find_group(cmd.group_name)
        engine.assign_patrol(group.id, cmd.target.as_position(), cmd.radius_km)
        return f"{group.name} patrolling {cmd.radius_km} km around {cmd.target.as_position()}"

    if isinstance(cmd, AssignPendulum):
        group = engine.find_group(cmd.group_name)
        engine.assign_pendulum(group.id, [p.as_position() for p in cmd.points])
        return f"{group.name} cycling {len(cmd.points)} waypoint(s)"

    if isinstance(cmd, RemoveAssignment):
        group = engine.find_group(cmd.group_name)
        engine.remove_assignment(group.id)
        return f"Assignment removed from {group.name}"

    if isinstance(cmd, AddUnit):
        group_id = engine.find_group(cmd.group_name).id if cmd.group_name else None
        unit = engine.add_unit(name=cmd.name, unit_type=cmd.unit_type, group_id=group_id)
        return f"Added {unit.name}"

    if isinstance(cmd, RemoveUnit):
        unit = engine.find_unit(cmd.unit_name)
        engine.remove_unit(unit.id)
        return f"Removed {unit.name}"

    if isinstance(cmd, ChargeUnit):
        unit = engine.find_unit(cmd.unit_name)
        engine.charge_unit(unit.id)
        return f"{unit.name} charged"

    if isinstance(cmd, AddGroup):
        group = engine.add_group(cmd.group_name)
        return f"Added group {group.name}"

    if isinstance(cmd, RemoveGroup):
        group = engine.find_group(cmd.group_name)
        engine.remove_group(group.id)
        return f"Removed group {group.name}"

    raise TypeError(f"Unsupported command {cmd!r}")
