"""Messages exchanged with fleet drivers and lane-closure clients.

Inbound: :class:`RobotReport` (inside :class:`FleetState`) and
:class:`LaneClosureRequest`. Outbound: :class:`PathCommand`,
:class:`ModeCommand` and the latched :class:`LaneClosureStatus`. Lift
entry is negotiated with :class:`LiftClearanceRequest` and
:class:`LiftClearanceResponse`.
"""

from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator

from fleetsync._constants import DOCKING_PARAMETER
from fleetsync.models._base import FleetBaseModel, FleetEnum
from fleetsync.models.plan import Pose


class RobotMode(FleetEnum):
    """Operating mode reported by (or requested from) a robot."""

    UNKNOWN = -1
    IDLE = 0
    CHARGING = 1
    MOVING = 2
    PAUSED = 3
    WAITING = 4
    EMERGENCY = 5
    GOING_HOME = 6
    DOCKING = 7
    ADAPTER_ERROR = 8
    CLEANING = 9


class RobotReport(FleetBaseModel):
    """Periodic state report of a single robot.

    Parameters
    ----------
    name : str
        Robot name, unique within its fleet.
    task_id : str
        Task id of the last command the robot accepted. A command is
        acknowledged once this equals the id it was sent with.
    mode : RobotMode
        Current mode. ``ADAPTER_ERROR`` signals an interruption.
    battery_fraction : float
        State of charge in ``[0, 1]``. Out-of-range values are reported
        as-is and rejected by the session.
    location : Pose
        Current pose.
    path : tuple of Pose
        Remaining path the robot still has to travel. Empty once it
        believes it has arrived.
    """

    name: str
    model: str = ""
    task_id: str = ""
    mode: RobotMode = RobotMode.UNKNOWN
    battery_fraction: float = Field(default=1.0, validation_alias=AliasChoices("battery_fraction", "battery_soc"))
    location: Pose = Field(default_factory=Pose)
    path: tuple[Pose, ...] = ()

    @field_validator("task_id", mode="before")
    @classmethod
    def _coerce_task_id(cls, value: object) -> str:
        return str(value).strip()


class FleetState(FleetBaseModel):
    name: str
    robots: tuple[RobotReport, ...] = ()


class PathCommand(FleetBaseModel):
    fleet_name: str
    robot_name: str
    task_id: str
    path: tuple[Pose, ...] = ()


class ModeParameter(FleetBaseModel):
    name: str
    value: str = ""


class ModeCommand(FleetBaseModel):
    fleet_name: str
    robot_name: str
    task_id: str
    mode: RobotMode
    parameters: tuple[ModeParameter, ...] = ()

    @classmethod
    def docking(cls, *, fleet_name: str, robot_name: str, task_id: str, dock_name: str) -> ModeCommand:
        return cls(
            fleet_name=fleet_name,
            robot_name=robot_name,
            task_id=task_id,
            mode=RobotMode.DOCKING,
            parameters=(ModeParameter(name=DOCKING_PARAMETER, value=dock_name),),
        )


class LaneClosureRequest(FleetBaseModel):
    """Request to open and/or close lanes. An empty fleet name targets every fleet."""

    fleet_name: str = ""
    open_lanes: tuple[int, ...] = ()
    close_lanes: tuple[int, ...] = ()

    def targets(self, fleet_name: str) -> bool:
        return not self.fleet_name or self.fleet_name == fleet_name


class LaneClosureStatus(FleetBaseModel):
    fleet_name: str
    closed_lanes: tuple[int, ...] = ()


class LiftClearanceDecision(FleetEnum):
    """Answer of the lift clearance service; unmapped values resolve to ``UNDEFINED``."""

    UNDEFINED = 0
    CLEAR = 1
    CROWDED = 2


class LiftClearanceRequest(FleetBaseModel):
    request_id: str
    robot_name: str
    lift_name: str


class LiftClearanceResponse(FleetBaseModel):
    request_id: str
    decision: int = 0
