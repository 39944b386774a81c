"""Data models for fleetsync messages, plans and the navigation graph."""

from fleetsync.models._base import FleetBaseModel, FleetEnum
from fleetsync.models.graph import (
    DockEvent,
    DoorCloseEvent,
    DoorOpenEvent,
    LaneEvent,
    LiftDoorOpenEvent,
    LiftMoveEvent,
    LiftSessionBeginEvent,
    LiftSessionEndEvent,
    NavGraph,
    NavLane,
    NavWaypoint,
    WaitEvent,
)
from fleetsync.models.messages import (
    FleetState,
    LaneClosureRequest,
    LaneClosureStatus,
    LiftClearanceDecision,
    LiftClearanceRequest,
    LiftClearanceResponse,
    ModeCommand,
    ModeParameter,
    PathCommand,
    RobotMode,
    RobotReport,
)
from fleetsync.models.plan import (
    PlanWaypoint,
    Pose,
    RobotIdentity,
    Route,
    TrajectoryPoint,
    VehicleTraits,
)

__all__ = [
    "DockEvent",
    "DoorCloseEvent",
    "DoorOpenEvent",
    "FleetBaseModel",
    "FleetEnum",
    "FleetState",
    "LaneClosureRequest",
    "LaneClosureStatus",
    "LaneEvent",
    "LiftClearanceDecision",
    "LiftClearanceRequest",
    "LiftClearanceResponse",
    "LiftDoorOpenEvent",
    "LiftMoveEvent",
    "LiftSessionBeginEvent",
    "LiftSessionEndEvent",
    "ModeCommand",
    "ModeParameter",
    "NavGraph",
    "NavLane",
    "NavWaypoint",
    "PathCommand",
    "PlanWaypoint",
    "Pose",
    "RobotIdentity",
    "RobotMode",
    "RobotReport",
    "Route",
    "TrajectoryPoint",
    "VehicleTraits",
    "WaitEvent",
]
