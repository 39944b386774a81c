"""Plan, pose and trajectory models.

These are the values exchanged between the scheduler and a
:class:`~fleetsync.session.CommandSession`: the poses robots report, the
waypoints of a plan, the vehicle traits used for timing estimates and the
short routes pushed back to the schedule.
"""

from __future__ import annotations

import math

from pydantic import AliasChoices, Field, field_validator

from fleetsync._constants import (
    DEFAULT_ANGULAR_ACCELERATION,
    DEFAULT_ANGULAR_VELOCITY,
    DEFAULT_FOOTPRINT_RADIUS,
    DEFAULT_LINEAR_ACCELERATION,
    DEFAULT_LINEAR_VELOCITY,
    DEFAULT_VICINITY_RADIUS,
)
from fleetsync.models._base import FleetBaseModel


class RobotIdentity(FleetBaseModel):
    """Unique key of a robot: ``(fleet_name, robot_name)``."""

    fleet_name: str
    robot_name: str

    def __str__(self) -> str:
        return f"{self.fleet_name}/{self.robot_name}"


class Pose(FleetBaseModel):
    """A reported or commanded pose.

    Parameters
    ----------
    x, y : float
        Position in the map frame (meters).
    yaw : float
        Orientation (radians).
    map_name : str
        Map/level the position refers to. Empty when unknown.
    t : float
        Domain timestamp in seconds. Aligned with a monotonic clock,
        never wall clock.
    """

    x: float = 0.0
    y: float = 0.0
    yaw: float = 0.0
    map_name: str = Field(default="", validation_alias=AliasChoices("map_name", "level_name"))
    t: float = 0.0

    @property
    def xy(self) -> tuple[float, float]:
        return (self.x, self.y)

    def distance_to(self, x: float, y: float) -> float:
        return math.hypot(self.x - x, self.y - y)


class PlanWaypoint(FleetBaseModel):
    """One waypoint of a plan handed down by the scheduler."""

    x: float
    y: float
    yaw: float = 0.0
    time: float = 0.0
    graph_index: int | None = None
    approach_lanes: tuple[int, ...] = ()

    @property
    def xy(self) -> tuple[float, float]:
        return (self.x, self.y)


class VehicleTraits(FleetBaseModel):
    """Kinematic limits used for arrival and trajectory timing.

    Shared read-only by every session of a fleet.
    """

    linear_velocity: float = DEFAULT_LINEAR_VELOCITY
    linear_acceleration: float = DEFAULT_LINEAR_ACCELERATION
    angular_velocity: float = DEFAULT_ANGULAR_VELOCITY
    angular_acceleration: float = DEFAULT_ANGULAR_ACCELERATION
    footprint_radius: float = DEFAULT_FOOTPRINT_RADIUS
    vicinity_radius: float = DEFAULT_VICINITY_RADIUS

    @field_validator(
        "linear_velocity",
        "linear_acceleration",
        "angular_velocity",
        "angular_acceleration",
        "footprint_radius",
        "vicinity_radius",
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError(f"vehicle traits must be positive, got {value}")
        return value


class TrajectoryPoint(FleetBaseModel):
    t: float
    x: float
    y: float
    yaw: float = 0.0


class Route(FleetBaseModel):
    """A trajectory on a single map, as pushed to the schedule."""

    map_name: str
    trajectory: tuple[TrajectoryPoint, ...] = ()
