"""Contracts of the scheduler collaborator.

The scheduler plans paths, allocates tasks and keeps the traffic
schedule; fleetsync only consumes it through the protocols below. Test
doubles and production adapters implement them structurally.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from fleetsync.models.messages import LiftClearanceDecision
from fleetsync.models.plan import Pose, RobotIdentity, Route, VehicleTraits

# ------------------------------------------------------------------
# Graph locations pushed with update_position
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OnWaypoint:
    """The robot is at graph waypoint ``waypoint``."""

    waypoint: int


@dataclass(frozen=True, slots=True)
class OnLanes:
    """The robot is travelling along one of ``lanes``."""

    lanes: tuple[int, ...]


@dataclass(frozen=True, slots=True)
class NearWaypoint:
    """Off the graph; ``waypoint`` is the nearest point it can return to."""

    waypoint: int


@dataclass(frozen=True, slots=True)
class OffGraph:
    """No graph feature can be associated with the pose."""

    map_name: str


GraphLocation = OnWaypoint | OnLanes | NearWaypoint | OffGraph


@dataclass(frozen=True, slots=True)
class Start:
    """A feasible starting condition computed by the scheduler for admission."""

    time: float
    waypoint: int
    orientation: float
    lane: int | None = None
    location: tuple[float, float] | None = None


# ------------------------------------------------------------------
# Protocols
# ------------------------------------------------------------------


#: Receives the clearance decision for one lift entry.
LiftDecisionCallback = Callable[[LiftClearanceDecision], None]

#: ``watchdog(lift_name, decide)``; must call ``decide`` exactly once.
LiftEntryWatchdog = Callable[[str, LiftDecisionCallback], None]


class RobotUpdater(Protocol):
    """Per-robot handle the scheduler hands out once a robot is registered."""

    def update_battery(self, fraction: float) -> None: ...

    def update_position(self, pose: Pose, location: GraphLocation) -> None: ...

    def interrupted(self) -> None: ...

    def schedule_update(self, route: Route) -> None: ...

    def set_lift_entry_watchdog(self, watchdog: LiftEntryWatchdog) -> None:
        """Install the check consulted before the robot enters a lift.

        Only called when the registry has a lift clearance service.
        """
        ...


ReadyCallback = Callable[[RobotUpdater], None]


class Scheduler(Protocol):
    def compute_admission_starts(self, pose: Pose, map_name: str, time: float) -> Sequence[Start]:
        """Return the feasible starts for a robot at *pose*; empty on failure."""
        ...

    def register(
        self,
        identity: RobotIdentity,
        traits: VehicleTraits,
        starts: Sequence[Start],
        on_ready: ReadyCallback,
    ) -> None:
        """Add a robot; *on_ready* receives its updater (possibly later, from another thread)."""
        ...

    def update_closed_lanes(self, closed_lanes: frozenset[int]) -> None: ...


# ------------------------------------------------------------------
# Callbacks carried by an active command
# ------------------------------------------------------------------

#: ``arrival_estimator(target_plan_index, seconds_until_arrival)``
ArrivalEstimator = Callable[[int, float], None]

#: Invoked once when a path or dock command completes.
CommandFinished = Callable[[], None]
