from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest

from fleetsync.config import FleetConfig
from fleetsync.exceptions import TransportError
from fleetsync.models import (
    LaneClosureStatus,
    ModeCommand,
    NavGraph,
    PathCommand,
    PlanWaypoint,
    Pose,
    RobotIdentity,
    Route,
    VehicleTraits,
)
from fleetsync.scheduler import GraphLocation, LiftEntryWatchdog, ReadyCallback, Start

FLEET = "tinyRobot"


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    def __init__(self) -> None:
        self.paths: list[PathCommand] = []
        self.modes: list[ModeCommand] = []
        self.closed: list[LaneClosureStatus] = []
        self.fail = False

    def publish_path_command(self, command: PathCommand) -> None:
        if self.fail:
            raise TransportError("broker unavailable", topic="path_requests")
        self.paths.append(command)

    def publish_mode_command(self, command: ModeCommand) -> None:
        if self.fail:
            raise TransportError("broker unavailable", topic="mode_requests")
        self.modes.append(command)

    def publish_closed_lanes(self, status: LaneClosureStatus) -> None:
        self.closed.append(status)


class FakeUpdater:
    def __init__(self) -> None:
        self.batteries: list[float] = []
        self.positions: list[tuple[Pose, GraphLocation]] = []
        self.interruptions = 0
        self.routes: list[Route] = []
        self.watchdog: LiftEntryWatchdog | None = None

    def update_battery(self, fraction: float) -> None:
        self.batteries.append(fraction)

    def update_position(self, pose: Pose, location: GraphLocation) -> None:
        self.positions.append((pose, location))

    def interrupted(self) -> None:
        self.interruptions += 1

    def schedule_update(self, route: Route) -> None:
        self.routes.append(route)

    def set_lift_entry_watchdog(self, watchdog: LiftEntryWatchdog) -> None:
        self.watchdog = watchdog

    @property
    def last_location(self) -> GraphLocation:
        return self.positions[-1][1]


class FakeScheduler:
    """Admits every robot on a known map; hands out updaters synchronously."""

    def __init__(self, graph: NavGraph) -> None:
        self.graph = graph
        self.admissible = True
        self.admission_calls: list[tuple[Pose, str, float]] = []
        self.registered: list[tuple[RobotIdentity, VehicleTraits, tuple[Start, ...]]] = []
        self.updaters: dict[str, FakeUpdater] = {}
        self.closed_lanes: list[frozenset[int]] = []
        self.defer_ready = False
        self.pending: list[tuple[ReadyCallback, FakeUpdater]] = []

    def compute_admission_starts(self, pose: Pose, map_name: str, time: float) -> Sequence[Start]:
        self.admission_calls.append((pose, map_name, time))
        if not self.admissible or map_name not in self.graph.map_names():
            return []
        return [Start(time=time, waypoint=0, orientation=pose.yaw)]

    def register(
        self,
        identity: RobotIdentity,
        traits: VehicleTraits,
        starts: Sequence[Start],
        on_ready: ReadyCallback,
    ) -> None:
        self.registered.append((identity, traits, tuple(starts)))
        updater = FakeUpdater()
        self.updaters[identity.robot_name] = updater
        if self.defer_ready:
            self.pending.append((on_ready, updater))
        else:
            on_ready(updater)

    def update_closed_lanes(self, closed_lanes: frozenset[int]) -> None:
        self.closed_lanes.append(closed_lanes)


def make_graph() -> NavGraph:
    """Corridor A(0,0) - B(10,0) - C(20,0) on L1 with a dock off C.

    Lanes: 0 A->B, 1 B->A, 2 B->C (one way), 3 C->D (docks into "charger").
    """
    return NavGraph.model_validate(
        {
            "waypoints": [
                {"map_name": "L1", "x": 0.0, "y": 0.0, "name": "A"},
                {"map_name": "L1", "x": 10.0, "y": 0.0, "name": "B"},
                {"map_name": "L1", "x": 20.0, "y": 0.0, "name": "C"},
                {"map_name": "L1", "x": 20.0, "y": 5.0},
            ],
            "lanes": [
                {"entry": 0, "exit": 1},
                {"entry": 1, "exit": 0},
                {"entry": 1, "exit": 2},
                {"entry": 2, "exit": 3, "entry_event": {"kind": "dock", "dock_name": "charger", "duration": 5.0}},
            ],
        }
    )


def make_plan() -> list[PlanWaypoint]:
    return [
        PlanWaypoint(x=0.0, y=0.0, graph_index=0),
        PlanWaypoint(x=10.0, y=0.0, graph_index=1, approach_lanes=(0,)),
        PlanWaypoint(x=20.0, y=0.0, graph_index=2, approach_lanes=(2,)),
    ]


def pose(x: float, y: float = 0.0, yaw: float = 0.0, map_name: str = "L1", **extra: Any) -> Pose:
    return Pose(x=x, y=y, yaw=yaw, map_name=map_name, **extra)


@pytest.fixture
def graph() -> NavGraph:
    return make_graph()


@pytest.fixture
def config() -> FleetConfig:
    return FleetConfig(fleet_name=FLEET)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def scheduler(graph: NavGraph) -> FakeScheduler:
    return FakeScheduler(graph)
