"""fleetsync - Command and state synchronization between a fleet scheduler and its robots."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("fleetsync")
except PackageNotFoundError:
    __version__ = "0+local"
from fleetsync._mqtt import FleetMqttRuntime
from fleetsync._transport import LiftClearanceClient, Transport
from fleetsync.config import FleetConfig
from fleetsync.estimation import (
    FeatureKind,
    GraphDistance,
    ProgressEstimator,
    TravelEstimate,
    TravelState,
    distance_from_graph,
    interpolate_positions,
)
from fleetsync.exceptions import (
    FleetConfigError,
    FleetSyncError,
    GraphError,
    TransportError,
    UnknownDockError,
)
from fleetsync.lane_closure import (
    ClosureVerdict,
    LaneClosureReactor,
    LanePosition,
    classify_lane_position,
)
from fleetsync.models import (
    FleetState,
    LaneClosureRequest,
    LaneClosureStatus,
    LiftClearanceDecision,
    ModeCommand,
    NavGraph,
    PathCommand,
    PlanWaypoint,
    Pose,
    RobotIdentity,
    RobotMode,
    RobotReport,
    Route,
    VehicleTraits,
)
from fleetsync.registry import FleetRegistry
from fleetsync.scheduler import (
    GraphLocation,
    NearWaypoint,
    OffGraph,
    OnLanes,
    OnWaypoint,
    LiftEntryWatchdog,
    RobotUpdater,
    Scheduler,
    Start,
)
from fleetsync.session import CommandSession, SessionState

__all__ = [
    "__version__",
    "ClosureVerdict",
    "CommandSession",
    "FeatureKind",
    "FleetConfig",
    "FleetConfigError",
    "FleetMqttRuntime",
    "FleetRegistry",
    "FleetState",
    "FleetSyncError",
    "GraphDistance",
    "GraphError",
    "GraphLocation",
    "LaneClosureReactor",
    "LaneClosureRequest",
    "LaneClosureStatus",
    "LanePosition",
    "LiftClearanceClient",
    "LiftClearanceDecision",
    "LiftEntryWatchdog",
    "ModeCommand",
    "NavGraph",
    "NearWaypoint",
    "OffGraph",
    "OnLanes",
    "OnWaypoint",
    "PathCommand",
    "PlanWaypoint",
    "Pose",
    "ProgressEstimator",
    "RobotIdentity",
    "RobotMode",
    "RobotReport",
    "RobotUpdater",
    "Route",
    "Scheduler",
    "SessionState",
    "Start",
    "Transport",
    "TransportError",
    "TravelEstimate",
    "TravelState",
    "UnknownDockError",
    "VehicleTraits",
    "classify_lane_position",
    "distance_from_graph",
    "interpolate_positions",
]
