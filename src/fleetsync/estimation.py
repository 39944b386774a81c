"""Progress estimation against a plan or the raw navigation graph.

Pure computation: nothing here talks to the scheduler or the transport.
:class:`~fleetsync.session.CommandSession` feeds reported poses in and
pushes the resulting locations and arrival estimates out.
"""

from __future__ import annotations

import enum
import math
from collections.abc import Sequence
from dataclasses import dataclass

from fleetsync._constants import MIN_LANE_LENGTH
from fleetsync.models.graph import NavGraph
from fleetsync.models.plan import PlanWaypoint, Pose, TrajectoryPoint, VehicleTraits
from fleetsync.scheduler import GraphLocation, NearWaypoint, OffGraph, OnLanes, OnWaypoint

# Consecutive trajectory positions closer than this are merged.
_DUPLICATE_DISTANCE = 1e-3
_DUPLICATE_YAW = 1e-3


class FeatureKind(enum.StrEnum):
    WAYPOINT = "waypoint"
    LANE = "lane"


@dataclass(frozen=True, slots=True)
class GraphDistance:
    """Distance from a pose to the closest graph feature."""

    value: float
    index: int
    kind: FeatureKind


@dataclass(slots=True)
class TravelState:
    """What a session knows about the plan its robot is following.

    Owned by one session and only touched under that session's lock.
    """

    waypoints: tuple[PlanWaypoint, ...] = ()
    target_index: int | None = None
    last_known_waypoint: int | None = None
    interrupted: bool = False

    def reset(self, waypoints: Sequence[PlanWaypoint] = ()) -> None:
        """Start a new command; the last known waypoint survives."""
        self.waypoints = tuple(waypoints)
        self.target_index = None
        self.interrupted = False


@dataclass(frozen=True, slots=True)
class TravelEstimate:
    """Result of a plan-relative estimate.

    ``remaining`` is ``None`` when the robot was found off-plan, in which
    case ``location`` comes from a raw localization.
    """

    target_index: int
    location: GraphLocation
    remaining: float | None
    off_plan: bool = False


# ------------------------------------------------------------------
# Geometry helpers
# ------------------------------------------------------------------


def _dot(ax: float, ay: float, bx: float, by: float) -> float:
    return ax * bx + ay * by


def project_onto_segment(
    p: tuple[float, float],
    start: tuple[float, float],
    end: tuple[float, float],
) -> tuple[float, float] | None:
    """Return ``(u, distance)`` of *p* against segment *start* → *end*.

    ``u`` is the position along the segment, clamped to
    ``[0, length]``; ``distance`` is measured to that clamped point.
    ``None`` for degenerate segments.
    """
    vx, vy = end[0] - start[0], end[1] - start[1]
    length = math.hypot(vx, vy)
    if length < MIN_LANE_LENGTH:
        return None
    dx, dy = p[0] - start[0], p[1] - start[1]
    u = min(max(_dot(dx, dy, vx, vy) / length, 0.0), length)
    px = start[0] + u * vx / length
    py = start[1] + u * vy / length
    return u, math.hypot(p[0] - px, p[1] - py)


def _wrap_angle(angle: float) -> float:
    return math.atan2(math.sin(angle), math.cos(angle))


def _motion_time(distance: float, velocity: float, acceleration: float) -> float:
    """Time to cover *distance* with a trapezoidal velocity profile."""
    if distance <= 0.0:
        return 0.0
    ramp_distance = velocity * velocity / acceleration
    if distance >= ramp_distance:
        return distance / velocity + velocity / acceleration
    return 2.0 * math.sqrt(distance / acceleration)


def travel_time(
    traits: VehicleTraits,
    start: tuple[float, float, float],
    end: tuple[float, float, float],
) -> float:
    """Seconds to turn from ``start`` yaw to ``end`` yaw and drive between them."""
    distance = math.hypot(end[0] - start[0], end[1] - start[1])
    turn = abs(_wrap_angle(end[2] - start[2]))
    return _motion_time(distance, traits.linear_velocity, traits.linear_acceleration) + _motion_time(
        turn, traits.angular_velocity, traits.angular_acceleration
    )


def interpolate_positions(
    traits: VehicleTraits,
    start_time: float,
    positions: Sequence[tuple[float, float, float]],
) -> tuple[TrajectoryPoint, ...]:
    """Time-stamp a sequence of ``(x, y, yaw)`` positions.

    The first position is placed at *start_time*; every following one is
    reached after :func:`travel_time`. Positions that do not move the
    robot are dropped, so the result may hold fewer than two points.
    """
    if not positions:
        return ()
    first = positions[0]
    points = [TrajectoryPoint(t=start_time, x=first[0], y=first[1], yaw=first[2])]
    previous = first
    t = start_time
    for position in positions[1:]:
        moved = math.hypot(position[0] - previous[0], position[1] - previous[1])
        turned = abs(_wrap_angle(position[2] - previous[2]))
        if moved < _DUPLICATE_DISTANCE and turned < _DUPLICATE_YAW:
            continue
        t += travel_time(traits, previous, position)
        points.append(TrajectoryPoint(t=t, x=position[0], y=position[1], yaw=position[2]))
        previous = position
    return tuple(points)


# ------------------------------------------------------------------
# Nearest-feature search
# ------------------------------------------------------------------


def nearest_waypoint(pose: Pose, graph: NavGraph) -> GraphDistance | None:
    best: GraphDistance | None = None
    for wp in graph.waypoints:
        if wp.map_name != pose.map_name:
            continue
        dist = pose.distance_to(wp.x, wp.y)
        if best is None or dist < best.value:
            best = GraphDistance(dist, wp.index, FeatureKind.WAYPOINT)
    return best


def lane_distances(pose: Pose, graph: NavGraph) -> list[GraphDistance]:
    """Distances to every lane with an endpoint on the pose's map, nearest first."""
    found: list[GraphDistance] = []
    for lane in graph.lanes:
        wp0 = graph.waypoints[lane.entry]
        wp1 = graph.waypoints[lane.exit]
        if pose.map_name != wp0.map_name and pose.map_name != wp1.map_name:
            continue
        projection = project_onto_segment(pose.xy, wp0.xy, wp1.xy)
        if projection is None:
            continue
        found.append(GraphDistance(projection[1], lane.index, FeatureKind.LANE))
    found.sort(key=lambda d: d.value)
    return found


def distance_from_graph(pose: Pose, graph: NavGraph) -> GraphDistance | None:
    """Closest waypoint or lane to *pose* on its map.

    Waypoints win ties. ``None`` when the map has no waypoints or lanes.
    """
    best = nearest_waypoint(pose, graph)
    lanes = lane_distances(pose, graph)
    if lanes and (best is None or lanes[0].value < best.value):
        best = lanes[0]
    return best


def describe_distance(pose: Pose, graph: NavGraph) -> str:
    """Human readable hint about where *pose* lies relative to the graph."""
    distance = distance_from_graph(pose, graph)
    if distance is None:
        return f"None of the waypoints in the graph are on a map called [{pose.map_name}]."
    if distance.kind == FeatureKind.LANE:
        wp0, wp1 = graph.lane_endpoints(distance.index)
        return (
            f"The closest lane on the navigation graph [{distance.index}] connects waypoint "
            f"[{wp0.label}] to [{wp1.label}] and is a distance of [{distance.value:.6f}m] from the robot."
        )
    wp = graph.get_waypoint(distance.index)
    return (
        f"The closest waypoint on the navigation graph [{wp.label}] is a distance of "
        f"[{distance.value:.6f}m] from the robot."
    )


# ------------------------------------------------------------------
# Estimator
# ------------------------------------------------------------------


def target_plan_index(plan_length: int, remaining_length: int) -> int:
    """Index of the plan waypoint the robot is heading to.

    The robot reports the tail of the plan it still has to travel, so the
    target is the first waypoint of that tail. Clamped to the plan.
    """
    if plan_length <= 0:
        return 0
    return min(max(plan_length - remaining_length, 0), plan_length - 1)


class ProgressEstimator:
    """Maps reported poses onto a plan or, without one, onto the graph."""

    def __init__(
        self,
        graph: NavGraph,
        traits: VehicleTraits,
        *,
        waypoint_merge_distance: float = 0.1,
        lane_merge_distance: float = 1.0,
        off_plan_tolerance: float = 1.0,
    ) -> None:
        self._graph = graph
        self._traits = traits
        self._waypoint_merge_distance = waypoint_merge_distance
        self._lane_merge_distance = lane_merge_distance
        self._off_plan_tolerance = off_plan_tolerance

    def localize(self, pose: Pose, last_known_waypoint: int | None = None) -> GraphLocation:
        """Raw localization of *pose* against the whole graph."""
        waypoint = nearest_waypoint(pose, self._graph)
        if waypoint is not None and waypoint.value <= self._waypoint_merge_distance:
            return OnWaypoint(waypoint.index)

        lanes = [d.index for d in lane_distances(pose, self._graph) if d.value <= self._lane_merge_distance]
        if lanes:
            return OnLanes(tuple(lanes))

        if waypoint is not None:
            return NearWaypoint(waypoint.index)
        if last_known_waypoint is not None:
            return NearWaypoint(last_known_waypoint)
        return OffGraph(pose.map_name)

    def plan_deviation(self, pose: Pose, waypoints: Sequence[PlanWaypoint], target: int) -> float:
        """Distance from *pose* to the plan near *target*.

        Measured to the target waypoint and to the segment leading into it.
        """
        target_wp = waypoints[target]
        deviation = pose.distance_to(target_wp.x, target_wp.y)
        if target > 0:
            projection = project_onto_segment(pose.xy, waypoints[target - 1].xy, target_wp.xy)
            if projection is not None:
                deviation = min(deviation, projection[1])
        return deviation

    def estimate_traveling(
        self,
        pose: Pose,
        remaining_length: int,
        waypoints: Sequence[PlanWaypoint],
        last_known_waypoint: int | None = None,
    ) -> TravelEstimate | None:
        """Plan-relative estimate; ``None`` when there is no plan to compare with."""
        if not waypoints:
            return None

        target = target_plan_index(len(waypoints), remaining_length)
        if self.plan_deviation(pose, waypoints, target) > self._off_plan_tolerance:
            return TravelEstimate(
                target_index=target,
                location=self.localize(pose, last_known_waypoint),
                remaining=None,
                off_plan=True,
            )

        target_wp = waypoints[target]
        location: GraphLocation
        at_target = pose.distance_to(target_wp.x, target_wp.y) <= self._waypoint_merge_distance
        if at_target and target_wp.graph_index is not None:
            location = OnWaypoint(target_wp.graph_index)
        elif target_wp.approach_lanes:
            location = OnLanes(tuple(target_wp.approach_lanes))
        else:
            location = self.localize(pose, last_known_waypoint)

        remaining = travel_time(
            self._traits,
            (pose.x, pose.y, pose.yaw),
            (target_wp.x, target_wp.y, target_wp.yaw),
        )
        return TravelEstimate(target_index=target, location=location, remaining=remaining)
