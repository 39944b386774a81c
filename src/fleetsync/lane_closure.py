"""Reaction of a travelling robot to newly closed lanes."""

from __future__ import annotations

import enum
from collections.abc import Collection
from dataclasses import dataclass

from fleetsync.estimation import TravelState
from fleetsync.models.graph import NavGraph
from fleetsync.models.plan import Pose
from fleetsync.scheduler import GraphLocation, NearWaypoint, OnLanes


class LanePosition(enum.StrEnum):
    BEFORE = "before"
    WITHIN = "within"
    AFTER = "after"


def classify_lane_position(
    p: tuple[float, float],
    entry: tuple[float, float],
    exit_: tuple[float, float],
) -> LanePosition:
    """Where *p* lies along the segment *entry* → *exit_*.

    Before the entry when it projects behind it, after the exit when it
    projects on or past it, within otherwise.

    >>> classify_lane_position((5.0, 0.0), (0.0, 0.0), (10.0, 0.0))
    <LanePosition.WITHIN: 'within'>
    """
    vx, vy = exit_[0] - entry[0], exit_[1] - entry[1]
    if (p[0] - entry[0]) * vx + (p[1] - entry[1]) * vy < 0.0:
        return LanePosition.BEFORE
    if (p[0] - exit_[0]) * vx + (p[1] - exit_[1]) * vy >= 0.0:
        return LanePosition.AFTER
    return LanePosition.WITHIN


@dataclass(frozen=True, slots=True)
class ClosureVerdict:
    """Outcome of :meth:`LaneClosureReactor.evaluate`.

    ``fallback`` is the location to report when the robot was caught in
    the middle of a lane that just closed.
    """

    reroute: bool = False
    fallback: GraphLocation | None = None


class LaneClosureReactor:
    """Decides whether a closure invalidates the plan a robot is following."""

    def __init__(self, graph: NavGraph) -> None:
        self._graph = graph

    def evaluate(
        self,
        delta: Collection[int],
        closed_lanes: Collection[int],
        travel: TravelState,
        pose: Pose,
    ) -> ClosureVerdict:
        """Check *travel* against *delta* (newly closed) and *closed_lanes* (all closed).

        Returns a no-op verdict when the session has no target index.
        """
        target = travel.target_index
        if target is None or not travel.waypoints:
            return ClosureVerdict()
        target = min(target, len(travel.waypoints) - 1)

        for lane_index in travel.waypoints[target].approach_lanes:
            if lane_index not in delta:
                continue
            return ClosureVerdict(reroute=True, fallback=self._reversal_fallback(lane_index, pose))

        for waypoint in travel.waypoints[target:]:
            if any(lane in closed_lanes for lane in waypoint.approach_lanes):
                return ClosureVerdict(reroute=True)
        return ClosureVerdict()

    def _reversal_fallback(self, lane_index: int, pose: Pose) -> GraphLocation | None:
        lane = self._graph.get_lane(lane_index)
        entry, exit_ = self._graph.lane_endpoints(lane_index)
        if classify_lane_position(pose.xy, entry.xy, exit_.xy) is not LanePosition.WITHIN:
            return None
        reverse = self._graph.lane_from(lane.exit, lane.entry)
        if reverse is not None:
            return OnLanes((reverse.index,))
        return NearWaypoint(lane.entry)
