"""Navigation graph model.

The graph is built once (from a dict or a JSON file) and then shared,
read-only, by every session of the fleet. Waypoint and lane indices are
their positions in the respective lists.

Lane events are a closed set of variants discriminated on ``kind``;
callers match them with ``isinstance`` (see :meth:`NavGraph.find_dock`).
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, PrivateAttr, ValidationError, model_validator

from fleetsync.exceptions import GraphError
from fleetsync.models._base import FleetBaseModel

# ------------------------------------------------------------------
# Lane events
# ------------------------------------------------------------------


class DockEvent(FleetBaseModel):
    kind: Literal["dock"] = "dock"
    dock_name: str
    duration: float = 0.0


class WaitEvent(FleetBaseModel):
    kind: Literal["wait"] = "wait"
    duration: float = 0.0


class DoorOpenEvent(FleetBaseModel):
    kind: Literal["door_open"] = "door_open"
    name: str
    duration: float = 0.0


class DoorCloseEvent(FleetBaseModel):
    kind: Literal["door_close"] = "door_close"
    name: str
    duration: float = 0.0


class LiftSessionBeginEvent(FleetBaseModel):
    kind: Literal["lift_session_begin"] = "lift_session_begin"
    lift_name: str
    floor_name: str
    duration: float = 0.0


class LiftMoveEvent(FleetBaseModel):
    kind: Literal["lift_move"] = "lift_move"
    lift_name: str
    floor_name: str
    duration: float = 0.0


class LiftDoorOpenEvent(FleetBaseModel):
    kind: Literal["lift_door_open"] = "lift_door_open"
    lift_name: str
    floor_name: str
    duration: float = 0.0


class LiftSessionEndEvent(FleetBaseModel):
    kind: Literal["lift_session_end"] = "lift_session_end"
    lift_name: str
    floor_name: str
    duration: float = 0.0


LaneEvent = Annotated[
    DockEvent
    | WaitEvent
    | DoorOpenEvent
    | DoorCloseEvent
    | LiftSessionBeginEvent
    | LiftMoveEvent
    | LiftDoorOpenEvent
    | LiftSessionEndEvent,
    Field(discriminator="kind"),
]


# ------------------------------------------------------------------
# Waypoints and lanes
# ------------------------------------------------------------------


class NavWaypoint(FleetBaseModel):
    index: int
    map_name: str
    x: float
    y: float
    name: str | None = None
    is_charger: bool = False
    is_holding_point: bool = False

    @property
    def xy(self) -> tuple[float, float]:
        return (self.x, self.y)

    @property
    def label(self) -> str:
        """Human readable name used in log messages (``#index`` if unnamed)."""
        return self.name if self.name else f"#{self.index}"


class NavLane(FleetBaseModel):
    index: int
    entry: int
    exit: int
    entry_event: LaneEvent | None = None
    exit_event: LaneEvent | None = None
    speed_limit: float | None = None


class NavGraph(FleetBaseModel):
    """Immutable navigation graph.

    Usage::

        graph = NavGraph.model_validate(
            {
                "waypoints": [
                    {"map_name": "L1", "x": 0.0, "y": 0.0, "name": "A"},
                    {"map_name": "L1", "x": 10.0, "y": 0.0, "name": "B"},
                ],
                "lanes": [{"entry": 0, "exit": 1}, {"entry": 1, "exit": 0}],
            }
        )
    """

    waypoints: tuple[NavWaypoint, ...] = ()
    lanes: tuple[NavLane, ...] = ()

    _lanes_by_endpoints: dict[tuple[int, int], int] = PrivateAttr(default_factory=dict)
    _waypoints_by_name: dict[str, int] = PrivateAttr(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _assign_indices(cls, values: Any) -> Any:
        """Fill in ``index`` from list position where the caller omitted it."""
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        for key in ("waypoints", "lanes"):
            items = merged.get(key)
            if not isinstance(items, (list, tuple)):
                continue
            indexed: list[Any] = []
            for position, item in enumerate(items):
                if isinstance(item, dict) and "index" not in item:
                    item = {**item, "index": position}
                indexed.append(item)
            merged[key] = indexed
        return merged

    @model_validator(mode="after")
    def _check_references(self) -> NavGraph:
        for position, wp in enumerate(self.waypoints):
            if wp.index != position:
                raise ValueError(f"waypoint at position {position} declares index {wp.index}")
        count = self.num_waypoints
        for position, lane in enumerate(self.lanes):
            if lane.index != position:
                raise ValueError(f"lane at position {position} declares index {lane.index}")
            if not (0 <= lane.entry < count and 0 <= lane.exit < count):
                raise ValueError(f"lane {position} references a missing waypoint ({lane.entry} -> {lane.exit})")
        return self

    def model_post_init(self, __context: Any) -> None:
        for lane in self.lanes:
            self._lanes_by_endpoints.setdefault((lane.entry, lane.exit), lane.index)
        for wp in self.waypoints:
            if wp.name:
                self._waypoints_by_name[wp.name] = wp.index

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NavGraph:
        """Build a graph, converting validation failures to :class:`GraphError`."""
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise GraphError(f"Invalid navigation graph: {exc}") from exc

    @classmethod
    def from_json_file(cls, path: str | Path) -> NavGraph:
        text = Path(path).read_text(encoding="utf-8")
        try:
            return cls.model_validate_json(text)
        except ValidationError as exc:
            raise GraphError(f"Invalid navigation graph in {path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def num_waypoints(self) -> int:
        return len(self.waypoints)

    def get_waypoint(self, index: int) -> NavWaypoint:
        return self.waypoints[index]

    def get_lane(self, index: int) -> NavLane:
        return self.lanes[index]

    def find_waypoint(self, name: str) -> NavWaypoint | None:
        index = self._waypoints_by_name.get(name)
        return None if index is None else self.waypoints[index]

    def lane_from(self, entry: int, exit_: int) -> NavLane | None:
        """Return the lane going from waypoint *entry* to waypoint *exit_*, if any."""
        index = self._lanes_by_endpoints.get((entry, exit_))
        return None if index is None else self.lanes[index]

    def lane_endpoints(self, index: int) -> tuple[NavWaypoint, NavWaypoint]:
        lane = self.lanes[index]
        return self.waypoints[lane.entry], self.waypoints[lane.exit]

    def find_dock(self, dock_name: str) -> int | None:
        """Return the entry waypoint of the first lane that docks into *dock_name*."""
        for lane in self.lanes:
            event = lane.entry_event
            if isinstance(event, DockEvent) and event.dock_name == dock_name:
                return lane.entry
        return None

    def map_names(self) -> frozenset[str]:
        return frozenset(wp.map_name for wp in self.waypoints)
