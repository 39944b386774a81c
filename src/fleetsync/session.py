"""Per-robot command/state synchronization."""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections.abc import Callable, Collection, Sequence
from dataclasses import dataclass
from functools import partial

from fleetsync._transport import Transport
from fleetsync.config import FleetConfig
from fleetsync.estimation import ProgressEstimator, TravelState, interpolate_positions
from fleetsync.exceptions import TransportError, UnknownDockError
from fleetsync.lane_closure import LaneClosureReactor
from fleetsync.models.graph import NavGraph
from fleetsync.models.messages import ModeCommand, PathCommand, RobotMode, RobotReport
from fleetsync.models.plan import PlanWaypoint, Pose, RobotIdentity, Route
from fleetsync.scheduler import (
    ArrivalEstimator,
    CommandFinished,
    GraphLocation,
    OnWaypoint,
    RobotUpdater,
)

_logger = logging.getLogger(__name__)

# Deferred calls into the scheduler, run once the session lock is released.
_Effects = list[Callable[[], None]]


class SessionState(enum.StrEnum):
    IDLE = "idle"
    TRAVELING = "traveling"
    DOCKING = "docking"
    INTERRUPTED = "interrupted"


class CommandKind(enum.StrEnum):
    PATH = "path"
    DOCK = "dock"


@dataclass(slots=True)
class _ActiveCommand:
    task_id: int
    kind: CommandKind
    message: PathCommand | ModeCommand
    on_finished: CommandFinished
    dispatched_at: float
    last_transmit_at: float
    arrival_estimator: ArrivalEstimator | None = None
    dock_waypoint: int | None = None
    acknowledged: bool = False
    retransmits: int = 0
    escalated: bool = False

    @property
    def wire_task_id(self) -> str:
        return self.message.task_id


class CommandSession:
    """Keeps one robot in step with the commands issued to it.

    A session owns at most one active command. Issuing a new one drops the
    previous command's callbacks without calling them. Reports from the
    robot acknowledge, progress and complete the active command; until a
    report echoes its task id the command is retransmitted unchanged.

    Every public method runs under the session's lock. Calls into the
    scheduler (the :class:`~fleetsync.scheduler.RobotUpdater` and the
    command callbacks) are made after the lock is released, so they may
    issue the next command on the same session.

    Parameters
    ----------
    identity : RobotIdentity
        Robot this session commands.
    graph : NavGraph
        Navigation graph shared by the whole fleet.
    config : FleetConfig
        Fleet configuration; supplies timing, tolerances and vehicle traits.
    transport : Transport
        Outbound channel for path and mode commands.
    clock : callable, optional
        Monotonic clock in seconds. Defaults to :func:`time.monotonic`.
    """

    def __init__(
        self,
        identity: RobotIdentity,
        graph: NavGraph,
        config: FleetConfig,
        transport: Transport,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._identity = identity
        self._graph = graph
        self._config = config
        self._transport = transport
        self._clock = clock
        self._estimator = ProgressEstimator(
            graph,
            config.traits,
            waypoint_merge_distance=config.waypoint_merge_distance,
            lane_merge_distance=config.lane_merge_distance,
            off_plan_tolerance=config.off_plan_tolerance,
        )
        self._reactor = LaneClosureReactor(graph)
        self._lock = threading.Lock()

        self._updater: RobotUpdater | None = None
        self._last_task_id = 0
        self._active: _ActiveCommand | None = None
        self._travel = TravelState()
        self._last_report: RobotReport | None = None
        self._last_dock_schedule: float | None = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def identity(self) -> RobotIdentity:
        return self._identity

    @property
    def state(self) -> SessionState:
        with self._lock:
            active = self._active
            if active is None:
                return SessionState.IDLE
            if active.kind is CommandKind.DOCK:
                return SessionState.DOCKING
            if self._travel.interrupted:
                return SessionState.INTERRUPTED
            return SessionState.TRAVELING

    @property
    def current_task_id(self) -> int | None:
        """Task id of the active command, ``None`` when idle."""
        with self._lock:
            return None if self._active is None else self._active.task_id

    @property
    def last_task_id(self) -> int:
        """Most recently issued task id (``0`` before the first command)."""
        with self._lock:
            return self._last_task_id

    @property
    def target_index(self) -> int | None:
        with self._lock:
            return self._travel.target_index

    @property
    def last_known_waypoint(self) -> int | None:
        with self._lock:
            return self._travel.last_known_waypoint

    @property
    def is_interrupted(self) -> bool:
        with self._lock:
            return self._travel.interrupted

    @property
    def last_report(self) -> RobotReport | None:
        with self._lock:
            return self._last_report

    @property
    def has_updater(self) -> bool:
        with self._lock:
            return self._updater is not None

    def set_updater(self, updater: RobotUpdater) -> None:
        """Bind the scheduler's per-robot updater once registration completes."""
        with self._lock:
            self._updater = updater
        _logger.info("Robot %s is now tracked by the scheduler", self._identity)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def follow_new_path(
        self,
        waypoints: Sequence[PlanWaypoint],
        arrival_estimator: ArrivalEstimator | None,
        on_finished: CommandFinished,
    ) -> int:
        """Send *waypoints* to the robot and return the new task id."""
        with self._lock:
            now = self._clock()
            task_id = self._next_task_id()
            command = PathCommand(
                fleet_name=self._identity.fleet_name,
                robot_name=self._identity.robot_name,
                task_id=str(task_id),
                path=tuple(self._waypoint_pose(wp) for wp in waypoints),
            )
            self._travel.reset(waypoints)
            self._active = _ActiveCommand(
                task_id=task_id,
                kind=CommandKind.PATH,
                message=command,
                on_finished=on_finished,
                dispatched_at=now,
                last_transmit_at=now,
                arrival_estimator=arrival_estimator,
            )
            _logger.info(
                "Robot %s: dispatching path task %d with %d waypoints",
                self._identity,
                task_id,
                len(command.path),
            )
            self._transmit(command)
            return task_id

    def dock(self, dock_name: str, on_finished: CommandFinished) -> int:
        """Send a docking request and return the new task id.

        Raises
        ------
        UnknownDockError
            No lane on the graph docks into *dock_name*. The session is
            left exactly as it was.
        """
        dock_waypoint = self._graph.find_dock(dock_name)
        if dock_waypoint is None:
            raise UnknownDockError(dock_name, robot_name=self._identity.robot_name)

        with self._lock:
            now = self._clock()
            task_id = self._next_task_id()
            command = ModeCommand.docking(
                fleet_name=self._identity.fleet_name,
                robot_name=self._identity.robot_name,
                task_id=str(task_id),
                dock_name=dock_name,
            )
            self._travel.reset()
            self._last_dock_schedule = None
            self._active = _ActiveCommand(
                task_id=task_id,
                kind=CommandKind.DOCK,
                message=command,
                on_finished=on_finished,
                dispatched_at=now,
                last_transmit_at=now,
                dock_waypoint=dock_waypoint,
            )
            _logger.info("Robot %s: dispatching dock task %d into [%s]", self._identity, task_id, dock_name)
            self._transmit(command)
            return task_id

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def update_state(self, report: RobotReport) -> None:
        """Process one state report from the robot."""
        effects: _Effects = []
        with self._lock:
            self._update_state(report, effects)
        _run(effects)

    def check_retransmit(self) -> None:
        """Retransmit the active command if it is still unacknowledged and due."""
        effects: _Effects = []
        with self._lock:
            active = self._active
            if active is not None and not active.acknowledged:
                self._retransmit_if_due(active, effects)
        _run(effects)

    def newly_closed_lanes(self, delta: Collection[int], closed_lanes: Collection[int] | None = None) -> None:
        """React to lanes that were just closed.

        *closed_lanes* is the full closed set, defaulting to *delta*.
        """
        effects: _Effects = []
        with self._lock:
            if self._travel.target_index is None:
                return
            pose = self._last_report.location if self._last_report is not None else Pose()
            verdict = self._reactor.evaluate(
                delta,
                delta if closed_lanes is None else closed_lanes,
                self._travel,
                pose,
            )
            if verdict.fallback is not None:
                self._push_position(pose, verdict.fallback, effects)
            if verdict.reroute:
                _logger.info("Robot %s: lane closure blocks its plan, requesting a new one", self._identity)
                self._push_interrupted(effects)
        _run(effects)

    # ------------------------------------------------------------------
    # Internals (lock held)
    # ------------------------------------------------------------------

    def _update_state(self, report: RobotReport, effects: _Effects) -> None:
        self._last_report = report
        self._push_battery(report.battery_fraction, effects)
        self._travel.target_index = None

        active = self._active
        if active is None:
            self._push_position(report.location, self._localize(report.location), effects)
            return

        if report.task_id != active.wire_task_id:
            self._retransmit_if_due(active, effects)
            self._push_position(report.location, self._localize(report.location), effects)
            return
        active.acknowledged = True

        if active.kind is CommandKind.DOCK:
            self._update_docking(active, report, effects)
            return

        if report.mode == RobotMode.ADAPTER_ERROR:
            if not self._travel.interrupted:
                self._travel.interrupted = True
                _logger.warning("Robot %s reported an error while on task %d", self._identity, active.task_id)
                self._push_position(report.location, self._localize(report.location), effects)
                self._push_interrupted(effects)
            return

        if not report.path:
            self._arrive(active, report, effects)
            return

        estimate = self._estimator.estimate_traveling(
            report.location,
            len(report.path),
            self._travel.waypoints,
            self._travel.last_known_waypoint,
        )
        if estimate is None:
            self._push_position(report.location, self._localize(report.location), effects)
            return

        self._travel.target_index = estimate.target_index
        self._remember(estimate.location)
        self._push_position(report.location, estimate.location, effects)
        if estimate.off_plan or estimate.remaining is None:
            _logger.debug("Robot %s is off its plan near index %d", self._identity, estimate.target_index)
            return
        if active.arrival_estimator is not None:
            effects.append(partial(active.arrival_estimator, estimate.target_index, estimate.remaining))

    def _arrive(self, active: _ActiveCommand, report: RobotReport, effects: _Effects) -> None:
        pose = report.location
        location: GraphLocation | None = None
        if self._travel.waypoints:
            final = self._travel.waypoints[-1]
            distance = pose.distance_to(final.x, final.y)
            if distance > self._config.arrival_tolerance:
                _logger.warning(
                    "Robot %s reports arrival for task %d but is %.2fm from its final waypoint",
                    self._identity,
                    active.task_id,
                    distance,
                )
            if final.graph_index is not None:
                location = OnWaypoint(final.graph_index)
                self._travel.last_known_waypoint = final.graph_index
        self._push_position(pose, location if location is not None else self._localize(pose), effects)

        self._active = None
        _logger.info(
            "Robot %s finished path task %d after %.1fs",
            self._identity,
            active.task_id,
            self._clock() - active.dispatched_at,
        )
        effects.append(active.on_finished)

    def _update_docking(self, active: _ActiveCommand, report: RobotReport, effects: _Effects) -> None:
        if report.mode != RobotMode.DOCKING:
            if active.dock_waypoint is not None:
                self._travel.last_known_waypoint = active.dock_waypoint
                self._push_position(report.location, OnWaypoint(active.dock_waypoint), effects)
            self._active = None
            _logger.info(
                "Robot %s finished dock task %d after %.1fs",
                self._identity,
                active.task_id,
                self._clock() - active.dispatched_at,
            )
            effects.append(active.on_finished)
            return

        if not report.path:
            return
        now = self._clock()
        last = self._last_dock_schedule
        if last is not None and now - last <= self._config.dock_schedule_period:
            return

        pose = report.location
        positions = [(pose.x, pose.y, pose.yaw)] + [(p.x, p.y, p.yaw) for p in report.path]
        trajectory = interpolate_positions(self._config.traits, pose.t or now, positions)
        if len(trajectory) < 2:
            return
        self._last_dock_schedule = now
        updater = self._updater
        if updater is None:
            _logger.debug("Robot %s has no updater yet; docking trajectory skipped", self._identity)
            return
        effects.append(partial(updater.schedule_update, Route(map_name=pose.map_name, trajectory=trajectory)))

    def _retransmit_if_due(self, active: _ActiveCommand, effects: _Effects) -> None:
        if active.escalated:
            return
        now = self._clock()
        if now - active.last_transmit_at <= self._config.retry_interval:
            return

        limit = self._config.max_retransmits
        if limit and active.retransmits >= limit:
            active.escalated = True
            self._travel.interrupted = True
            _logger.error(
                "Robot %s did not acknowledge task %d after %d retransmissions; giving up",
                self._identity,
                active.task_id,
                active.retransmits,
            )
            self._push_interrupted(effects)
            return

        active.retransmits += 1
        active.last_transmit_at = now
        _logger.debug(
            "Robot %s: retransmitting task %d (attempt %d)",
            self._identity,
            active.task_id,
            active.retransmits,
        )
        self._transmit(active.message)

    def _transmit(self, message: PathCommand | ModeCommand) -> None:
        try:
            if isinstance(message, PathCommand):
                self._transport.publish_path_command(message)
            else:
                self._transport.publish_mode_command(message)
        except TransportError as exc:
            # Unacknowledged commands are retransmitted, so a failed publish is retried.
            _logger.warning("Robot %s: failed to publish task %s: %s", self._identity, message.task_id, exc)

    def _next_task_id(self) -> int:
        self._last_task_id += 1
        return self._last_task_id

    def _waypoint_pose(self, waypoint: PlanWaypoint) -> Pose:
        map_name = ""
        if waypoint.graph_index is not None:
            map_name = self._graph.get_waypoint(waypoint.graph_index).map_name
        return Pose(x=waypoint.x, y=waypoint.y, yaw=waypoint.yaw, map_name=map_name, t=waypoint.time)

    def _localize(self, pose: Pose) -> GraphLocation:
        location = self._estimator.localize(pose, self._travel.last_known_waypoint)
        self._remember(location)
        return location

    def _remember(self, location: GraphLocation) -> None:
        if isinstance(location, OnWaypoint):
            self._travel.last_known_waypoint = location.waypoint

    def _push_battery(self, fraction: float, effects: _Effects) -> None:
        if not 0.0 <= fraction <= 1.0:
            _logger.error("Robot %s reported battery fraction %s outside [0, 1]", self._identity, fraction)
            return
        updater = self._updater
        if updater is None:
            _logger.debug("Robot %s has no updater yet; battery update skipped", self._identity)
            return
        effects.append(partial(updater.update_battery, fraction))

    def _push_position(self, pose: Pose, location: GraphLocation, effects: _Effects) -> None:
        updater = self._updater
        if updater is None:
            _logger.debug("Robot %s has no updater yet; position update skipped", self._identity)
            return
        effects.append(partial(updater.update_position, pose, location))

    def _push_interrupted(self, effects: _Effects) -> None:
        updater = self._updater
        if updater is None:
            _logger.debug("Robot %s has no updater yet; interruption not reported", self._identity)
            return
        effects.append(updater.interrupted)


def _run(effects: _Effects) -> None:
    for effect in effects:
        effect()
