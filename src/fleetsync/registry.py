"""Fleet-wide ownership of command sessions and lane closures."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial

from fleetsync._transport import LiftClearanceClient, Transport
from fleetsync.config import FleetConfig
from fleetsync.estimation import describe_distance
from fleetsync.exceptions import TransportError
from fleetsync.lift import make_lift_entry_watchdog
from fleetsync.models.graph import NavGraph
from fleetsync.models.messages import FleetState, LaneClosureRequest, LaneClosureStatus, RobotReport
from fleetsync.models.plan import RobotIdentity
from fleetsync.scheduler import RobotUpdater, Scheduler
from fleetsync.session import CommandSession

_logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _AdmissionRecord:
    attempts: int
    last_attempt_at: float
    hint: str


class FleetRegistry:
    """Admits robots, owns their sessions and fans lane closures out to them.

    Parameters
    ----------
    config : FleetConfig
        Fleet configuration. Reports and closure requests for other fleets
        are ignored.
    graph : NavGraph
        Navigation graph shared by every session.
    scheduler : Scheduler
        Admission, registration and closed-lane bookkeeping.
    transport : Transport
        Outbound channel handed to every session.
    clock : callable, optional
        Monotonic clock in seconds. Defaults to :func:`time.monotonic`.
    on_closed_lanes : callable, optional
        Invoked with the new :class:`LaneClosureStatus` after every
        processed closure request.
    lift_clearance : LiftClearanceClient, optional
        When given, every admitted robot gets a lift entry watchdog that
        asks this service for clearance.
    """

    def __init__(
        self,
        config: FleetConfig,
        graph: NavGraph,
        scheduler: Scheduler,
        transport: Transport,
        *,
        clock: Callable[[], float] = time.monotonic,
        on_closed_lanes: Callable[[LaneClosureStatus], None] | None = None,
        lift_clearance: LiftClearanceClient | None = None,
    ) -> None:
        self._config = config
        self._graph = graph
        self._scheduler = scheduler
        self._transport = transport
        self._clock = clock
        self._on_closed_lanes = on_closed_lanes
        self._lift_clearance = lift_clearance
        self._lock = threading.Lock()
        self._closure_lock = threading.RLock()
        self._admitting: set[str] = set()
        self._sessions: dict[str, CommandSession] = {}
        self._excluded: dict[str, _AdmissionRecord] = {}
        self._closed_lanes: set[int] = set()

    @property
    def fleet_name(self) -> str:
        return self._config.fleet_name

    @property
    def sessions(self) -> dict[str, CommandSession]:
        """Snapshot of admitted robots keyed by robot name."""
        with self._lock:
            return dict(self._sessions)

    @property
    def closed_lanes(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._closed_lanes)

    @property
    def excluded_robots(self) -> frozenset[str]:
        """Robots whose admission failed and that have not been admitted since."""
        with self._lock:
            return frozenset(self._excluded)

    def get_session(self, robot_name: str) -> CommandSession | None:
        with self._lock:
            return self._sessions.get(robot_name)

    def admission_hint(self, robot_name: str) -> str | None:
        """Diagnostic recorded for the last failed admission of *robot_name*."""
        with self._lock:
            record = self._excluded.get(robot_name)
            return None if record is None else record.hint

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def on_fleet_state(self, state: FleetState) -> None:
        if state.name != self._config.fleet_name:
            _logger.debug("Ignoring fleet state for fleet [%s]", state.name)
            return
        for report in state.robots:
            self.on_state(report)

    def on_state(self, report: RobotReport) -> None:
        """Route a robot report to its session, admitting the robot first if needed.

        Reports of a robot whose admission is still in progress on another
        thread are dropped.
        """
        name = report.name
        now = self._clock()
        with self._lock:
            session = self._sessions.get(name)
            if session is None:
                if name in self._admitting:
                    return
                record = self._excluded.get(name)
                if record is not None and not self._may_retry(record, now):
                    return
                self._admitting.add(name)

        if session is None:
            try:
                session = self._admit(report, now)
            finally:
                with self._lock:
                    self._admitting.discard(name)
            if session is None:
                return
        session.update_state(report)

    def on_lane_closure(self, request: LaneClosureRequest) -> None:
        """Apply a lane open/close request and tell every session what closed.

        Lanes are opened before they are closed, so a lane named in both
        lists ends up closed. Requests are handled one at a time; the
        scheduler and the sessions are called without the state lock held.
        """
        if not request.targets(self._config.fleet_name):
            _logger.debug("Ignoring lane closure request for fleet [%s]", request.fleet_name)
            return

        with self._closure_lock:
            with self._lock:
                closed_before = frozenset(self._closed_lanes)
                self._closed_lanes.difference_update(request.open_lanes)
                self._closed_lanes.update(request.close_lanes)
                closed = frozenset(self._closed_lanes)
                sessions = list(self._sessions.values())
            delta = frozenset(request.close_lanes) - closed_before
            status = LaneClosureStatus(fleet_name=self._config.fleet_name, closed_lanes=tuple(sorted(closed)))

            self._scheduler.update_closed_lanes(closed)
            if delta:
                _logger.info("Fleet %s: newly closed lanes %s", self._config.fleet_name, sorted(delta))
                for session in sessions:
                    session.newly_closed_lanes(delta, closed)

            try:
                self._transport.publish_closed_lanes(status)
            except TransportError as exc:
                _logger.warning("Failed to publish closed lanes for fleet %s: %s", self._config.fleet_name, exc)
            if self._on_closed_lanes is not None:
                self._on_closed_lanes(status)

    def tick(self) -> None:
        """Periodic entry point: run every session's retransmit check."""
        for session in self.sessions.values():
            session.check_retransmit()

    # ------------------------------------------------------------------
    # Admission (called without the lock)
    # ------------------------------------------------------------------

    def _admit(self, report: RobotReport, now: float) -> CommandSession | None:
        name = report.name
        pose = report.location
        starts = self._scheduler.compute_admission_starts(pose, pose.map_name, now)
        if not starts:
            hint = describe_distance(pose, self._graph)
            with self._lock:
                record = self._excluded.get(name)
                attempts = 1 if record is None else record.attempts + 1
                self._excluded[name] = _AdmissionRecord(attempts=attempts, last_attempt_at=now, hint=hint)
            _logger.error(
                "Unable to compute a starting point for robot [%s] of fleet [%s] (attempt %d). %s",
                name,
                self._config.fleet_name,
                attempts,
                hint,
            )
            if not self._retry_allowed(attempts):
                _logger.error("Robot [%s] will not be commanded until restart", name)
            return None

        identity = RobotIdentity(fleet_name=self._config.fleet_name, robot_name=name)
        session = CommandSession(identity, self._graph, self._config, self._transport, clock=self._clock)
        self._scheduler.register(identity, self._config.traits, starts, partial(self._on_ready, session))
        with self._lock:
            self._sessions[name] = session
            self._excluded.pop(name, None)
        _logger.info("Admitted robot %s with %d candidate starts", identity, len(starts))
        return session

    def _on_ready(self, session: CommandSession, updater: RobotUpdater) -> None:
        if self._lift_clearance is not None:
            updater.set_lift_entry_watchdog(
                make_lift_entry_watchdog(self._lift_clearance, session.identity.robot_name)
            )
        session.set_updater(updater)

    def _retry_allowed(self, attempts: int) -> bool:
        return self._config.readmission_interval > 0 and attempts <= self._config.max_readmission_attempts

    def _may_retry(self, record: _AdmissionRecord, now: float) -> bool:
        if not self._retry_allowed(record.attempts):
            return False
        return now - record.last_attempt_at >= self._config.readmission_interval
