from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence

import pytest
from conftest import FLEET, FakeClock, FakeScheduler, FakeTransport, make_plan, pose

from fleetsync.config import FleetConfig
from fleetsync.models import (
    FleetState,
    LaneClosureRequest,
    LaneClosureStatus,
    NavGraph,
    Pose,
    RobotMode,
    RobotReport,
    VehicleTraits,
)
from fleetsync.registry import FleetRegistry
from fleetsync.scheduler import OnWaypoint, Start


def _registry(
    graph: NavGraph,
    scheduler: FakeScheduler,
    transport: FakeTransport,
    clock: FakeClock,
    config: FleetConfig | None = None,
    listener: list[LaneClosureStatus] | None = None,
) -> FleetRegistry:
    return FleetRegistry(
        config or FleetConfig(fleet_name=FLEET),
        graph,
        scheduler,
        transport,
        clock=clock,
        on_closed_lanes=None if listener is None else listener.append,
    )


def _report(name: str, location: Pose, task_id: str = "", path: tuple[Pose, ...] = ()) -> RobotReport:
    return RobotReport(name=name, task_id=task_id, mode=RobotMode.MOVING, location=location, path=path)


class TestAdmission:
    def test_first_report_admits_and_forwards(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        registry = _registry(graph, scheduler, transport, clock)
        registry.on_fleet_state(FleetState(name=FLEET, robots=(_report("r1", pose(0.0)),)))

        session = registry.get_session("r1")
        assert session is not None
        assert session.has_updater
        identity, traits, starts = scheduler.registered[0]
        assert str(identity) == f"{FLEET}/r1"
        assert traits == VehicleTraits()
        assert len(starts) == 1
        assert scheduler.updaters["r1"].last_location == OnWaypoint(0)

        registry.on_state(_report("r1", pose(10.0)))
        assert len(scheduler.registered) == 1
        assert scheduler.updaters["r1"].last_location == OnWaypoint(1)

    def test_other_fleet_is_ignored(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        registry = _registry(graph, scheduler, transport, clock)
        registry.on_fleet_state(FleetState(name="otherFleet", robots=(_report("r1", pose(0.0)),)))
        assert registry.sessions == {}
        assert scheduler.admission_calls == []

    def test_failure_excludes_robot_with_hint(
        self,
        graph: NavGraph,
        scheduler: FakeScheduler,
        transport: FakeTransport,
        clock: FakeClock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        scheduler.admissible = False
        registry = _registry(graph, scheduler, transport, clock)
        with caplog.at_level(logging.ERROR, logger="fleetsync.registry"):
            registry.on_state(_report("r1", pose(5.0, 2.0)))

        assert registry.get_session("r1") is None
        assert registry.excluded_robots == frozenset({"r1"})
        hint = registry.admission_hint("r1")
        assert hint is not None
        assert "closest lane" in hint
        assert "Unable to compute a starting point for robot [r1]" in caplog.text

    def test_failure_off_every_map(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        registry = _registry(graph, scheduler, transport, clock)
        registry.on_state(_report("r1", pose(0.0, map_name="L9")))
        hint = registry.admission_hint("r1")
        assert hint is not None
        assert "[L9]" in hint

    def test_readmission_after_interval(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        registry = _registry(graph, scheduler, transport, clock)
        registry.on_state(_report("r1", pose(0.0, map_name="L9")))

        clock.advance(5.0)
        registry.on_state(_report("r1", pose(0.0)))
        assert len(scheduler.admission_calls) == 1

        clock.advance(5.0)
        registry.on_state(_report("r1", pose(0.0)))
        assert len(scheduler.admission_calls) == 2
        assert registry.get_session("r1") is not None
        assert registry.excluded_robots == frozenset()

    def test_readmission_is_bounded(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        config = FleetConfig(fleet_name=FLEET, readmission_interval=1.0, max_readmission_attempts=2)
        registry = _registry(graph, scheduler, transport, clock, config)
        for _ in range(6):
            registry.on_state(_report("r1", pose(0.0, map_name="L9")))
            clock.advance(1.0)
        assert len(scheduler.admission_calls) == 3
        assert registry.excluded_robots == frozenset({"r1"})

    def test_zero_interval_never_retries(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        config = FleetConfig(fleet_name=FLEET, readmission_interval=0.0)
        registry = _registry(graph, scheduler, transport, clock, config)
        registry.on_state(_report("r1", pose(0.0, map_name="L9")))
        clock.advance(1000.0)
        registry.on_state(_report("r1", pose(0.0)))
        assert len(scheduler.admission_calls) == 1
        assert registry.get_session("r1") is None

    def test_reports_before_ready_are_processed(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        scheduler.defer_ready = True
        registry = _registry(graph, scheduler, transport, clock)
        registry.on_state(_report("r1", pose(0.0)))

        session = registry.get_session("r1")
        assert session is not None
        assert not session.has_updater
        assert session.last_report is not None

        on_ready, updater = scheduler.pending.pop()
        on_ready(updater)
        registry.on_state(_report("r1", pose(0.0)))
        assert session.has_updater
        assert updater.last_location == OnWaypoint(0)


class TestLaneClosures:
    def test_close_publishes_status(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        statuses: list[LaneClosureStatus] = []
        registry = _registry(graph, scheduler, transport, clock, listener=statuses)
        registry.on_lane_closure(LaneClosureRequest(fleet_name=FLEET, close_lanes=(2, 0)))

        assert registry.closed_lanes == frozenset({0, 2})
        assert scheduler.closed_lanes[-1] == frozenset({0, 2})
        assert transport.closed[-1] == LaneClosureStatus(fleet_name=FLEET, closed_lanes=(0, 2))
        assert statuses == transport.closed

        registry.on_lane_closure(LaneClosureRequest(open_lanes=(0,)))
        assert registry.closed_lanes == frozenset({2})
        assert transport.closed[-1].closed_lanes == (2,)

    def test_close_wins_over_open_in_one_request(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        registry = _registry(graph, scheduler, transport, clock)
        registry.on_lane_closure(LaneClosureRequest(open_lanes=(1,), close_lanes=(1,)))
        assert registry.closed_lanes == frozenset({1})

    def test_other_fleet_request_is_ignored(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        registry = _registry(graph, scheduler, transport, clock)
        registry.on_lane_closure(LaneClosureRequest(fleet_name="otherFleet", close_lanes=(0,)))
        assert registry.closed_lanes == frozenset()
        assert transport.closed == []

    def test_only_newly_closed_lanes_interrupt(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        registry = _registry(graph, scheduler, transport, clock)
        registry.on_state(_report("r1", pose(0.0)))
        session = registry.get_session("r1")
        assert session is not None

        plan = make_plan()
        session.follow_new_path(plan, None, lambda: None)
        remaining = tuple(pose(wp.x) for wp in plan[1:])
        registry.on_state(_report("r1", pose(5.0), task_id="1", path=remaining))

        updater = scheduler.updaters["r1"]
        registry.on_lane_closure(LaneClosureRequest(close_lanes=(0,)))
        assert updater.interruptions == 1

        registry.on_state(_report("r1", pose(5.0), task_id="1", path=remaining))
        registry.on_lane_closure(LaneClosureRequest(close_lanes=(0,)))
        assert updater.interruptions == 1


def test_tick_drives_retransmission(
    graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
) -> None:
    registry = _registry(graph, scheduler, transport, clock)
    registry.on_state(_report("r1", pose(0.0)))
    session = registry.get_session("r1")
    assert session is not None
    session.follow_new_path(make_plan(), None, lambda: None)

    registry.tick()
    assert len(transport.paths) == 1
    clock.advance(1.0)
    registry.tick()
    assert len(transport.paths) == 2


def _in_thread(target: Callable[[], None], timeout: float = 2.0) -> threading.Thread:
    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    thread.join(timeout)
    return thread


class _InspectingScheduler(FakeScheduler):
    """Reads the registry back while it is being called by it."""

    def __init__(self, graph: NavGraph) -> None:
        super().__init__(graph)
        self.registry: FleetRegistry | None = None
        self.seen: list[object] = []

    def compute_admission_starts(self, pose: Pose, map_name: str, time: float) -> Sequence[Start]:
        assert self.registry is not None
        self.seen.append(self.registry.excluded_robots)
        return super().compute_admission_starts(pose, map_name, time)

    def update_closed_lanes(self, closed_lanes: frozenset[int]) -> None:
        assert self.registry is not None
        self.seen.append(self.registry.closed_lanes)
        super().update_closed_lanes(closed_lanes)


class TestReentrancy:
    def test_interruption_may_read_the_registry(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        registry = _registry(graph, scheduler, transport, clock)
        registry.on_state(_report("r1", pose(0.0)))
        session = registry.get_session("r1")
        assert session is not None
        plan = make_plan()
        session.follow_new_path(plan, None, lambda: None)
        registry.on_state(_report("r1", pose(5.0), task_id="1", path=tuple(pose(wp.x) for wp in plan[1:])))
        assert session.target_index == 1

        seen: list[frozenset[int]] = []
        updater = scheduler.updaters["r1"]
        updater.interrupted = lambda: seen.append(registry.closed_lanes)  # type: ignore[method-assign]

        thread = _in_thread(lambda: registry.on_lane_closure(LaneClosureRequest(close_lanes=(0,))))

        assert not thread.is_alive()
        assert seen == [frozenset({0})]

    def test_interruption_may_request_more_closures(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        registry = _registry(graph, scheduler, transport, clock)
        registry.on_state(_report("r1", pose(0.0)))
        session = registry.get_session("r1")
        assert session is not None
        plan = make_plan()
        session.follow_new_path(plan, None, lambda: None)
        registry.on_state(_report("r1", pose(5.0), task_id="1", path=tuple(pose(wp.x) for wp in plan[1:])))

        updater = scheduler.updaters["r1"]
        updater.interrupted = lambda: registry.on_lane_closure(  # type: ignore[method-assign]
            LaneClosureRequest(close_lanes=(1,))
        )

        thread = _in_thread(lambda: registry.on_lane_closure(LaneClosureRequest(close_lanes=(0,))))

        assert not thread.is_alive()
        assert registry.closed_lanes == frozenset({0, 1})

    def test_scheduler_may_read_the_registry(
        self, graph: NavGraph, transport: FakeTransport, clock: FakeClock
    ) -> None:
        scheduler = _InspectingScheduler(graph)
        registry = _registry(graph, scheduler, transport, clock)
        scheduler.registry = registry

        def drive() -> None:
            registry.on_state(_report("r1", pose(0.0)))
            registry.on_lane_closure(LaneClosureRequest(close_lanes=(2,)))

        thread = _in_thread(drive)

        assert not thread.is_alive()
        assert registry.get_session("r1") is not None
        assert scheduler.seen == [frozenset(), frozenset({2})]

    def test_concurrent_first_reports_admit_once(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        registry = _registry(graph, scheduler, transport, clock)
        barrier = threading.Barrier(8)

        def report() -> None:
            barrier.wait()
            for _ in range(20):
                registry.on_state(_report("r1", pose(0.0)))

        threads = [threading.Thread(target=report, daemon=True) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5.0)

        assert not any(thread.is_alive() for thread in threads)
        assert len(scheduler.registered) == 1
        assert list(registry.sessions) == ["r1"]

    def test_closures_and_ticks_alongside_reports(
        self, graph: NavGraph, scheduler: FakeScheduler, transport: FakeTransport, clock: FakeClock
    ) -> None:
        registry = _registry(graph, scheduler, transport, clock)
        registry.on_state(_report("r1", pose(0.0)))
        registry.on_state(_report("r2", pose(10.0)))
        barrier = threading.Barrier(3)

        def reports() -> None:
            barrier.wait()
            for i in range(100):
                registry.on_state(_report(f"r{1 + i % 2}", pose(float(i % 20))))

        def closures() -> None:
            barrier.wait()
            for i in range(100):
                if i % 2:
                    registry.on_lane_closure(LaneClosureRequest(open_lanes=(i % 4,)))
                else:
                    registry.on_lane_closure(LaneClosureRequest(close_lanes=(i % 4,)))

        def ticks() -> None:
            barrier.wait()
            for _ in range(100):
                registry.tick()

        threads = [threading.Thread(target=work, daemon=True) for work in (reports, closures, ticks)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5.0)

        assert not any(thread.is_alive() for thread in threads)
        assert len(transport.closed) == 100
        assert registry.closed_lanes == frozenset(transport.closed[-1].closed_lanes)
