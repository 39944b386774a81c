"""Custom exception hierarchy for fleetsync."""

from __future__ import annotations


class FleetSyncError(Exception):
    """Base exception for all fleetsync errors."""


class FleetConfigError(FleetSyncError):
    """Invalid or missing configuration."""


class GraphError(FleetConfigError):
    """Navigation graph is malformed (e.g. a lane references a missing waypoint)."""


class UnknownDockError(FleetConfigError):
    """No lane on the navigation graph carries the requested dock.

    Raised by :meth:`fleetsync.session.CommandSession.dock` before any
    state is touched, so the session keeps whatever command it had.
    """

    def __init__(self, dock_name: str, *, robot_name: str = "") -> None:
        self.dock_name = dock_name
        self.robot_name = robot_name
        super().__init__(f"Dock [{dock_name}] was not found on the navigation graph")


class TransportError(FleetSyncError):
    """Publishing to, or connecting with, the message broker failed."""

    def __init__(
        self,
        message: str,
        *,
        topic: str = "",
    ) -> None:
        self.topic = topic
        super().__init__(message)
