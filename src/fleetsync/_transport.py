"""Outbound transport interfaces used by sessions and the registry."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from fleetsync.models.messages import (
    LaneClosureStatus,
    LiftClearanceRequest,
    LiftClearanceResponse,
    ModeCommand,
    PathCommand,
)


class Transport(Protocol):
    """Structural transport interface.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation
    (:class:`fleetsync._mqtt.FleetMqttRuntime`) concrete. Delivery is
    fire-and-forget; publishing the same message twice must be harmless.
    """

    def publish_path_command(self, command: PathCommand) -> None: ...

    def publish_mode_command(self, command: ModeCommand) -> None: ...

    def publish_closed_lanes(self, status: LaneClosureStatus) -> None: ...


class LiftClearanceClient(Protocol):
    """Request/response access to a lift clearance service."""

    def service_is_ready(self) -> bool: ...

    def request_lift_clearance(
        self,
        request: LiftClearanceRequest,
        on_response: Callable[[LiftClearanceResponse], None],
    ) -> None:
        """Send *request*; *on_response* is called later with the matching response.

        Raises :class:`~fleetsync.exceptions.TransportError` when the
        request cannot be sent.
        """
        ...
