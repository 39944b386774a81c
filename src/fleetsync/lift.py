"""Lift entry watchdog backed by a lift clearance service."""

from __future__ import annotations

import logging
import uuid

from fleetsync._transport import LiftClearanceClient
from fleetsync.exceptions import TransportError
from fleetsync.models.messages import LiftClearanceDecision, LiftClearanceRequest, LiftClearanceResponse
from fleetsync.scheduler import LiftDecisionCallback, LiftEntryWatchdog

_logger = logging.getLogger(__name__)


def convert_decision(value: int) -> LiftClearanceDecision:
    """Map a raw service decision; anything but CLEAR or CROWDED is UNDEFINED.

    >>> convert_decision(1)
    <LiftClearanceDecision.CLEAR: 1>
    >>> convert_decision(7)
    <LiftClearanceDecision.UNDEFINED: 0>
    """
    decision = LiftClearanceDecision(value)
    if decision is LiftClearanceDecision.UNDEFINED:
        _logger.error("Received undefined value for lift clearance service: %s", value)
    return decision


def make_lift_entry_watchdog(client: LiftClearanceClient, robot_name: str) -> LiftEntryWatchdog:
    """Build the watchdog installed on *robot_name*'s updater.

    The decision is UNDEFINED when the service is not ready or the
    request cannot be sent.
    """

    def watchdog(lift_name: str, decide: LiftDecisionCallback) -> None:
        if not client.service_is_ready():
            _logger.error("Failed to get lift clearance service")
            decide(LiftClearanceDecision.UNDEFINED)
            return

        def on_response(response: LiftClearanceResponse) -> None:
            decide(convert_decision(response.decision))

        request = LiftClearanceRequest(request_id=uuid.uuid4().hex, robot_name=robot_name, lift_name=lift_name)
        _logger.debug("Robot %s: requesting clearance for lift [%s]", robot_name, lift_name)
        try:
            client.request_lift_clearance(request, on_response)
        except TransportError as exc:
            _logger.error("Failed to request lift clearance for robot %s: %s", robot_name, exc)
            decide(LiftClearanceDecision.UNDEFINED)

    return watchdog
