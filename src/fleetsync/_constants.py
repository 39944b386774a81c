"""Internal constants shared across the library."""

DEFAULT_TOPIC_PREFIX = "fleetsync"

# ------------------------------------------------------------------
# Topic names (relative to the configured prefix)
# ------------------------------------------------------------------

FLEET_STATE_TOPIC = "fleet_states"
PATH_REQUEST_TOPIC = "path_requests"
MODE_REQUEST_TOPIC = "mode_requests"
LANE_CLOSURE_REQUEST_TOPIC = "lane_closure_requests"
CLOSED_LANES_TOPIC = "closed_lanes"
LIFT_CLEARANCE_REQUEST_TOPIC = "lift_clearance_requests"
LIFT_CLEARANCE_RESPONSE_TOPIC = "lift_clearance_responses"

#: Name of the single ``ModeParameter`` carried by a docking ``ModeCommand``.
DOCKING_PARAMETER = "docking"

# ------------------------------------------------------------------
# Default vehicle traits (linear v/a, angular v/a, footprint, vicinity)
# ------------------------------------------------------------------

DEFAULT_LINEAR_VELOCITY = 0.7
DEFAULT_LINEAR_ACCELERATION = 0.3
DEFAULT_ANGULAR_VELOCITY = 0.5
DEFAULT_ANGULAR_ACCELERATION = 1.5
DEFAULT_FOOTPRINT_RADIUS = 0.5
DEFAULT_VICINITY_RADIUS = 1.5

# Lanes shorter than this are treated as degenerate by the projection search.
MIN_LANE_LENGTH = 1e-8


def topic(prefix: str, name: str) -> str:
    """Join a topic *prefix* and a relative topic *name*.

    An empty prefix yields the bare name.
    """
    cleaned = prefix.strip().strip("/")
    if not cleaned:
        return name
    return f"{cleaned}/{name}"
