"""Fleet configuration for fleetsync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from fleetsync._constants import DEFAULT_TOPIC_PREFIX
from fleetsync.exceptions import FleetConfigError
from fleetsync.models.plan import VehicleTraits


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class FleetConfig:
    """Fleet-wide configuration.

    Parameters
    ----------
    fleet_name : str
        Name of the fleet this process commands. Fleet states and
        lane-closure requests addressed to other fleets are ignored.
    retry_interval : float
        Seconds without acknowledgement before a command is sent again.
    max_retransmits : int
        Retransmissions of one command before the session gives up on
        it and reports an interruption. ``0`` retries forever.
    dock_schedule_period : float
        Minimum seconds between two docking trajectory updates.
    waypoint_merge_distance : float
        A reported pose this close to a waypoint is localized on it.
    lane_merge_distance : float
        A reported pose this close to a lane is localized on it.
    off_plan_tolerance : float
        Distance from the active plan beyond which the plan-relative
        estimate is abandoned for a raw localization.
    arrival_tolerance : float
        Distance from the final plan waypoint beyond which an arrival is
        logged as suspicious.
    readmission_interval : float
        Seconds before a robot that failed admission is tried again.
        ``0`` disables re-admission.
    max_readmission_attempts : int
        Re-admission attempts before a robot stays excluded.
    tick_interval : float
        Period of the retransmit check driven by the MQTT runtime.
    mqtt_host, mqtt_port, mqtt_keepalive, mqtt_client_id, mqtt_tls : ...
        Broker connection settings.
    lift_clearance : bool
        Ask a lift clearance service, over the MQTT runtime, before a
        robot enters a lift.
    topic_prefix : str
        Prefix of every topic used by the MQTT runtime.
    traits : VehicleTraits
        Kinematic limits shared by every robot of the fleet.
    """

    fleet_name: str
    retry_interval: float = 0.2
    max_retransmits: int = 50
    dock_schedule_period: float = 1.0
    waypoint_merge_distance: float = 0.1
    lane_merge_distance: float = 1.0
    off_plan_tolerance: float = 1.0
    arrival_tolerance: float = 2.0
    readmission_interval: float = 10.0
    max_readmission_attempts: int = 6
    tick_interval: float = 0.1
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_keepalive: int = 60
    mqtt_client_id: str = ""
    mqtt_tls: bool = False
    lift_clearance: bool = False
    topic_prefix: str = DEFAULT_TOPIC_PREFIX
    traits: VehicleTraits = dataclasses.field(default_factory=VehicleTraits)

    def __post_init__(self) -> None:
        if not self.fleet_name.strip():
            raise FleetConfigError("fleet_name must be non-empty")
        for name in (
            "retry_interval",
            "dock_schedule_period",
            "waypoint_merge_distance",
            "lane_merge_distance",
            "off_plan_tolerance",
            "arrival_tolerance",
            "readmission_interval",
        ):
            if getattr(self, name) < 0:
                raise FleetConfigError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.max_retransmits < 0 or self.max_readmission_attempts < 0:
            raise FleetConfigError("retransmit and readmission limits must be >= 0")
        if self.tick_interval <= 0:
            raise FleetConfigError(f"tick_interval must be > 0, got {self.tick_interval}")

    @classmethod
    def from_env(cls, **overrides: Any) -> FleetConfig:
        """Create configuration from environment variables.

        Reads ``FLEETSYNC_FLEET_NAME`` and the optional ``FLEETSYNC_*``
        variables below. Explicit keyword arguments override environment
        values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        FleetConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "FLEETSYNC_FLEET_NAME": "fleet_name",
            "FLEETSYNC_MQTT_HOST": "mqtt_host",
            "FLEETSYNC_MQTT_CLIENT_ID": "mqtt_client_id",
            "FLEETSYNC_TOPIC_PREFIX": "topic_prefix",
        }
        _ENV_FLOAT_MAP = {
            "FLEETSYNC_RETRY_INTERVAL": "retry_interval",
            "FLEETSYNC_DOCK_SCHEDULE_PERIOD": "dock_schedule_period",
            "FLEETSYNC_WAYPOINT_MERGE_DISTANCE": "waypoint_merge_distance",
            "FLEETSYNC_LANE_MERGE_DISTANCE": "lane_merge_distance",
            "FLEETSYNC_OFF_PLAN_TOLERANCE": "off_plan_tolerance",
            "FLEETSYNC_ARRIVAL_TOLERANCE": "arrival_tolerance",
            "FLEETSYNC_READMISSION_INTERVAL": "readmission_interval",
            "FLEETSYNC_TICK_INTERVAL": "tick_interval",
        }
        _ENV_INT_MAP = {
            "FLEETSYNC_MAX_RETRANSMITS": "max_retransmits",
            "FLEETSYNC_MAX_READMISSION_ATTEMPTS": "max_readmission_attempts",
            "FLEETSYNC_MQTT_PORT": "mqtt_port",
            "FLEETSYNC_MQTT_KEEPALIVE": "mqtt_keepalive",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        try:
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = float(val)
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = int(val)
        except ValueError as exc:
            raise FleetConfigError(f"Invalid numeric FLEETSYNC_* variable: {exc}") from exc

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("FLEETSYNC_MQTT_TLS"), False)
        if "lift_clearance" not in overrides:
            config_kwargs["lift_clearance"] = _env_bool(env.get("FLEETSYNC_LIFT_CLEARANCE"), False)

        # Vehicle traits may be overridden as a dict or a VehicleTraits instance
        traits_overrides = overrides.pop("traits", None)
        if isinstance(traits_overrides, dict):
            config_kwargs["traits"] = VehicleTraits.model_validate(traits_overrides)
        elif isinstance(traits_overrides, VehicleTraits):
            config_kwargs["traits"] = traits_overrides

        config_kwargs.update(overrides)
        config_kwargs.setdefault("fleet_name", "")

        return cls(**config_kwargs)
