"""MQTT transport: publishes commands and delivers inbound fleet traffic."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, cast

import paho.mqtt.client as mqtt
from pydantic import BaseModel, ValidationError

from fleetsync._constants import (
    CLOSED_LANES_TOPIC,
    FLEET_STATE_TOPIC,
    LANE_CLOSURE_REQUEST_TOPIC,
    LIFT_CLEARANCE_REQUEST_TOPIC,
    LIFT_CLEARANCE_RESPONSE_TOPIC,
    MODE_REQUEST_TOPIC,
    PATH_REQUEST_TOPIC,
    topic,
)
from fleetsync.config import FleetConfig
from fleetsync.exceptions import TransportError
from fleetsync.models.messages import (
    FleetState,
    LaneClosureRequest,
    LaneClosureStatus,
    LiftClearanceRequest,
    LiftClearanceResponse,
    ModeCommand,
    PathCommand,
)

if TYPE_CHECKING:
    from fleetsync.registry import FleetRegistry


class FleetMqttRuntime:
    """Threaded paho-mqtt runtime implementing :class:`~fleetsync._transport.Transport`.

    Inbound fleet states and lane-closure requests are validated and
    handed to the registered handlers on the paho network thread. A
    separate daemon thread calls ``on_tick`` every ``tick_interval``
    seconds while the runtime is running.

    With ``config.lift_clearance`` set the runtime also implements
    :class:`~fleetsync._transport.LiftClearanceClient`: requests are
    published and answered on the lift clearance response topic, matched
    by ``request_id``.

    Usage::

        runtime = FleetMqttRuntime(config)
        registry = FleetRegistry(
            config, graph, scheduler, runtime,
            lift_clearance=runtime if config.lift_clearance else None,
        )
        runtime.bind(registry)
        runtime.start()
    """

    def __init__(
        self,
        config: FleetConfig,
        *,
        on_fleet_state: Callable[[FleetState], None] | None = None,
        on_lane_closure: Callable[[LaneClosureRequest], None] | None = None,
        on_tick: Callable[[], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._on_fleet_state = on_fleet_state
        self._on_lane_closure = on_lane_closure
        self._on_tick = on_tick
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._stop_event = threading.Event()
        self._tick_thread: threading.Thread | None = None
        self._connected = False
        self._pending_lock = threading.Lock()
        self._pending_clearance: dict[str, Callable[[LiftClearanceResponse], None]] = {}

        prefix = config.topic_prefix
        self._fleet_state_topic = topic(prefix, FLEET_STATE_TOPIC)
        self._lane_closure_topic = topic(prefix, LANE_CLOSURE_REQUEST_TOPIC)
        self._path_topic = topic(prefix, PATH_REQUEST_TOPIC)
        self._mode_topic = topic(prefix, MODE_REQUEST_TOPIC)
        self._closed_lanes_topic = topic(prefix, CLOSED_LANES_TOPIC)
        self._lift_request_topic = topic(prefix, LIFT_CLEARANCE_REQUEST_TOPIC)
        self._lift_response_topic = topic(prefix, LIFT_CLEARANCE_RESPONSE_TOPIC)

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def bind(self, registry: FleetRegistry) -> None:
        """Route inbound traffic and ticks to a :class:`~fleetsync.registry.FleetRegistry`."""
        self._on_fleet_state = registry.on_fleet_state
        self._on_lane_closure = registry.on_lane_closure
        self._on_tick = registry.tick

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Connect, subscribe and start the network and tick threads."""
        self.stop()
        config = self._config
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s prefix=%s client_id=%s",
            config.mqtt_host,
            config.mqtt_port,
            config.topic_prefix,
            config.mqtt_client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=config.mqtt_client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if config.mqtt_tls:
            client.tls_set()

        subscriptions = [(self._fleet_state_topic, 0), (self._lane_closure_topic, 1)]
        if config.lift_clearance:
            subscriptions.append((self._lift_response_topic, 1))

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected successfully reason=%s", reason_code)
            c.subscribe(subscriptions)
            self._connected = True

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self.handle_message(msg.topic, msg.payload)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            self._connected = False
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(config.mqtt_host, config.mqtt_port, keepalive=config.mqtt_keepalive)
        except OSError as exc:
            raise TransportError(f"Unable to connect to {config.mqtt_host}:{config.mqtt_port}: {exc}") from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._stop_event.clear()
        self._tick_thread = threading.Thread(target=self._tick_loop, name="fleetsync-tick", daemon=True)
        self._tick_thread.start()
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop ticking and disconnect the current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._connected = False
        with self._pending_lock:
            abandoned = len(self._pending_clearance)
            self._pending_clearance.clear()
        if abandoned:
            self._logger.debug("Dropped %d unanswered lift clearance requests", abandoned)
        self._stop_event.set()

        tick_thread = self._tick_thread
        self._tick_thread = None
        if tick_thread is not None and tick_thread is not threading.current_thread():
            tick_thread.join()

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    def _tick_loop(self) -> None:
        interval = self._config.tick_interval
        while not self._stop_event.wait(interval):
            handler = self._on_tick
            if handler is None:
                continue
            try:
                handler()
            except Exception:
                self._logger.exception("Tick handler failed")

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def handle_message(self, message_topic: str, payload: bytes) -> None:
        """Validate an inbound payload and pass it to the matching handler.

        Malformed payloads and unknown topics are logged and dropped.
        """
        try:
            if message_topic == self._fleet_state_topic:
                state = FleetState.model_validate_json(payload)
                self._logger.debug("Received fleet state fleet=%s robots=%d", state.name, len(state.robots))
                if self._on_fleet_state is not None:
                    self._on_fleet_state(state)
            elif message_topic == self._lane_closure_topic:
                request = LaneClosureRequest.model_validate_json(payload)
                self._logger.debug(
                    "Received lane closure request fleet=%s open=%s close=%s",
                    request.fleet_name,
                    request.open_lanes,
                    request.close_lanes,
                )
                if self._on_lane_closure is not None:
                    self._on_lane_closure(request)
            elif message_topic == self._lift_response_topic:
                self._handle_lift_clearance(LiftClearanceResponse.model_validate_json(payload))
            else:
                self._logger.debug("Ignoring message on unexpected topic=%s", message_topic)
        except ValidationError:
            self._logger.debug("MQTT payload parse failure topic=%s", message_topic, exc_info=True)
        except Exception:
            self._logger.exception("Handler for topic=%s failed", message_topic)

    def _handle_lift_clearance(self, response: LiftClearanceResponse) -> None:
        with self._pending_lock:
            on_response = self._pending_clearance.pop(response.request_id, None)
        if on_response is None:
            self._logger.debug("Ignoring lift clearance response for unknown request_id=%s", response.request_id)
            return
        self._logger.debug(
            "Received lift clearance response request_id=%s decision=%s", response.request_id, response.decision
        )
        on_response(response)

    # ------------------------------------------------------------------
    # Outbound (Transport)
    # ------------------------------------------------------------------

    def publish_path_command(self, command: PathCommand) -> None:
        self._publish(self._path_topic, command, qos=1)

    def publish_mode_command(self, command: ModeCommand) -> None:
        self._publish(self._mode_topic, command, qos=1)

    def publish_closed_lanes(self, status: LaneClosureStatus) -> None:
        self._publish(self._closed_lanes_topic, status, qos=1, retain=True)

    def _publish(self, publish_topic: str, message: BaseModel, *, qos: int, retain: bool = False) -> None:
        client = self._client
        if client is None:
            raise TransportError("MQTT runtime is not running", topic=publish_topic)
        payload = message.model_dump_json()
        info = client.publish(publish_topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"MQTT publish failed rc={info.rc}", topic=publish_topic)
        self._logger.debug("Published topic=%s retain=%s payload=%s", publish_topic, retain, payload)

    # ------------------------------------------------------------------
    # Lift clearance (LiftClearanceClient)
    # ------------------------------------------------------------------

    def service_is_ready(self) -> bool:
        """Whether lift clearance requests can be sent right now."""
        return self._config.lift_clearance and self._client is not None and self._connected

    def request_lift_clearance(
        self,
        request: LiftClearanceRequest,
        on_response: Callable[[LiftClearanceResponse], None],
    ) -> None:
        with self._pending_lock:
            self._pending_clearance[request.request_id] = on_response
        try:
            self._publish(self._lift_request_topic, request, qos=1)
        except TransportError:
            with self._pending_lock:
                self._pending_clearance.pop(request.request_id, None)
            raise
