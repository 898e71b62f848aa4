"""
MQTT subscription for the telemetry topic.

Wraps a paho-mqtt client running its network loop on a background
thread. Each received payload is passed to a callback on that thread;
the subscription is renewed on every (re)connect.
"""

import logging
import ssl
from typing import Callable, Optional, Tuple
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

MessageCallback = Callable[[bytes, str], None]

TLS_SCHEMES = {"ssl", "tls", "mqtts", "wss"}
WEBSOCKET_SCHEMES = {"ws", "wss"}
DEFAULT_PORTS = {
    "tcp": 1883,
    "mqtt": 1883,
    "ssl": 8883,
    "tls": 8883,
    "mqtts": 8883,
    "ws": 80,
    "wss": 443,
}


def parse_broker_url(url: str) -> Tuple[str, str, int, str]:
    """
    Split a broker URL into scheme, host, port and websocket path.

    Raises:
        ValueError: If the scheme is unknown or the host is missing
    """
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise ValueError(f"unsupported MQTT broker scheme: {scheme!r}")
    if not parsed.hostname:
        raise ValueError(f"MQTT broker URL has no host: {url!r}")
    return scheme, parsed.hostname, parsed.port or DEFAULT_PORTS[scheme], parsed.path or "/mqtt"


class MqttSubscriber:
    """
    Subscriber for the telemetry topic.

    Attributes:
        broker_url: Broker URL, e.g. tcp://localhost:1883 or ssl://broker:8883
        topic: Topic filter to subscribe to
        qos: Subscription QoS (0-2)
    """

    def __init__(
        self,
        broker_url: str,
        client_id: str,
        topic: str,
        on_payload: MessageCallback,
        qos: int = 1,
        username: Optional[str] = None,
        password: Optional[str] = None,
        clean_session: bool = True,
        keepalive: int = 60
    ):
        self.broker_url = broker_url
        self.topic = topic
        self.qos = qos
        self.keepalive = keepalive
        self._on_payload = on_payload
        self._connected = False

        self._scheme, self._host, self._port, path = parse_broker_url(broker_url)

        transport = "websockets" if self._scheme in WEBSOCKET_SCHEMES else "tcp"
        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=clean_session,
            transport=transport,
            reconnect_on_failure=True,
        )
        if transport == "websockets":
            self.client.ws_set_options(path=path)
        if username:
            self.client.username_pw_set(username, password or None)
        if self._scheme in TLS_SCHEMES:
            self.client.tls_set(cert_reqs=ssl.CERT_REQUIRED)

        self.client.reconnect_delay_set(min_delay=1, max_delay=10)
        self.client.on_connect = self._handle_connect
        self.client.on_disconnect = self._handle_disconnect
        self.client.on_message = self._handle_message

    def _handle_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            self._connected = False
            logger.error(f"MQTT connection refused: {reason_code}")
            return

        self._connected = True
        logger.info(f"MQTT connected to broker: {self.broker_url}")
        client.subscribe(self.topic, qos=self.qos)
        logger.info(
            f"Subscribed to MQTT topic: {self.topic} (QoS {self.qos})",
            extra={"extra_data": {"topic": self.topic, "qos": self.qos}}
        )

    def _handle_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        self._connected = False
        if reason_code.is_failure:
            logger.error(f"MQTT connection lost: {reason_code}; reconnecting")
        else:
            logger.info("Disconnected from MQTT broker")

    def _handle_message(self, client, userdata, message):
        logger.debug(f"MQTT message received on topic: {message.topic}")
        try:
            self._on_payload(message.payload, message.topic)
        except Exception as e:
            logger.error(
                f"MQTT message handler failed: {e}",
                extra={"extra_data": {"topic": message.topic, "error": str(e)}}
            )

    def connect(self) -> None:
        """
        Connect to the broker and start the network loop thread.

        Blocks until the TCP connection is established.

        Raises:
            OSError: If the broker cannot be reached
        """
        logger.info(f"Connecting to MQTT broker: {self.broker_url}")
        self.client.connect(self._host, self._port, keepalive=self.keepalive)
        self.client.loop_start()

    def disconnect(self) -> None:
        logger.info("Disconnecting from MQTT broker...")
        self.client.disconnect()
        self.client.loop_stop()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected
