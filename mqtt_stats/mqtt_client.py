import logging
import ssl
import time
from typing import Callable, Dict, List, Optional

import paho.mqtt.client as mqtt

from .metrics import messages_received
from .schemas import BrokerEndpoint

logger = logging.getLogger(__name__)

Dispatch = Callable[[mqtt.Client, mqtt.MQTTMessage], None]


class SubscriberPool:
    """
    One paho-mqtt session per broker endpoint, each running its own network
    loop thread and handing every received message to a shared dispatch
    callback.

    The pool owns the session registry (client -> host tag). Sessions are
    registered before their loop starts and the registry is only read once
    startup is over.
    """

    def __init__(
        self,
        client_id: str = "mqtt-stats",
        topic: str = "$SYS/broker/#",
        keepalive: int = 60,
        connect_retries: int = 10,
        connect_retry_delay: float = 2.0,
    ):
        self.client_id = client_id
        self.topic = topic
        self.keepalive = keepalive
        self.connect_retries = connect_retries
        self.connect_retry_delay = connect_retry_delay
        self.registry: Dict[mqtt.Client, str] = {}
        self._sessions: List[mqtt.Client] = []

    def host_tag(self, client: mqtt.Client) -> Optional[str]:
        return self.registry.get(client)

    def subscribe(self, endpoint: BrokerEndpoint, dispatch: Dispatch) -> mqtt.Client:
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            transport=endpoint.transport,
        )
        client.enable_logger(logging.getLogger("mqtt_stats.paho"))
        if endpoint.username:
            client.username_pw_set(endpoint.username, endpoint.password)
        if endpoint.transport == "websockets":
            client.ws_set_options(path=endpoint.path or "/mqtt")
        if endpoint.use_tls:
            configure_tls(client, endpoint)

        topic = self.topic

        def on_connect(client: mqtt.Client, userdata, flags, reason_code, properties):
            if reason_code.is_failure:
                logger.error("MQTT connection to %s failed: %s", endpoint.url, reason_code)
                return
            client.subscribe(topic, qos=0)
            logger.info("Connected to %s and subscribed to %s", endpoint.url, topic)

        def on_disconnect(client: mqtt.Client, userdata, flags, reason_code, properties):
            if reason_code.is_failure:
                logger.warning("Lost connection to %s: %s", endpoint.url, reason_code)

        def on_message(client: mqtt.Client, userdata, msg: mqtt.MQTTMessage):
            messages_received.inc()
            try:
                dispatch(client, msg)
            except Exception as exc:
                logger.warning("Failed to handle MQTT message on %s: %s", msg.topic, exc)

        client.on_connect = on_connect
        client.on_disconnect = on_disconnect
        client.on_message = on_message

        self.registry[client] = endpoint.host_tag
        self._sessions.append(client)

        # Retry connect a few times to avoid crashing during broker startup.
        for attempt in range(self.connect_retries):
            try:
                client.connect(endpoint.host, endpoint.port, keepalive=self.keepalive)
                break
            except (OSError, ValueError) as exc:
                logger.warning(
                    "MQTT connect to %s failed (attempt %s/%s): %s",
                    endpoint.url,
                    attempt + 1,
                    self.connect_retries,
                    exc,
                )
                time.sleep(self.connect_retry_delay)
        else:
            self.close(client)
            raise RuntimeError(f"MQTT broker {endpoint.url} not reachable after retries")

        client.loop_start()
        return client

    def close(self, client: mqtt.Client) -> None:
        try:
            client.disconnect()
        finally:
            client.loop_stop()
        self.registry.pop(client, None)
        if client in self._sessions:
            self._sessions.remove(client)

    def close_all(self) -> None:
        for client in list(self._sessions):
            try:
                self.close(client)
            except Exception as exc:  # pragma: no cover - best effort on shutdown
                logger.warning("Error closing MQTT session: %s", exc)


def configure_tls(client: mqtt.Client, endpoint: BrokerEndpoint) -> None:
    """
    Trust only the given CA file when there is one, the system store otherwise.
    Insecure mode turns off both chain and host name checks.
    """
    client.tls_set(
        ca_certs=endpoint.ca_cert or None,
        cert_reqs=ssl.CERT_NONE if endpoint.insecure else ssl.CERT_REQUIRED,
    )
    if endpoint.insecure:
        client.tls_insecure_set(True)
