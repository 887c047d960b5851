import logging
from typing import Mapping, Optional

import paho.mqtt.client as mqtt

from .graphite import GraphiteForwarder
from .metrics import samples_dropped, samples_forwarded
from .naming import coerce_value, normalize_metric
from .schemas import MetricSample

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Turns one broker message into at most one Graphite sample.

    Used as the per-message callback of every session in the pool.
    """

    def __init__(self, registry: Mapping[mqtt.Client, str], forwarder: GraphiteForwarder):
        self.registry = registry
        self.forwarder = forwarder

    def __call__(self, client: mqtt.Client, msg: mqtt.MQTTMessage) -> None:
        host = self.registry.get(client)
        if host is None:
            logger.warning("Not all the mqtt clients are ready")
            samples_dropped.labels(reason="unregistered").inc()
            return

        sample = build_sample(host, msg.topic, msg.payload)
        if sample is None:
            logger.debug("Skipping metric from topic %s", msg.topic)
            samples_dropped.labels(reason="filtered").inc()
            return

        logger.debug("Sending metric %s %s", sample.path, sample.value)
        if self.forwarder.send(sample.path, sample.value):
            samples_forwarded.inc()


def build_sample(host_tag: str, topic: str, payload: bytes) -> Optional[MetricSample]:
    metric = normalize_metric(topic)
    value = coerce_value(metric, payload)
    if value is None:
        return None
    return MetricSample(path=f"{host_tag}.{metric}", value=value)
