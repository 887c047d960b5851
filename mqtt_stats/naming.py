from typing import Optional

SYS_PREFIX = "$SYS/broker/"
METRIC_PREFIX = "mqtt."
UPTIME_METRIC = "mqtt.uptime"

# Metric names containing any of these never reach Graphite.
SKIPPED_SUBSTRINGS = ("version", "timestamp")


def normalize_metric(topic: str) -> str:
    """
    Turn a broker topic into a dotted Graphite path.

    $SYS/broker/clients/connected -> mqtt.clients.connected
    """
    metric = topic.replace(SYS_PREFIX, METRIC_PREFIX)
    metric = metric.replace("/", ".")
    return metric.replace(" ", "_")


def coerce_value(metric: str, payload: bytes) -> Optional[str]:
    """
    Return the text to send for an already normalized metric, or None when the
    metric should be skipped.
    """
    for skipped in SKIPPED_SUBSTRINGS:
        if skipped in metric:
            return None

    value = payload.decode("utf-8", errors="replace")
    # mosquitto reports uptime as "N seconds"
    if metric == UPTIME_METRIC:
        tokens = value.split()
        return tokens[0] if tokens else ""
    return value
