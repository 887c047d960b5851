from prometheus_client import Counter, Gauge

messages_received = Counter(
    "mqtt_messages_received_total", "Total $SYS messages received from brokers."
)
samples_forwarded = Counter(
    "samples_forwarded_total", "Total samples written to Graphite."
)
samples_dropped = Counter(
    "samples_dropped_total",
    "Total samples not written to Graphite.",
    ["reason"],
)
graphite_reconnects = Counter(
    "graphite_reconnects_total", "Graphite reconnect attempts.", ["outcome"]
)
graphite_connected = Gauge(
    "graphite_connected", "1 while the Graphite connection is believed healthy."
)
