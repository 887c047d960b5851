"""
Shared fixtures: every test starts from a clean environment so that settings
only come from what the test sets itself.
"""

import pytest

from mqtt_stats.config import get_settings

SETTINGS_ENV = [
    "MQTT_URLS",
    "CAFILE",
    "INSECURE",
    "CLIENT_ID",
    "TOPIC",
    "KEEPALIVE",
    "CONNECT_RETRIES",
    "CONNECT_RETRY_DELAY",
    "GRAPHITE_HOST",
    "GRAPHITE_PORT",
    "GRAPHITE_PING",
    "GRAPHITE_TIMEOUT",
    "PING_METRIC",
    "METRICS_PORT",
    "DEBUG",
]


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch, tmp_path):
    for name in SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    # keep any developer .env out of the tests
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
