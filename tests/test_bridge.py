from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from mqtt_stats.bridge import Dispatcher, build_sample
from mqtt_stats.schemas import BrokerEndpoint


def make_message(topic: str, payload: bytes):
    return SimpleNamespace(topic=topic, payload=payload)


class TestDispatcher:
    @pytest.fixture
    def forwarder(self):
        forwarder = MagicMock()
        forwarder.send.return_value = True
        return forwarder

    @pytest.fixture
    def client(self):
        return object()

    def dispatcher_for(self, client, url, forwarder):
        registry = {client: BrokerEndpoint(url=url).host_tag}
        return Dispatcher(registry, forwarder)

    @pytest.mark.parametrize(
        "topic,payload,url,path,value",
        [
            (
                "$SYS/broker/clients/connected",
                b"42",
                "tcp://broker.example.com",
                "broker_example_com.mqtt.clients.connected",
                "42",
            ),
            ("$SYS/broker/uptime", b"98765 seconds", "tcp://1.2.3.4", "1_2_3_4.mqtt.uptime", "98765"),
            (
                "$SYS/broker/load/messages/received/1min",
                b"3.14",
                "tcp://h",
                "h.mqtt.load.messages.received.1min",
                "3.14",
            ),
        ],
    )
    def test_forwards_sample(self, client, forwarder, topic, payload, url, path, value):
        dispatch = self.dispatcher_for(client, url, forwarder)

        dispatch(client, make_message(topic, payload))

        forwarder.send.assert_called_once_with(path, value)

    @pytest.mark.parametrize(
        "topic,payload",
        [
            ("$SYS/broker/version", b"2.0.18"),
            ("$SYS/broker/timestamp", b"1700000000"),
        ],
    )
    def test_filtered_topics_are_not_sent(self, client, forwarder, topic, payload):
        dispatch = self.dispatcher_for(client, "tcp://h", forwarder)

        dispatch(client, make_message(topic, payload))

        forwarder.send.assert_not_called()

    def test_unregistered_session_is_dropped(self, client, forwarder, caplog):
        dispatch = Dispatcher({}, forwarder)

        dispatch(client, make_message("$SYS/broker/clients/connected", b"1"))

        forwarder.send.assert_not_called()
        assert "Not all the mqtt clients are ready" in caplog.text

    def test_send_failure_is_swallowed(self, client, forwarder):
        forwarder.send.return_value = False
        dispatch = self.dispatcher_for(client, "tcp://h", forwarder)

        dispatch(client, make_message("$SYS/broker/clients/connected", b"1"))

        forwarder.send.assert_called_once()

    def test_hosts_do_not_collide(self, forwarder):
        first, second = object(), object()
        registry = {
            first: BrokerEndpoint(url="tcp://broker-a.example.com").host_tag,
            second: BrokerEndpoint(url="tcp://broker-b.example.com").host_tag,
        }
        dispatch = Dispatcher(registry, forwarder)

        dispatch(first, make_message("$SYS/broker/clients/total", b"3"))
        dispatch(second, make_message("$SYS/broker/clients/total", b"5"))

        paths = [call.args[0] for call in forwarder.send.call_args_list]
        assert paths == [
            "broker-a_example_com.mqtt.clients.total",
            "broker-b_example_com.mqtt.clients.total",
        ]


def test_build_sample_skips_version():
    assert build_sample("h", "$SYS/broker/version", b"mosquitto 2.0") is None


def test_build_sample():
    sample = build_sample("h", "$SYS/broker/bytes/sent", b"1024")
    assert sample.path == "h.mqtt.bytes.sent"
    assert sample.value == "1024"
