import argparse
import os
from functools import lru_cache
from typing import List, Optional, Sequence

from pydantic_settings import BaseSettings, SettingsConfigDict

from .schemas import BrokerEndpoint

VERSION = "0.1.0"


class ConfigurationError(RuntimeError):
    """Raised for settings that make startup impossible."""


class Settings(BaseSettings):
    mqtt_urls: str = ""
    cafile: str = ""
    insecure: bool = False

    client_id: str = "mqtt-stats"
    topic: str = "$SYS/broker/#"
    keepalive: int = 60
    connect_retries: int = 10
    connect_retry_delay: float = 2.0

    graphite_host: str = "localhost"
    graphite_port: int = 2003
    graphite_ping: int = 15
    graphite_timeout: float = 5.0
    ping_metric: str = "ping metric"

    metrics_port: Optional[int] = None
    debug: bool = False

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    @property
    def broker_urls(self) -> List[str]:
        return parse_broker_urls(self.mqtt_urls)

    def endpoints(self) -> List[BrokerEndpoint]:
        urls = self.broker_urls
        if not urls:
            raise ConfigurationError("No MQTT broker URLs configured.")
        try:
            return [
                BrokerEndpoint(url=url, ca_cert=self.cafile, insecure=self.insecure)
                for url in urls
            ]
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

    def validate_cafile(self) -> None:
        if self.cafile and not os.path.isfile(self.cafile):
            raise ConfigurationError(f"Error reading CA certificate {self.cafile}")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def parse_broker_urls(value: str) -> List[str]:
    """
    Split a comma separated URL list, trimming whitespace and skipping blanks.
    """
    return [url.strip() for url in value.split(",") if url.strip()]


def build_parser(defaults: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mqtt-stats",
        description="Forward MQTT broker $SYS statistics to Graphite.",
    )
    parser.add_argument(
        "--broker-urls",
        default=defaults.mqtt_urls or None,
        required=not defaults.mqtt_urls,
        help="Comma separated MQTT broker URLs (env MQTT_URLS)",
    )
    parser.add_argument(
        "--cafile",
        default=defaults.cafile,
        help="CA certificate when using TLS (optional)",
    )
    parser.add_argument(
        "--graphiteHost",
        dest="graphite_host",
        default=defaults.graphite_host,
        help="Graphite host",
    )
    parser.add_argument(
        "--graphitePort",
        dest="graphite_port",
        type=int,
        default=defaults.graphite_port,
        help="Graphite port",
    )
    parser.add_argument(
        "--graphitePing",
        dest="graphite_ping",
        type=int,
        default=defaults.graphite_ping,
        help="Try to reconnect to graphite every X seconds",
    )
    parser.add_argument(
        "--insecure",
        action=argparse.BooleanOptionalAction,
        default=defaults.insecure,
        help="Don't verify the server's certificate chain and host name.",
    )
    parser.add_argument(
        "--debug",
        action=argparse.BooleanOptionalAction,
        default=defaults.debug,
        help="Print debugging messages",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=defaults.metrics_port,
        help="Expose the bridge's own Prometheus metrics on this port (optional)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def load_settings(argv: Optional[Sequence[str]] = None) -> Settings:
    """
    Environment and .env values form the defaults; command-line flags win.
    """
    defaults = get_settings()
    args = build_parser(defaults).parse_args(argv)
    if args.graphite_ping <= 0:
        raise ConfigurationError("--graphitePing must be a positive number of seconds.")
    return defaults.model_copy(
        update={
            "mqtt_urls": args.broker_urls,
            "cafile": args.cafile,
            "graphite_host": args.graphite_host,
            "graphite_port": args.graphite_port,
            "graphite_ping": args.graphite_ping,
            "insecure": args.insecure,
            "debug": args.debug,
            "metrics_port": args.metrics_port,
        }
    )
