from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

# scheme -> (use TLS, paho transport, default port)
SCHEMES: Dict[str, Tuple[bool, str, int]] = {
    "tcp": (False, "tcp", 1883),
    "mqtt": (False, "tcp", 1883),
    "ssl": (True, "tcp", 8883),
    "tls": (True, "tcp", 8883),
    "tcps": (True, "tcp", 8883),
    "mqtts": (True, "tcp", 8883),
    "ws": (False, "websockets", 80),
    "wss": (True, "websockets", 443),
}


class BrokerEndpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    ca_cert: str = ""
    insecure: bool = False

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if "://" not in value:
            value = f"tcp://{value}"
        parts = urlsplit(value)
        if parts.scheme.lower() not in SCHEMES:
            raise ValueError(f"Unsupported broker URL scheme '{parts.scheme}' in {value}")
        if not _netloc_host(parts.netloc):
            raise ValueError(f"Broker URL has no host: {value}")
        try:
            parts.port
        except ValueError as exc:
            raise ValueError(f"Invalid port in broker URL {value}: {exc}") from exc
        return value

    @property
    def scheme(self) -> str:
        return urlsplit(self.url).scheme.lower()

    @property
    def host(self) -> str:
        return _netloc_host(urlsplit(self.url).netloc)

    @property
    def port(self) -> int:
        port = urlsplit(self.url).port
        return port or SCHEMES[self.scheme][2]

    @property
    def use_tls(self) -> bool:
        return SCHEMES[self.scheme][0]

    @property
    def transport(self) -> str:
        return SCHEMES[self.scheme][1]

    @property
    def path(self) -> Optional[str]:
        return urlsplit(self.url).path or None

    @property
    def username(self) -> Optional[str]:
        return urlsplit(self.url).username

    @property
    def password(self) -> Optional[str]:
        return urlsplit(self.url).password

    @property
    def host_tag(self) -> str:
        """
        Host part of the URL with dots turned into underscores, used as the
        metric prefix for every sample coming from this broker.
        """
        return self.host.replace(".", "_")


class MetricSample(BaseModel):
    path: str
    value: str = Field(description="Scalar value as text, passed through to Graphite.")


def _netloc_host(netloc: str) -> str:
    hostport = netloc.rsplit("@", 1)[-1]
    # [v6 address]:port
    if hostport.startswith("["):
        return hostport[1:].split("]", 1)[0]
    return hostport.split(":")[0]
