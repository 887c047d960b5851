import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence

from prometheus_client import start_http_server
from pydantic import ValidationError

from .bridge import Dispatcher
from .config import ConfigurationError, Settings, load_settings
from .graphite import GraphiteForwarder, probe_worker
from .mqtt_client import SubscriberPool

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


async def serve(settings: Settings, stop: Optional[asyncio.Event] = None) -> int:
    """
    Wire the forwarder and one broker session per endpoint, then run until
    stop is set (SIGINT/SIGTERM by default).
    """
    settings.validate_cafile()
    endpoints = settings.endpoints()

    forwarder = GraphiteForwarder(
        settings.graphite_host,
        settings.graphite_port,
        # a blocked probe must not outlive its slot
        timeout=min(settings.graphite_timeout, settings.graphite_ping),
        ping_metric=settings.ping_metric,
    )
    try:
        forwarder.connect()
    except OSError as exc:
        raise RuntimeError(
            f"Error connecting to graphite at "
            f"{settings.graphite_host}:{settings.graphite_port}: {exc}"
        ) from exc
    logger.info("Connected to graphite")

    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info("Serving bridge metrics on port %s", settings.metrics_port)

    pool = SubscriberPool(
        client_id=settings.client_id,
        topic=settings.topic,
        keepalive=settings.keepalive,
        connect_retries=settings.connect_retries,
        connect_retry_delay=settings.connect_retry_delay,
    )
    dispatch = Dispatcher(pool.registry, forwarder)

    loop = asyncio.get_running_loop()
    if stop is None:
        stop = asyncio.Event()
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, stop.set)

    probe_task = None
    try:
        for endpoint in endpoints:
            await asyncio.to_thread(pool.subscribe, endpoint, dispatch)
        probe_task = asyncio.create_task(
            probe_worker(forwarder, settings.graphite_ping)
        )
        await stop.wait()
        logger.info("Shutting down")
    finally:
        # Shutdown order: stop probing, close broker sessions, close graphite.
        if probe_task:
            probe_task.cancel()
            try:
                await probe_task
            except asyncio.CancelledError:
                pass
        pool.close_all()
        forwarder.close()
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        settings = load_settings(argv)
    except (ConfigurationError, ValidationError) as exc:
        setup_logging(debug=False)
        logger.error("Invalid configuration: %s", exc)
        return 1

    setup_logging(settings.debug)
    try:
        return asyncio.run(serve(settings))
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
