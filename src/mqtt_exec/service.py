"""Service entry point: load entries, connect, register, wait for a signal."""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable

from mqtt_exec.bus import MqttBus
from mqtt_exec.config import load_entries
from mqtt_exec.dispatcher import Dispatcher
from mqtt_exec.logging import get_logger
from mqtt_exec.settings import Settings

logger = get_logger(__name__)


def run_service(
    settings: Settings,
    *,
    stop_event: threading.Event | None = None,
    bus_factory: Callable[[Settings], MqttBus] | None = None,
) -> int:
    """Run the dispatcher until SIGINT/SIGTERM (or ``stop_event`` is set).

    Args:
        settings: Process settings
        stop_event: Event that ends the service when set
        bus_factory: Builds the bus from settings (default: MqttBus.from_settings)

    Returns:
        Process exit code (0).

    Raises:
        ConfigError: Entry document unreadable or invalid, bad broker URL.
        BusError: Broker unreachable or a subscription was rejected.
    """
    entries = load_entries(settings.config)
    if not entries:
        logger.info("no_entries", config=str(settings.config), message="nothing to do, stopping")
        return 0

    stop = stop_event or threading.Event()
    bus = (bus_factory or MqttBus.from_settings)(settings)
    bus.connect()

    # Handle shutdown signals
    def shutdown(signum, frame):
        logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        stop.set()

    previous_handlers = {}
    try:
        dispatcher = Dispatcher(entries, bus, default_qos=settings.qos)
        dispatcher.register()

        if threading.current_thread() is threading.main_thread():
            for signum in (signal.SIGINT, signal.SIGTERM):
                previous_handlers[signum] = signal.signal(signum, shutdown)

        logger.info("service_running", entries=len(entries), message="Press Ctrl+C to stop")
        stop.wait()
    finally:
        for signum, handler in previous_handlers.items():
            # None: the previous handler was not installed from Python
            signal.signal(signum, signal.SIG_DFL if handler is None else handler)
        bus.disconnect()

    logger.info("service_stopped")
    return 0
