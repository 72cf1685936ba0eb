"""Dispatcher - bind every entry's topic to a guarded command invocation.

For each entry the dispatcher subscribes the entry's topic on the bus. The
handler it registers ignores the message payload; any delivery is an
unconditional trigger:

    message ─► guard.try_begin() ─┬─ SKIPPED  ─► log trigger_skipped, drop
                                  └─ ADMITTED ─► runner.run(entry)
                                                 guard.end()   (always)

Usage:
    dispatcher = Dispatcher(load_entries("config.yaml"), bus, default_qos=2)
    dispatcher.register()
"""

from __future__ import annotations

from collections.abc import Sequence

from mqtt_exec.bus import MessageBus, MessageHandler
from mqtt_exec.entry import Entry, QoS
from mqtt_exec.logging import get_logger
from mqtt_exec.runner import CommandOutcome, CommandRunner

logger = get_logger(__name__)


def resolve_qos(hint: int | None, default: int) -> int:
    """The QoS to subscribe with: the entry's hint if valid, else the default."""
    if hint is None:
        return default
    if QoS.AT_MOST_ONCE <= hint <= QoS.EXACTLY_ONCE:
        return hint
    logger.warning("qos_hint_out_of_range", qos=hint, default=default)
    return default


class Dispatcher:
    """
    Registers entries on a message bus and runs their commands on delivery.

    The entries are fixed for the dispatcher's lifetime; each one brings its
    own execution guard, so there is no state here shared across entries.
    """

    def __init__(
        self,
        entries: Sequence[Entry],
        bus: MessageBus,
        *,
        runner: CommandRunner | None = None,
        default_qos: int = QoS.EXACTLY_ONCE,
    ):
        """
        Initialize the dispatcher.

        Args:
            entries: Loaded entries (names unique)
            bus: Bus to subscribe on
            runner: Optional runner override (defaults to CommandRunner)
            default_qos: QoS for entries without a valid hint
        """
        self.entries = tuple(entries)
        self._bus = bus
        self._runner = runner or CommandRunner()
        self.default_qos = default_qos

    def register(self) -> int:
        """Subscribe every entry's topic.

        Returns:
            Number of entries registered.
        """
        for entry in self.entries:
            qos = resolve_qos(entry.qos, self.default_qos)
            self._bus.subscribe(entry.topic, qos, self.handler_for(entry))
            logger.info("entry_loaded", entry=entry.name, topic=entry.topic, qos=qos)
        return len(self.entries)

    def handler_for(self, entry: Entry) -> MessageHandler:
        """Bus handler for ``entry``; the payload is not inspected."""

        def handle(topic: str, payload: bytes) -> None:
            self.dispatch(entry)

        return handle

    def dispatch(self, entry: Entry) -> CommandOutcome | None:
        """
        Run ``entry``'s command if its guard admits the trigger.

        Returns:
            The outcome, or None if the trigger was skipped because a
            non-concurrent invocation is still running.
        """
        with entry.guard.admitted() as ok:
            if not ok:
                logger.info("trigger_skipped", entry=entry.name, reason="already_running")
                return None
            return self._runner.run(entry)
