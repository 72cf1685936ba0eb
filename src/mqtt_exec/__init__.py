"""
mqtt-exec - run external commands when MQTT messages arrive.

Each configured entry binds a topic to a command. A message on the topic
triggers the command; entries that do not allow concurrent runs skip
triggers that arrive while their previous invocation is still running.

    from mqtt_exec import Dispatcher, InMemoryBus, load_entries

    bus = InMemoryBus()
    Dispatcher(load_entries("config.yaml"), bus).register()
    bus.publish("ci/build")
"""

__version__ = "0.1.0"

from mqtt_exec.bus import InMemoryBus, MessageBus, MqttBus
from mqtt_exec.config import load_entries, loads_entries
from mqtt_exec.dispatcher import Dispatcher, resolve_qos
from mqtt_exec.entry import Entry, QoS
from mqtt_exec.errors import (
    BusConnectionError,
    BusError,
    ConfigError,
    ExecutionError,
    MqttExecError,
    SpawnError,
)
from mqtt_exec.guard import Admission, ExecutionGuard, RunState
from mqtt_exec.runner import CommandOutcome, CommandRunner, OutcomeStatus
from mqtt_exec.settings import Settings

__all__ = [
    # Model
    "Entry",
    "QoS",
    "load_entries",
    "loads_entries",
    # Core
    "Admission",
    "ExecutionGuard",
    "RunState",
    "CommandOutcome",
    "CommandRunner",
    "OutcomeStatus",
    "Dispatcher",
    "resolve_qos",
    # Bus
    "MessageBus",
    "InMemoryBus",
    "MqttBus",
    # Settings / errors
    "Settings",
    "MqttExecError",
    "ConfigError",
    "BusError",
    "BusConnectionError",
    "SpawnError",
    "ExecutionError",
]
