"""Tests for the Dispatcher — topic registration and guarded dispatch."""

from __future__ import annotations

import threading
import time

import pytest
from structlog.testing import capture_logs

from conftest import events
from mqtt_exec.bus import InMemoryBus
from mqtt_exec.dispatcher import Dispatcher, resolve_qos
from mqtt_exec.entry import Entry
from mqtt_exec.errors import SpawnError
from mqtt_exec.guard import RunState
from mqtt_exec.runner import CommandOutcome, OutcomeStatus


class BlockingRunner:
    """Runner stand-in that blocks until released and counts invocations."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def run(self, entry: Entry) -> CommandOutcome:
        with self._lock:
            self.calls.append(entry.name)
        self.started.set()
        self.release.wait(timeout=5)
        return CommandOutcome(entry=entry.name, status=OutcomeStatus.SUCCEEDED)


class ExplodingRunner:
    def run(self, entry: Entry) -> CommandOutcome:
        raise RuntimeError("runner bug")


def _entry(name: str, **fields) -> Entry:
    fields.setdefault("topic", f"test/{name}")
    return Entry(name=name, command="unused", **fields)


# ── QoS resolution ───────────────────────────────────────────────────────


class TestResolveQos:
    @pytest.mark.parametrize(
        "hint, default, expected",
        [
            (None, 2, 2),
            (0, 2, 0),
            (1, 2, 1),
            (2, 0, 2),
            (3, 1, 1),
            (-1, 2, 2),
            (255, 0, 0),
        ],
    )
    def test_resolve(self, hint, default, expected):
        assert resolve_qos(hint, default) == expected

    def test_out_of_range_logged(self):
        with capture_logs() as logs:
            resolve_qos(5, 2)
        assert events(logs, "qos_hint_out_of_range")[0]["qos"] == 5


# ── Registration ─────────────────────────────────────────────────────────


class TestRegister:
    def test_subscribes_every_entry_with_resolved_qos(self):
        bus = InMemoryBus()
        entries = [
            _entry("a", topic="t/a", qos=0),
            _entry("b", topic="t/b"),
            _entry("c", topic="t/c", qos=9),
        ]

        with capture_logs() as logs:
            count = Dispatcher(entries, bus, default_qos=1).register()

        assert count == 3
        assert bus.subscriptions == [("t/a", 0), ("t/b", 1), ("t/c", 1)]
        assert [r["entry"] for r in events(logs, "entry_loaded")] == ["a", "b", "c"]

    def test_no_entries_registers_nothing(self):
        bus = InMemoryBus()
        assert Dispatcher([], bus).register() == 0
        assert bus.subscriptions == []

    def test_payload_is_ignored(self):
        bus = InMemoryBus()
        runner = BlockingRunner()
        runner.release.set()
        Dispatcher([_entry("a", topic="t/a")], bus, runner=runner).register()

        bus.publish("t/a", b"")
        bus.publish("t/a", b"\x00\xffanything at all")

        assert runner.calls == ["a", "a"]

    def test_wildcard_topic_triggers(self):
        bus = InMemoryBus()
        runner = BlockingRunner()
        runner.release.set()
        Dispatcher([_entry("alerts", topic="alerts/#")], bus, runner=runner).register()

        bus.publish("alerts/disk/full")
        bus.publish("other/topic")

        assert runner.calls == ["alerts"]


# ── Guarded dispatch ─────────────────────────────────────────────────────


class TestDispatch:
    def test_skipped_trigger_spawns_nothing(self):
        entry = _entry("build")
        runner = BlockingRunner()
        dispatcher = Dispatcher([entry], InMemoryBus(), runner=runner)

        first = threading.Thread(target=dispatcher.dispatch, args=(entry,))
        first.start()
        assert runner.started.wait(timeout=2)

        with capture_logs() as logs:
            assert dispatcher.dispatch(entry) is None

        runner.release.set()
        first.join(timeout=5)

        assert runner.calls == ["build"]
        skipped = events(logs, "trigger_skipped", entry="build")
        assert len(skipped) == 1
        assert skipped[0]["log_level"] == "info"
        assert entry.guard.state is RunState.IDLE

    def test_busy_entry_does_not_block_other_entries(self):
        slow, fast = _entry("slow"), _entry("fast")
        runner = BlockingRunner()
        dispatcher = Dispatcher([slow, fast], InMemoryBus(), runner=runner)

        t = threading.Thread(target=dispatcher.dispatch, args=(slow,))
        t.start()
        assert runner.started.wait(timeout=2)

        # fast is admitted even though slow holds its own guard
        done = threading.Thread(target=dispatcher.dispatch, args=(fast,))
        done.start()
        deadline = time.monotonic() + 2
        while len(runner.calls) < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert fast.guard.executing is True
        assert slow.guard.executing is True

        runner.release.set()
        t.join(timeout=5)
        done.join(timeout=5)
        assert sorted(runner.calls) == ["fast", "slow"]

    def test_guard_released_when_runner_raises(self):
        entry = _entry("buggy")
        dispatcher = Dispatcher([entry], InMemoryBus(), runner=ExplodingRunner())

        with pytest.raises(RuntimeError):
            dispatcher.dispatch(entry)

        assert entry.guard.state is RunState.IDLE

    def test_handler_error_contained_by_bus(self):
        bus = InMemoryBus()
        entry = _entry("buggy", topic="t/buggy")
        Dispatcher([entry], bus, runner=ExplodingRunner()).register()

        with capture_logs() as logs:
            assert bus.publish("t/buggy") == 1

        assert events(logs, "message_handler_error")[0]["topic"] == "t/buggy"
        assert entry.guard.state is RunState.IDLE


# ── End-to-end scenarios (real processes) ────────────────────────────────


@pytest.mark.integration
class TestScenarios:
    @pytest.mark.slow
    def test_long_running_entry_skips_overlapping_trigger(self, make_entry):
        """Two triggers 100ms apart on a busy non-concurrent entry: one run, one skip."""
        bus = InMemoryBus()
        build = make_entry("build", "import time; time.sleep(1.0)", topic="ci/build")
        Dispatcher([build], bus).register()

        with capture_logs() as logs:
            first = threading.Thread(target=bus.publish, args=("ci/build",))
            first.start()
            time.sleep(0.1)
            bus.publish("ci/build")
            first.join(timeout=10)

        assert len(events(logs, "command_started", entry="build")) == 1
        assert len(events(logs, "command_succeeded", entry="build")) == 1
        assert len(events(logs, "trigger_skipped", entry="build")) == 1
        assert build.guard.state is RunState.IDLE

    def test_concurrent_entry_runs_every_trigger(self, make_entry):
        bus = InMemoryBus()
        notify = make_entry("notify", "pass", topic="alerts/notify", allow_concurrent=True)
        Dispatcher([notify], bus).register()
        barrier = threading.Barrier(5)

        def fire():
            barrier.wait()
            bus.publish("alerts/notify")

        with capture_logs() as logs:
            threads = [threading.Thread(target=fire) for _ in range(5)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=10)

        assert len(events(logs, "command_started", entry="notify")) == 5
        assert len(events(logs, "command_succeeded", entry="notify")) == 5
        assert events(logs, "trigger_skipped") == []
        assert notify.guard.in_flight == 0

    def test_spawn_failure_does_not_lock_entry_out(self):
        broken = Entry(name="broken", topic="t/broken", command="/nonexistent/bin/tool")
        dispatcher = Dispatcher([broken], InMemoryBus())

        first = dispatcher.dispatch(broken)
        assert first is not None
        assert isinstance(first.error, SpawnError)
        assert broken.guard.state is RunState.IDLE

        second = dispatcher.dispatch(broken)
        assert second is not None  # admitted again, not skipped

    def test_failing_command_reports_status_and_output(self, make_entry):
        failing = make_entry("failing", "import sys; sys.stdout.write('err'); sys.exit(1)")
        dispatcher = Dispatcher([failing], InMemoryBus())

        outcome = dispatcher.dispatch(failing)

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.exit_code == 1
        assert outcome.text == "err"
