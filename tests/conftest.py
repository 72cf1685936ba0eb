"""
Shared pytest fixtures and configuration for mqtt-exec tests.

Commands in tests run the current interpreter (``sys.executable -c ...``)
so they behave the same on every platform that runs the suite.
"""

import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure mqtt_exec package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mqtt_exec.entry import Entry


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark all tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Entry Factories
# =============================================================================


def python_entry(name: str, code: str, **fields: Any) -> Entry:
    """An entry whose command is ``python -c <code>``."""
    fields.setdefault("topic", f"test/{name}")
    return Entry(name=name, command=sys.executable, args=["-c", code], **fields)


@pytest.fixture
def make_entry():
    """Factory fixture: ``make_entry("build", "print('hi')", allow_concurrent=True)``."""
    return python_entry


@pytest.fixture
def write_config(tmp_path: Path):
    """Write YAML text to a config file and return its path."""

    def _write(content: str, name: str = "config.yaml") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write


def events(logs: list[dict[str, Any]], event: str, entry: str | None = None) -> list[dict[str, Any]]:
    """Captured log records named ``event`` (optionally for one entry)."""
    return [
        record
        for record in logs
        if record["event"] == event and (entry is None or record.get("entry") == entry)
    ]
