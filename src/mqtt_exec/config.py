"""Entry document loading.

The entry document is a YAML mapping from entry name to entry fields::

    build:
      topic: ci/build
      command: /usr/bin/make
      args: [all]
      workingdirectory: /srv/project

    notify:
      topic: alerts/#
      command: notify-send
      args: [alert received]
      multipleinstance: true
      qos: 0

Entries are loaded once at startup and returned as an immutable, name-sorted
tuple. An empty document is valid and yields no entries. Anything unreadable
or malformed raises ``ConfigError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from mqtt_exec.entry import Entry
from mqtt_exec.errors import ConfigError


class EntryLoader(yaml.SafeLoader):
    """SafeLoader that keeps sequence scalars as their source text.

    The only sequences in an entry document are argument lists, and an
    argument is passed to the command exactly as written: ``[true, 1.50,
    0x10]`` loads as ``["true", "1.50", "0x10"]``. A null item is ``""``.
    """


def _construct_text_sequence(loader: EntryLoader, node: yaml.SequenceNode) -> list[Any]:
    items: list[Any] = []
    for item in node.value:
        if isinstance(item, yaml.ScalarNode):
            items.append("" if item.tag == "tag:yaml.org,2002:null" else loader.construct_scalar(item))
        else:
            # Nested collections are kept as-is and rejected by validation
            items.append(loader.construct_object(item, deep=True))
    return items


EntryLoader.add_constructor("tag:yaml.org,2002:seq", _construct_text_sequence)


def parse_entries(document: Any, *, source: str = "<string>") -> tuple[Entry, ...]:
    """Validate an already-parsed entry document.

    Args:
        document: Loaded YAML document (mapping or None)
        source: Where the document came from, for error context

    Returns:
        Entries sorted by name.

    Raises:
        ConfigError: If the document or any entry is invalid.
    """
    if document is None:
        return ()

    if not isinstance(document, Mapping):
        raise ConfigError(
            f"entry document must be a mapping of entry name to entry, got {type(document).__name__}"
        ).with_context(path=source)

    entries: list[Entry] = []
    for key, body in document.items():
        name = str(key)
        if not isinstance(body, Mapping):
            raise ConfigError(f"entry {name!r} must be a mapping").with_context(
                entry=name, path=source
            )
        try:
            # The mapping key is the entry's name
            entries.append(Entry.model_validate({**body, "name": name}))
        except ValidationError as e:
            raise ConfigError(f"invalid entry {name!r}: {e}", cause=e).with_context(
                entry=name, path=source
            ) from e

    return tuple(sorted(entries, key=lambda entry: entry.name))


def loads_entries(yaml_content: str, *, source: str = "<string>") -> tuple[Entry, ...]:
    """Parse and validate YAML content."""
    try:
        data = yaml.load(yaml_content, Loader=EntryLoader)  # noqa: S506
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}", cause=e).with_context(path=source) from e

    return parse_entries(data, source=source)


def load_entries(path: str | Path) -> tuple[Entry, ...]:
    """Load and validate the entry document at ``path``."""
    try:
        content = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"cannot read entry document: {e}", cause=e).with_context(
            path=str(path)
        ) from e

    return loads_entries(content, source=str(path))


__all__ = ["parse_entries", "loads_entries", "load_entries"]
