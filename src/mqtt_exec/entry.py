"""Entry model: one topic-to-command binding.

An ``Entry`` is immutable once loaded. The only runtime state associated
with it is its run state, which lives in the ``ExecutionGuard`` created
alongside the entry and reachable as ``entry.guard``.

YAML keys of the original document format are accepted as aliases::

    build:
      topic: ci/build
      command: make
      args: [all]
      workingdirectory: /srv/project
      multipleinstance: false
      qos: 1
"""

from __future__ import annotations

import shlex
from enum import IntEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from mqtt_exec.guard import ExecutionGuard


class QoS(IntEnum):
    """MQTT delivery-quality levels, enforced by the broker."""

    AT_MOST_ONCE = 0
    AT_LEAST_ONCE = 1
    EXACTLY_ONCE = 2


def _arg_text(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    return value


class Entry(BaseModel):
    """A configured binding of a message topic to an external command."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str = Field(..., min_length=1, description="Unique entry name, used for log correlation")
    topic: str = Field(..., min_length=1, description="MQTT topic filter to subscribe to")
    command: str = Field(..., min_length=1, description="Executable to run")
    args: tuple[str, ...] = Field(default=(), description="Ordered command arguments")
    working_directory: str | None = Field(
        default=None,
        validation_alias=AliasChoices("working_directory", "workingdirectory", "workingDirectory"),
        description="Directory the command runs in (None: dispatcher's cwd)",
    )
    allow_concurrent: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "allow_concurrent", "multipleinstance", "multiple_instance", "multipleInstance"
        ),
        description="Allow overlapping invocations of this entry",
    )
    qos: int | None = Field(
        default=None,
        description="Requested delivery quality (0-2); out-of-range falls back to the default",
    )

    _guard: ExecutionGuard = PrivateAttr()

    def model_post_init(self, context: Any, /) -> None:
        self._guard = ExecutionGuard(self.name, allow_concurrent=self.allow_concurrent)

    @field_validator("args", mode="before")
    @classmethod
    def _coerce_args(cls, value: Any) -> Any:
        # Documents load args as text; this covers entries built in code
        if value is None:
            return ()
        if isinstance(value, list | tuple):
            return tuple(_arg_text(v) for v in value)
        return value

    @field_validator("working_directory", mode="before")
    @classmethod
    def _blank_directory(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def guard(self) -> ExecutionGuard:
        """The entry's execution guard (one per entry, for its lifetime)."""
        return self._guard

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    @property
    def command_line(self) -> str:
        """Shell-quoted command line, for display only."""
        return shlex.join(self.argv)
