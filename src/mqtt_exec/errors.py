"""
Structured error types for mqtt-exec.

Every error raised or reported by the dispatcher extends ``MqttExecError``
and carries a category, a structured context and an optional chained cause,
so the log line for a failure is as useful as the traceback.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                      MqttExecError                           │
        │             (category, context, cause)                       │
        ├─────────────────────────────────────────────────────────────┤
        │                                                              │
        │  ConfigError        BusError               SpawnError        │
        │  (CONFIG)           (NETWORK)              (EXECUTION)       │
        │                         │                                    │
        │                  BusConnectionError       ExecutionError     │
        │                                           (EXECUTION,        │
        │                                            exit_code)        │
        └─────────────────────────────────────────────────────────────┘

Startup errors (``ConfigError``, ``BusError``) are raised and end the
process. Per-invocation errors (``SpawnError``, ``ExecutionError``) are
never raised past the command runner: they ride on the ``CommandOutcome``
and are logged with the entry name.

Examples:
    >>> error = SpawnError("cannot start '/bin/nope'").with_context(entry="build")
    >>> error.category
    <ErrorCategory.EXECUTION: 'EXECUTION'>
    >>> error.to_dict()["context"]
    {'entry': 'build'}

Tags:
    error-handling, exception-hierarchy, error-context, mqtt-exec
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and log routing."""

    CONFIG = "CONFIG"          # Unreadable/malformed entries, bad settings
    NETWORK = "NETWORK"        # Broker connection, subscription
    EXECUTION = "EXECUTION"    # Spawn failure, abnormal exit
    INTERNAL = "INTERNAL"      # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only non-None fields end up in ``to_dict()``; anything that does not
    have a dedicated field goes into ``metadata``.
    """

    entry: str | None = None
    topic: str | None = None
    command: str | None = None
    path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["entry", "topic", "command", "path"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class MqttExecError(Exception):
    """Base exception for all mqtt-exec errors.

    Subclasses set ``default_category``; callers may override it per
    instance. Passing ``cause=`` chains the original exception so both the
    log record and the traceback keep the root cause.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> MqttExecError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ConfigError("bad entry").with_context(entry="build", path="config.yaml")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }

        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict

        if self.cause is not None:
            result["cause"] = str(self.cause)

        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# STARTUP ERRORS
# =============================================================================


class ConfigError(MqttExecError):
    """Entry document or process settings are unreadable or invalid."""

    default_category = ErrorCategory.CONFIG


class BusError(MqttExecError):
    """The message bus rejected an operation (e.g. a subscription)."""

    default_category = ErrorCategory.NETWORK


class BusConnectionError(BusError):
    """The broker could not be reached or refused the connection."""


# =============================================================================
# PER-INVOCATION ERRORS
# =============================================================================


class SpawnError(MqttExecError):
    """The external command could not be started."""

    default_category = ErrorCategory.EXECUTION


class ExecutionError(MqttExecError):
    """The external command started but terminated abnormally."""

    default_category = ErrorCategory.EXECUTION

    def __init__(self, message: str, *, exit_code: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        return result


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "MqttExecError",
    "ConfigError",
    "BusError",
    "BusConnectionError",
    "SpawnError",
    "ExecutionError",
]
