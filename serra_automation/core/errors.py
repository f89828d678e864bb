"""
Shared error types and error-logging helpers for the automation backend.
"""

from __future__ import annotations

import logging


class RuleConfigurationError(ValueError):
    """A stored rule violates an invariant that authoring should have rejected."""

    def __init__(self, rule_id: str | None, detail: str) -> None:
        self.rule_id = rule_id
        self.detail = detail
        super().__init__(f"rule {rule_id} misconfigured: {detail}")


class DispatchFailure(RuntimeError):
    """The actuator command queue rejected a command or timed out."""

    def __init__(self, actuator_id: str, detail: str) -> None:
        self.actuator_id = actuator_id
        self.detail = detail
        super().__init__(f"enqueue failed actuator={actuator_id}: {detail}")


class ReadingRejected(ValueError):
    """An incoming reading cannot be attributed to a known device/sensor."""

    def __init__(self, detail: str, *, not_found: bool = False) -> None:
        self.detail = detail
        self.not_found = not_found
        super().__init__(detail)


def _format_extra(extra: dict | None) -> str:
    if not extra:
        return ""
    parts: list[str] = []
    for key, value in extra.items():
        if value is None:
            continue
        parts.append(f"{key}={value}")
    return f" {' '.join(parts)}" if parts else ""


def log_exception(logger: logging.Logger, msg: str, *, extra: dict | None = None, exc: Exception | None = None) -> None:
    """
    Log an exception with context. Uses logger.exception for stack traces.
    """
    suffix = _format_extra(extra)
    if exc is not None:
        logger.error(f"{msg}{suffix}: {exc}", exc_info=exc)
        return
    logger.exception(f"{msg}{suffix}")
