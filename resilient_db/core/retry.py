"""Retry loop shared by both executors.

An attempt is a callable that opens its own connection, executes, reads
every result and commits. ``run_with_retries`` calls it until it succeeds,
a fatal error is classified, or the attempts run out, sleeping a fixed
delay between attempts. Nothing raised by an attempt escapes: every
failure is reported as an error event and summarized in the returned
RetryOutcome.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, field_validator

from resilient_db.core.classifier import ErrorClassifier
from resilient_db.core.constants import (
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_DELAY_SEC,
    RET_VAL_DEADLOCK,
    RET_VAL_EXCESSIVE_RETRIES,
    RET_VAL_UNDEFINED_ERROR,
)
from resilient_db.core.events import EventNotifier


class RetrySettings(BaseModel):
    """Per-call retry knobs."""

    model_config = ConfigDict(frozen=True)

    retry_count: int = DEFAULT_RETRY_COUNT
    retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SEC
    max_rows: int = 0

    @field_validator("retry_count", "retry_delay_seconds")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(value, 1)

    @field_validator("max_rows")
    @classmethod
    def _not_negative(cls, value: int) -> int:
        return max(value, 0)


@dataclass(frozen=True)
class RetryOutcome:
    """Result of a retry loop."""

    success: bool
    value: Any = None
    message: str = ""
    attempts: int = 0
    fatal: bool = False
    deadlock_occurred: bool = False
    last_was_deadlock: bool = False

    @property
    def failure_code(self) -> int:
        """Reserved return code describing why the loop failed."""
        if self.fatal:
            return RET_VAL_UNDEFINED_ERROR
        if self.last_was_deadlock:
            return RET_VAL_DEADLOCK
        return RET_VAL_EXCESSIVE_RETRIES


def run_with_retries(
    attempt: Callable[[], Any],
    *,
    settings: RetrySettings,
    classifier: ErrorClassifier,
    notifier: EventNotifier,
    action: str,
    calling_function: str,
    masked_connection_string: str,
    command_text: str = "",
) -> RetryOutcome:
    """Run *attempt* until it succeeds, fails fatally, or attempts run out.

    Args:
        attempt: Zero-argument callable performing one complete attempt.
        settings: Retry count and delay.
        classifier: The engine's error classifier.
        notifier: Receives one error event per failed attempt.
        action: Wording for messages, e.g. "querying database".
        calling_function: Name of the operation that started the call.
        masked_connection_string: Connection string with the password masked.
        command_text: SQL text or procedure name, included in messages.
    """
    retries_remaining = settings.retry_count
    attempts = 0
    message = ""
    deadlock_occurred = False
    last_was_deadlock = False

    while retries_remaining > 0:
        attempts += 1
        try:
            value = attempt()
        except Exception as exc:
            retries_remaining -= 1
            classification = classifier.classify(exc)

            prefix = "Permission denied" if classification.permission_denied else "Exception"
            message = (
                f"{prefix} {action} (called from {calling_function}): {exc}; "
                f"ConnectionString: {masked_connection_string}, "
                f"RetryCount = {retries_remaining}"
            )
            if command_text:
                message += f", Query {command_text}"
            notifier.on_error_event(message, exc)

            if classification.is_fatal:
                return RetryOutcome(False, message=message, attempts=attempts, fatal=True)

            last_was_deadlock = classification.is_deadlock
            deadlock_occurred = deadlock_occurred or last_was_deadlock

            if retries_remaining > 0:
                time.sleep(settings.retry_delay_seconds)
            continue

        return RetryOutcome(
            True,
            value=value,
            attempts=attempts,
            deadlock_occurred=deadlock_occurred,
        )

    qualifier = " (including deadlock)" if deadlock_occurred else ""
    notifier.on_error_event(
        f"Excessive retries{qualifier} {action} (called from {calling_function}): {command_text}"
    )
    return RetryOutcome(
        False,
        message=message,
        attempts=attempts,
        deadlock_occurred=deadlock_occurred,
        last_was_deadlock=last_was_deadlock,
    )
