"""Summary: Error taxonomy and typed results for messaging operations.

Importance: Lets sessions and widgets report failures as values instead of crashing the view.
Alternatives: Raise exceptions all the way up into the UI layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class MessagingError(Exception):
    """Summary: Base class for messaging failures.

    Importance: Gives callers one type to branch on.
    Alternatives: Use plain RuntimeError with message parsing.
    """

    code = "messaging_error"


class MessageStoreError(MessagingError):
    """Raised by a Message Store when the backing platform call fails."""

    code = "store_error"


class NotAuthenticated(MessagingError):
    code = "not_authenticated"


class FetchFailed(MessagingError):
    """Aggregation or message query failed; prior data stays available."""

    code = "fetch_failed"


class SendFailed(MessagingError):
    """Summary: Message insert failed.

    Importance: Carries the unsent text so the input can be restored.
    Alternatives: Clear the input and ask the user to retype.
    """

    code = "send_failed"

    def __init__(self, message: str, text: str = "") -> None:
        super().__init__(message)
        self.text = text


class ApplicationBootstrapFailed(SendFailed):
    """Implicit inquiry application could not be created; scope stays unestablished."""

    code = "application_bootstrap_failed"


@dataclass(frozen=True)
class Result:
    """Summary: Typed outcome of a session or widget operation.

    Importance: Failures travel as values across async boundaries.
    Alternatives: Return tuples of (value, error).
    """

    value: Any = None
    error: MessagingError | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @staticmethod
    def success(value: Any = None) -> "Result":
        return Result(value=value)

    @staticmethod
    def failure(error: MessagingError) -> "Result":
        return Result(error=error)

    @staticmethod
    def noop() -> "Result":
        return Result(skipped=True)
