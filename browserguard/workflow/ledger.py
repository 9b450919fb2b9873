"""Bounded history of dispatched operations and their outcomes."""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from browserguard.core.logging import get_logger

logger = get_logger(__name__)


class Outcome(str, Enum):
    """Outcome of a dispatched operation."""

    SUCCESS = "success"
    FAILURE = "failure"
    REJECTED = "rejected"


@dataclass
class LedgerEntry:
    """One dispatched operation."""
    operation: str
    outcome: Outcome
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation."""
        return {
            "operation": self.operation,
            "outcome": self.outcome.value,
            "timestamp": self.timestamp.isoformat(),
            "detail": self.detail,
        }


class WorkflowLedger:
    """Ring buffer of recent operations plus what has succeeded so far.

    An operation counts as succeeded while its latest non-rejected outcome
    is a success. Consecutive failures are counted per operation and reset
    by the next success. The whole ledger is reset when the browser closes.
    """

    def __init__(self, capacity: int = 100):
        """Initialize an empty ledger.

        Args:
            capacity: Number of entries kept
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._entries: deque[LedgerEntry] = deque(maxlen=capacity)
        self._succeeded: set[str] = set()
        self._consecutive_failures: dict[str, int] = defaultdict(int)
        self._last_error: dict[str, str] = {}

    def record(
        self,
        operation: str,
        outcome: Outcome | str,
        detail: str | None = None,
    ) -> LedgerEntry:
        """Append an outcome.

        Args:
            operation: Operation name
            outcome: success, failure or rejected
            detail: Error message or other note

        Returns:
            The new entry
        """
        entry = LedgerEntry(operation=operation, outcome=Outcome(outcome), detail=detail)
        self._entries.append(entry)

        if entry.outcome == Outcome.SUCCESS:
            self._succeeded.add(operation)
            self._consecutive_failures.pop(operation, None)
            self._last_error.pop(operation, None)
        elif entry.outcome == Outcome.FAILURE:
            self._succeeded.discard(operation)
            self._consecutive_failures[operation] += 1
            if detail:
                self._last_error[operation] = detail

        logger.debug("ledger_recorded", operation=operation, outcome=entry.outcome.value)
        return entry

    def has_succeeded(self, operation: str) -> bool:
        """Whether ``operation`` has succeeded since the last reset (and not failed since)."""
        return operation in self._succeeded

    def consecutive_failures(self, operation: str) -> int:
        """Failures of ``operation`` since its last success."""
        return self._consecutive_failures.get(operation, 0)

    def last_error(self, operation: str) -> str | None:
        """Most recent failure detail of ``operation``."""
        return self._last_error.get(operation)

    def last_entry(self, operation: str | None = None) -> LedgerEntry | None:
        """Newest entry, optionally restricted to one operation."""
        for entry in reversed(self._entries):
            if operation is None or entry.operation == operation:
                return entry
        return None

    @property
    def entries(self) -> list[LedgerEntry]:
        """Entries oldest first."""
        return list(self._entries)

    @property
    def succeeded(self) -> frozenset[str]:
        """Operations currently counted as succeeded."""
        return frozenset(self._succeeded)

    def reset(self) -> None:
        """Forget everything."""
        self._entries.clear()
        self._succeeded.clear()
        self._consecutive_failures.clear()
        self._last_error.clear()
        logger.debug("ledger_reset")

    def snapshot(self, limit: int = 10) -> dict[str, Any]:
        """Diagnostic view of the ledger."""
        return {
            "succeeded": sorted(self._succeeded),
            "consecutive_failures": dict(self._consecutive_failures),
            "recent": [entry.to_dict() for entry in list(self._entries)[-limit:]],
        }
