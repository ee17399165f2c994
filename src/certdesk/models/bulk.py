"""Aggregate result of a bulk operation run."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class BulkOperationResult:
    """Live tally of a bulk run.

    ``current`` advances after every item or chunk so callers can
    render progress; at completion ``successes + failures == total``
    and ``len(errors) == failures``.
    """

    total: int = 0
    current: int = 0
    successes: int = 0
    failures: int = 0
    errors: list[str] = field(default_factory=list)

    def record_success(self) -> None:
        self.successes += 1
        self.current += 1

    def record_failure(self, key: str, message: str) -> None:
        """Count one failed item, recorded as ``"key: message"``."""
        self.failures += 1
        self.current += 1
        self.errors.append(f"{key}: {message}")

    @property
    def complete(self) -> bool:
        return self.current >= self.total

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "current": self.current,
            "successes": self.successes,
            "failures": self.failures,
            "errors": list(self.errors),
        }
