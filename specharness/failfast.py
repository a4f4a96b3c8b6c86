"""Abort a run once failures pile up."""

from __future__ import annotations

import dataclasses

DEFAULT_THRESHOLD = 25


@dataclasses.dataclass(slots=True)
class FailFastPolicy:
    """Count failed examples and trip once ``threshold`` is reached.

    A threshold of zero disables the policy. Tripping only stops further
    examples from being scheduled; it never interrupts a running one. An
    example that fails in more than one phase counts once.
    """

    threshold: int = DEFAULT_THRESHOLD
    failures: int = 0
    counted: set[str] = dataclasses.field(default_factory=set)

    @property
    def enabled(self) -> bool:
        """Return True when a positive threshold is configured."""
        return self.threshold > 0

    @property
    def tripped(self) -> bool:
        """Return True once the failure count reaches the threshold."""
        return self.enabled and self.failures >= self.threshold

    def record_failure(self, nodeid: str | None = None) -> bool:
        """Count one failure and return whether the policy has tripped.

        Repeated failures for the same ``nodeid`` are not counted again.
        """
        if nodeid is not None:
            if nodeid in self.counted:
                return self.tripped
            self.counted.add(nodeid)
        self.failures += 1
        return self.tripped

    def reason(self) -> str:
        """Describe why the run stopped."""
        plural = "" if self.threshold == 1 else "s"
        return (
            f"specharness: stopping after {self.failures} failure{plural} "
            f"(fail-fast threshold {self.threshold})"
        )
