"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass, field
from typing import NewType

from bgjob.constants import UINT32_MAX, PollState

# Opaque identifier issued by the server for a background job
JobHandle = NewType("JobHandle", str)


@dataclass(frozen=True)
class ServerAddress:
    """A registered job-queue server."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class ProgressReport:
    """
    Snapshot of a job's status as returned by one status query.

    Numerator and denominator are raw worker-reported values; the
    denominator may be zero and is never divided by.
    """

    is_known: bool
    is_running: bool
    numerator: int = 0
    denominator: int = 0

    def __post_init__(self) -> None:
        for name in ("numerator", "denominator"):
            value = getattr(self, name)
            if not 0 <= value <= UINT32_MAX:
                raise ValueError(f"{name} out of unsigned 32-bit range: {value}")

    def describe(self) -> str:
        """Human-readable progress line."""
        return (
            f"Known ={str(self.is_known).lower()}"
            f", Running={str(self.is_running).lower()}"
            f", Percent Complete={self.numerator}/{self.denominator}"
        )


@dataclass
class ExitDisposition:
    """
    Aggregate success flag for a whole run.

    Starts successful and can only be downgraded.
    """

    reasons: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.reasons

    def downgrade(self, reason: str) -> None:
        """Mark the run as failed, recording why."""
        self.reasons.append(reason)


@dataclass
class PollResult:
    """Outcome of a finished polling loop."""

    handle: JobHandle
    state: PollState
    iterations: int
    failed_queries: int
    ever_known: bool
    last_report: ProgressReport | None = None
