"""Run-scoped quality context and quality-gate result contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from dailycast.contracts.enums import QualityDecision


@dataclass(frozen=True)
class QualityContext:
    """Degradation signals accumulated across a whole run.

    All three sequences are append-only: the with_* methods return a new
    context and never drop or reorder existing entries. A resumed run
    inherits the persisted context verbatim.
    """

    degraded_stages: tuple[str, ...] = ()
    fallbacks_used: tuple[str, ...] = ()
    flags: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.degraded_stages or self.fallbacks_used or self.flags)

    def with_degraded(self, stage: str) -> QualityContext:
        return QualityContext(
            degraded_stages=(*self.degraded_stages, stage),
            fallbacks_used=self.fallbacks_used,
            flags=self.flags,
        )

    def with_fallback(self, stage: str, provider: str) -> QualityContext:
        """Record a fallback provider as "stage:provider"."""
        return QualityContext(
            degraded_stages=self.degraded_stages,
            fallbacks_used=(*self.fallbacks_used, f"{stage}:{provider}"),
            flags=self.flags,
        )

    def with_flags(self, flags: tuple[str, ...] | list[str]) -> QualityContext:
        if not flags:
            return self
        return QualityContext(
            degraded_stages=self.degraded_stages,
            fallbacks_used=self.fallbacks_used,
            flags=(*self.flags, *flags),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "degraded_stages": list(self.degraded_stages),
            "fallbacks_used": list(self.fallbacks_used),
            "flags": list(self.flags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QualityContext:
        return cls(
            degraded_stages=tuple(data["degraded_stages"]),
            fallbacks_used=tuple(data["fallbacks_used"]),
            flags=tuple(data["flags"]),
        )


@dataclass(frozen=True)
class QualityGateResult:
    """Publishing decision with the issues that drove it."""

    decision: QualityDecision
    reason: str
    issues: tuple[str, ...] = ()
