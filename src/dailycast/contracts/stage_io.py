"""Input and output contracts for stage units of work.

The engine treats a stage as an opaque callable: it builds a StageInput,
invokes the callable, and expects either a StageOutput back or a
StageError raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from dailycast.contracts.enums import ProviderTier
from dailycast.contracts.quality import QualityContext


@dataclass(frozen=True)
class ProviderInfo:
    """Which provider produced a stage result, and how many tries it took."""

    name: str
    tier: ProviderTier = ProviderTier.PRIMARY
    attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "tier": self.tier.value, "attempts": self.attempts}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderInfo:
        return cls(name=data["name"], tier=ProviderTier(data["tier"]), attempts=data["attempts"])


@dataclass(frozen=True)
class ServiceCost:
    """Cost attributed to one external service call (e.g. "gemini-2.5-pro")."""

    service: str
    cost: float

    def __post_init__(self) -> None:
        if self.cost < 0:
            raise ValueError(f"cost must be >= 0, got {self.cost}")


@dataclass(frozen=True)
class StageCost:
    """Total cost of a stage plus its per-service breakdown."""

    total: float = 0.0
    breakdown: tuple[ServiceCost, ...] = ()

    def __post_init__(self) -> None:
        if self.total < 0:
            raise ValueError(f"total must be >= 0, got {self.total}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "breakdown": [{"service": s.service, "cost": s.cost} for s in self.breakdown],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StageCost:
        return cls(
            total=data["total"],
            breakdown=tuple(ServiceCost(service=s["service"], cost=s["cost"]) for s in data["breakdown"]),
        )


@dataclass(frozen=True)
class StageConfig:
    """Execution parameters handed to a stage.

    The engine never preempts a stage; timeout_seconds is a contract the
    stage itself is responsible for honoring.
    """

    timeout_seconds: float
    retries: int


@dataclass(frozen=True)
class StageInput:
    """Everything a stage receives: the previous stage's output plus context."""

    run_id: str
    previous_stage: str | None
    data: Any
    config: StageConfig
    quality_context: QualityContext


@dataclass(frozen=True)
class StageOutput:
    """Successful result of a stage unit of work.

    Attributes:
        data: Payload chained into the next stage's input
        provider: Provider that produced the result
        duration_ms: Wall time the stage reports for itself
        cost: Cost incurred, if the stage tracks one
        quality_measurements: Stage-specific quality metrics
        warnings: Non-fatal issues, merged into the run's quality flags
        artifacts: Locations of produced artifacts (URLs, object keys)
    """

    data: Any
    provider: ProviderInfo
    duration_ms: int = 0
    cost: StageCost | None = None
    quality_measurements: dict[str, Any] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()
    artifacts: tuple[str, ...] = ()

    @property
    def total_cost(self) -> float:
        return self.cost.total if self.cost is not None else 0.0
