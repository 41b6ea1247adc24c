# src/dailycast/engine/stages.py
"""Stage table: ordered stages with their retry policy and criticality.

A StageTable is an immutable value handed to the Engine at construction.
Nothing in the engine looks stages up in module-level state, so two
engines with different tables can coexist in one process (tests do this
constantly).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

from dailycast.contracts import Criticality
from dailycast.core.config import StageSettings


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for one stage.

    max_retries counts retries, not tries: max_retries=3 means the stage
    is called at most 4 times. Delays are in seconds; the delay before
    retry n is min(base_delay * 2**(n-1), max_delay).
    """

    max_retries: int
    base_delay: float
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")
        if self.max_delay < 0:
            raise ValueError(f"max_delay must be >= 0, got {self.max_delay}")

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """Single attempt, no backoff."""
        return cls(max_retries=0, base_delay=0.0, max_delay=0.0)

    def delay_for(self, retry_number: int) -> float:
        """Backoff before the given retry (1-based)."""
        if retry_number < 1:
            raise ValueError(f"retry_number must be >= 1, got {retry_number}")
        return min(self.base_delay * 2 ** (retry_number - 1), self.max_delay)


DEFAULT_RETRY_POLICY = RetryPolicy(max_retries=3, base_delay=2.0, max_delay=30.0)


@dataclass(frozen=True)
class StageDefinition:
    """One row of the stage table."""

    name: str
    criticality: Criticality
    retry: RetryPolicy = DEFAULT_RETRY_POLICY
    always_run: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("stage name must not be empty")


class StageTable:
    """Ordered, immutable collection of stage definitions.

    At most one stage may be always_run; it is excluded from the normal
    loop (loop_stages) and executed by the finalizer instead.

    Lookups for names not in the table fall back to CRITICAL criticality
    and DEFAULT_RETRY_POLICY, so an unknown stage is never silently
    treated as optional.
    """

    def __init__(self, definitions: Iterable[StageDefinition]) -> None:
        self._definitions: tuple[StageDefinition, ...] = tuple(definitions)
        names = [d.name for d in self._definitions]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate stage names: {duplicates}")
        terminals = [d for d in self._definitions if d.always_run]
        if len(terminals) > 1:
            raise ValueError(f"At most one always-run stage allowed, got {[d.name for d in terminals]}")
        self._by_name = {d.name: d for d in self._definitions}
        self._index = {d.name: i for i, d in enumerate(self._definitions)}
        self._terminal = terminals[0] if terminals else None

    @classmethod
    def from_settings(cls, stages: Sequence[StageSettings]) -> StageTable:
        return cls(
            StageDefinition(
                name=s.name,
                criticality=s.criticality,
                retry=RetryPolicy(
                    max_retries=s.retry.max_retries,
                    base_delay=s.retry.base_delay_seconds,
                    max_delay=s.retry.max_delay_seconds,
                ),
                always_run=s.always_run,
            )
            for s in stages
        )

    @property
    def order(self) -> tuple[str, ...]:
        """Canonical stage order, including the always-run stage."""
        return tuple(d.name for d in self._definitions)

    @property
    def definitions(self) -> tuple[StageDefinition, ...]:
        return self._definitions

    @property
    def terminal(self) -> StageDefinition | None:
        """The always-run stage, if the table has one."""
        return self._terminal

    @property
    def loop_stages(self) -> tuple[str, ...]:
        return tuple(d.name for d in self._definitions if not d.always_run)

    def index_of(self, name: str) -> int | None:
        return self._index.get(name)

    def get(self, name: str) -> StageDefinition | None:
        return self._by_name.get(name)

    def criticality_of(self, name: str) -> Criticality:
        definition = self._by_name.get(name)
        return definition.criticality if definition is not None else Criticality.CRITICAL

    def retry_policy_of(self, name: str) -> RetryPolicy:
        definition = self._by_name.get(name)
        return definition.retry if definition is not None else DEFAULT_RETRY_POLICY

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[StageDefinition]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def __repr__(self) -> str:
        return f"StageTable({list(self.order)!r})"


def _stage(name: str, criticality: Criticality, max_retries: int, base_delay: float, **kwargs: bool) -> StageDefinition:
    return StageDefinition(
        name=name,
        criticality=criticality,
        retry=RetryPolicy(max_retries=max_retries, base_delay=base_delay, max_delay=30.0),
        **kwargs,
    )


# The daily pipeline. Rendering happens inside visual-gen and has no stage of its own.
DEFAULT_STAGE_TABLE = StageTable(
    [
        _stage("news-sourcing", Criticality.CRITICAL, 3, 2.0),
        _stage("research", Criticality.CRITICAL, 3, 2.0),
        _stage("script-gen", Criticality.CRITICAL, 3, 2.0),
        _stage("pronunciation", Criticality.DEGRADED, 2, 1.0),
        _stage("tts", Criticality.CRITICAL, 5, 3.0),
        _stage("visual-gen", Criticality.DEGRADED, 3, 2.0),
        _stage("thumbnail", Criticality.DEGRADED, 3, 2.0),
        _stage("youtube", Criticality.CRITICAL, 5, 3.0),
        _stage("twitter", Criticality.RECOVERABLE, 2, 1.0),
        _stage("notifications", Criticality.RECOVERABLE, 3, 1.0, always_run=True),
    ]
)
