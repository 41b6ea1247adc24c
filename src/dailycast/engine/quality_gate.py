# src/dailycast/engine/quality_gate.py
"""Pre-publish quality gate over a run's quality context.

A degraded video is worse than a skipped day, so any major compromise
sends the run to human review instead of auto-publishing.
"""

from __future__ import annotations

from collections.abc import Callable

from dailycast.contracts import QualityContext, QualityDecision, QualityGateResult

# More visual-gen fallbacks than this (30% of ~10 visuals) needs review
MAX_VISUAL_FALLBACKS = 3
MAX_MINOR_ISSUES = 2


def _fallbacks_for(quality: QualityContext, stage: str) -> list[str]:
    return [fb for fb in quality.fallbacks_used if fb.startswith(f"{stage}:")]


# (check, issue) pairs; every check that fires contributes its issue.
MAJOR_ISSUE_RULES: tuple[tuple[Callable[[QualityContext], bool], str], ...] = (
    (lambda q: bool(_fallbacks_for(q, "tts")), "TTS fallback used"),
    (lambda q: len(_fallbacks_for(q, "visual-gen")) > MAX_VISUAL_FALLBACKS, ">30% visual fallbacks used"),
    (lambda q: any("word-count" in flag for flag in q.flags), "Word count outside acceptable range"),
    (
        lambda q: any("pronunciation" in flag and ">3" in flag for flag in q.flags),
        ">3 pronunciation unknowns unresolved",
    ),
    (
        lambda q: bool(_fallbacks_for(q, "thumbnail")) and bool(_fallbacks_for(q, "visual-gen")),
        "Both thumbnail and visual fallbacks used",
    ),
)


def quality_gate_check(quality: QualityContext) -> QualityGateResult:
    """Decide whether a completed run can publish without review."""
    if quality.is_empty:
        return QualityGateResult(decision=QualityDecision.AUTO_PUBLISH, reason="No quality issues detected")

    issues = tuple(issue for check, issue in MAJOR_ISSUE_RULES if check(quality))
    if issues:
        return QualityGateResult(
            decision=QualityDecision.HUMAN_REVIEW,
            reason="Major quality issues detected",
            issues=issues,
        )

    if len(quality.degraded_stages) <= MAX_MINOR_ISSUES or len(quality.fallbacks_used) <= MAX_MINOR_ISSUES:
        return QualityGateResult(
            decision=QualityDecision.AUTO_PUBLISH_WITH_WARNING,
            reason="Minor quality issues detected",
            issues=(
                *(f"Degraded stage: {stage}" for stage in quality.degraded_stages),
                *(f"Fallback used: {fb}" for fb in quality.fallbacks_used),
            ),
        )

    return QualityGateResult(
        decision=QualityDecision.HUMAN_REVIEW,
        reason="Multiple quality concerns",
        issues=(
            f"{len(quality.degraded_stages)} degraded stages",
            f"{len(quality.fallbacks_used)} fallbacks used",
            f"{len(quality.flags)} flags raised",
        ),
    )
