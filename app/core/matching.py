# app/core/matching.py

"""
Greedy record matcher.

Pairs each source record with at most one candidate record, in the order the
sources are given:

1. Scan every candidate not already claimed in this run
2. Keep the best-scoring one (strictly better replaces; ties keep the first)
3. A "high" score is accepted outright and ends the scan
4. Claim the winner so no later source can take it

This is a single pass, not an optimal bipartite assignment: when one
candidate would suit two sources, the earlier source gets it. Batches are
small and every match goes through human review before it is applied.
"""

from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar
import logging

from app.models import MatchResult, MatchSet, MatchSummary
from app.core.confidence import Score

logger = logging.getLogger(__name__)

S = TypeVar("S")
C = TypeVar("C")


def match_records(
    sources: Sequence[S],
    candidates: Sequence[C],
    scorer: Callable[[S, C], Score],
    *,
    source_id: Callable[[S], str],
    candidate_id: Callable[[C], str],
    used: Optional[set[str]] = None,
    describe_source: Optional[Callable[[S], dict[str, Any]]] = None,
    describe_candidate: Optional[Callable[[C], dict[str, Any]]] = None,
    no_match_reason: str = "No matching candidate found",
) -> MatchSet:
    """
    Match ``sources`` against a shared ``candidates`` pool.

    ``used`` holds candidate ids already claimed; it is updated in place so a
    caller can chain runs over the same pool.
    """
    if used is None:
        used = set()

    results: list[MatchResult] = []

    for source in sources:
        best: Optional[tuple[C, Score]] = None

        for candidate in candidates:
            if candidate_id(candidate) in used:
                continue

            score = scorer(source, candidate)
            if not score.is_match:
                continue

            if best is None or score.rank > best[1].rank:
                best = (candidate, score)
                if score.confidence == "high":
                    break

        source_view = describe_source(source) if describe_source else {}

        if best is None:
            results.append(MatchResult(
                source_id=source_id(source),
                confidence="none",
                reason=no_match_reason,
                source=source_view,
            ))
            continue

        candidate, score = best
        used.add(candidate_id(candidate))
        results.append(MatchResult(
            source_id=source_id(source),
            candidate_id=candidate_id(candidate),
            confidence=score.confidence,
            reason=score.reason,
            date_diff_days=score.date_diff_days,
            amount_diff_pct=score.amount_diff_pct,
            source=source_view,
            candidate=describe_candidate(candidate) if describe_candidate else None,
        ))

    match_set = MatchSet(
        results=results,
        summary=summarize(results, total_candidates=len(candidates)),
        unmatched_candidate_ids=[
            candidate_id(c) for c in candidates if candidate_id(c) not in used
        ],
    )

    logger.debug(
        "Matched %d sources against %d candidates: %s",
        len(sources), len(candidates), match_set.summary.model_dump(),
    )
    return match_set


def summarize(results: Iterable[MatchResult], total_candidates: int = 0) -> MatchSummary:
    """Count results per confidence tier."""
    summary = MatchSummary(total_candidates=total_candidates)
    for result in results:
        summary.total_sources += 1
        setattr(summary, result.confidence, getattr(summary, result.confidence) + 1)
    return summary
