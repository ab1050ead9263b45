from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from routeaudit.domain.models import (
    APICallInfo,
    DuplicatePrefixIssue,
    MatchReport,
    MatchResult,
    MatchStatistics,
    RouteInfo,
    Severity,
)
from routeaudit.matching.paths import (
    INVALID_PATH_1,
    INVALID_PATH_2,
    METHOD_MISMATCH,
    PARAMETER_COUNT_MISMATCH,
    PATH_STRUCTURE_MISMATCH,
    fix_duplicate_api_prefix,
    has_duplicate_api_prefix,
    is_parameter,
    normalize_path,
    paths_match_with_reason,
)

logger = logging.getLogger(__name__)

NO_CANDIDATE = "no-candidate"
SUGGESTION_THRESHOLD = 0.7
MAX_SUGGESTIONS_PER_CALL = 3


@dataclass(frozen=True)
class MatchSuggestion:
    frontend: APICallInfo
    backend: RouteInfo
    similarity: float
    reason: str
    suggested_action: str


@dataclass(frozen=True)
class UnmatchedEntry:
    reason: str
    frontend: Optional[APICallInfo] = None
    backend: Optional[RouteInfo] = None
    details: str = ""


@dataclass
class UnmatchedAnalysis:
    by_reason: dict[str, list[UnmatchedEntry]] = field(
        default_factory=lambda: {
            METHOD_MISMATCH: [],
            PATH_STRUCTURE_MISMATCH: [],
            PARAMETER_COUNT_MISMATCH: [],
            NO_CANDIDATE: [],
        }
    )
    total_unmatched_frontend: int = 0
    total_unmatched_backend: int = 0

    def count(self, reason: str) -> int:
        return len(self.by_reason.get(reason, []))


def match_routes(
    frontend_calls: Sequence[APICallInfo],
    backend_routes: Sequence[RouteInfo],
    previous: Optional[MatchReport] = None,
) -> MatchReport:
    """
    Greedy, order-preserving one-to-one matching.

    Each call (in input order) claims the first still-unclaimed backend route
    (in input order) that accepts it. A route that could have served a later
    call better stays with whichever call reached it first.
    """
    logger.info(
        "Matching %d frontend calls against %d backend routes",
        len(frontend_calls),
        len(backend_routes),
    )

    pool: list[RouteInfo] = list(backend_routes)
    matched: list[MatchResult] = []
    unmatched_frontend: list[APICallInfo] = []

    for call in frontend_calls:
        claimed_at: Optional[int] = None
        confidence = "exact"
        for idx, route in enumerate(pool):
            cmp = paths_match_with_reason(call.full_path, route.path, call.method, route.method)
            if cmp.match:
                claimed_at = idx
                confidence = cmp.confidence or "exact"
                break

        if claimed_at is None:
            unmatched_frontend.append(call)
            continue

        route = pool.pop(claimed_at)
        matched.append(MatchResult(frontend=call, backend=route, confidence=confidence))

    total_backend = len(backend_routes)
    match_rate = len(matched) / total_backend if total_backend > 0 else 0.0
    improvement = 0.0
    if previous is not None:
        improvement = match_rate - previous.statistics.match_rate

    stats = MatchStatistics(
        total_frontend=len(frontend_calls),
        total_backend=total_backend,
        matched_count=len(matched),
        match_rate=match_rate,
        improvement_from_previous=improvement,
    )

    logger.info(
        "Matched %d routes (%.1f%%), %d unmatched frontend, %d unmatched backend",
        len(matched),
        match_rate * 100,
        len(unmatched_frontend),
        len(pool),
    )

    return MatchReport(
        matched=matched,
        unmatched_frontend=unmatched_frontend,
        unmatched_backend=pool,
        statistics=stats,
    )


def _repeats_api_segment(full_path: str) -> bool:
    segs = [s for s in normalize_path(full_path).split("/") if s]
    return segs[:2] == ["api", "api"]


def detect_duplicate_prefixes(calls: Sequence[APICallInfo]) -> list[DuplicatePrefixIssue]:
    issues: list[DuplicatePrefixIssue] = []

    for call in calls:
        if has_duplicate_api_prefix(call.path) or has_duplicate_api_prefix(call.full_path):
            issues.append(
                DuplicatePrefixIssue(
                    path=call.path,
                    full_path=call.full_path,
                    severity=Severity.HIGH,
                    issue="Duplicate /api prefix detected",
                    suggested_fix=fix_duplicate_api_prefix(call.path),
                    file=call.file,
                    line=call.line,
                )
            )

        # the base URL already ends in /api; the relative path must not repeat it
        if call.has_base_url and (
            _repeats_api_segment(call.full_path) or call.path.startswith("/api")
        ):
            fixed = call.path[len("/api"):] if call.path.startswith("/api") else call.path
            issues.append(
                DuplicatePrefixIssue(
                    path=call.path,
                    full_path=call.full_path,
                    severity=Severity.MEDIUM,
                    issue="Path starts with /api but base URL already includes /api",
                    suggested_fix=fixed or "/",
                    file=call.file,
                    line=call.line,
                )
            )

    logger.info("Found %d duplicate prefix issues", len(issues))
    return issues


def path_similarity(path1: str, path2: str) -> float:
    s1 = [s for s in normalize_path(path1).split("/") if s]
    s2 = [s for s in normalize_path(path2).split("/") if s]

    if abs(len(s1) - len(s2)) > 2:
        return 0.0

    longest = max(len(s1), len(s2))
    if longest == 0:
        return 1.0

    score = 0.0
    for a, b in zip(s1, s2):
        pa, pb = is_parameter(a), is_parameter(b)
        if a == b or (pa and pb):
            score += 1.0
        elif pa or pb:
            score += 0.95
        elif a in b or b in a:
            # "task" vs "tasks"
            score += 0.7
    return score / longest


def suggest_matches(
    unmatched_frontend: Sequence[APICallInfo],
    unmatched_backend: Sequence[RouteInfo],
) -> list[MatchSuggestion]:
    suggestions: list[MatchSuggestion] = []

    for call in unmatched_frontend:
        candidates: list[tuple[float, RouteInfo]] = []
        for route in unmatched_backend:
            sim = path_similarity(call.full_path, route.path)
            if sim > SUGGESTION_THRESHOLD:
                candidates.append((sim, route))

        # stable sort keeps declaration order among equal scores
        candidates.sort(key=lambda c: c[0], reverse=True)

        for sim, route in candidates[:MAX_SUGGESTIONS_PER_CALL]:
            if call.method.upper() != route.method.upper():
                reason = "Method mismatch - paths are similar but HTTP methods differ"
                action = f"Change frontend method from {call.method.upper()} to {route.method.upper()}"
            else:
                reason = "Path structure is similar but not identical"
                action = f'Review path differences: "{call.full_path}" vs "{route.path}"'
            suggestions.append(
                MatchSuggestion(
                    frontend=call,
                    backend=route,
                    similarity=sim,
                    reason=reason,
                    suggested_action=action,
                )
            )

    logger.info("Generated %d match suggestions", len(suggestions))
    return suggestions


_CATEGORY_DETAILS = {
    PATH_STRUCTURE_MISMATCH: "Path segments do not match",
    PARAMETER_COUNT_MISMATCH: "Different number of parameters",
}


def analyze_unmatched_routes(
    unmatched_frontend: Sequence[APICallInfo],
    unmatched_backend: Sequence[RouteInfo],
) -> UnmatchedAnalysis:
    """
    Bucket every unmatched call by the first meaningful mismatch reason it
    produces against the unmatched backend routes. Backend routes that no
    call was compared closely enough to land in `no-candidate`.
    """
    analysis = UnmatchedAnalysis(
        total_unmatched_frontend=len(unmatched_frontend),
        total_unmatched_backend=len(unmatched_backend),
    )
    paired: set[int] = set()

    for call in unmatched_frontend:
        best: Optional[tuple[str, RouteInfo]] = None
        for route in unmatched_backend:
            cmp = paths_match_with_reason(call.full_path, route.path, call.method, route.method)
            if cmp.match or cmp.reason in (INVALID_PATH_1, INVALID_PATH_2):
                continue
            best = (cmp.reason, route)
            break

        if best is None or best[0] not in analysis.by_reason or best[0] == NO_CANDIDATE:
            analysis.by_reason[NO_CANDIDATE].append(UnmatchedEntry(NO_CANDIDATE, frontend=call))
            continue

        reason, route = best
        if reason == METHOD_MISMATCH:
            details = f"Frontend: {call.method.upper()}, Backend: {route.method.upper()}"
        else:
            details = _CATEGORY_DETAILS[reason]
        analysis.by_reason[reason].append(
            UnmatchedEntry(reason, frontend=call, backend=route, details=details)
        )
        paired.add(id(route))

    for route in unmatched_backend:
        if id(route) not in paired:
            analysis.by_reason[NO_CANDIDATE].append(UnmatchedEntry(NO_CANDIDATE, backend=route))

    logger.info(
        "Unmatched analysis: %d method, %d structure, %d parameter-count, %d no-candidate",
        analysis.count(METHOD_MISMATCH),
        analysis.count(PATH_STRUCTURE_MISMATCH),
        analysis.count(PARAMETER_COUNT_MISMATCH),
        analysis.count(NO_CANDIDATE),
    )
    return analysis
