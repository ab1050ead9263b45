from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict

from routeaudit.domain.models import APICallInfo, DiscoveredRoutes, MatchReport, utc_now_iso


class Phase(str, Enum):
    DISCOVERY = "discovery"
    MATCHING = "matching"
    VERIFICATION = "verification"
    ANALYSIS = "analysis"
    REPORTING = "reporting"


PHASE_ORDER: tuple[Phase, ...] = tuple(Phase)

PHASE_WEIGHTS: Mapping[Phase, int] = {
    Phase.DISCOVERY: 20,
    Phase.MATCHING: 15,
    Phase.VERIFICATION: 40,
    Phase.ANALYSIS: 15,
    Phase.REPORTING: 10,
}


@dataclass(frozen=True)
class PhaseTiming:
    start: float
    end: Optional[float] = None

    @property
    def duration(self) -> Optional[float]:
        if self.end is None:
            return None
        return self.end - self.start


@dataclass(frozen=True)
class Progress:
    current_phase: Optional[Phase] = None
    phase_progress: float = 0.0
    overall_progress: float = 0.0
    phase_times: Mapping[Phase, PhaseTiming] = field(default_factory=dict)
    estimated_time_remaining: Optional[float] = None
    elapsed_time: float = 0.0
    message: str = ""


@dataclass(frozen=True)
class ErrorRecord:
    phase: Phase
    error: str
    step: Optional[str] = None
    route: Optional[str] = None
    stack: Optional[str] = None
    # set for failures that aborted the run
    critical: bool = False
    timestamp: str = field(default_factory=utc_now_iso)


class AuditCache(BaseModel):
    """Discovery/matching outputs kept between runs of one orchestrator (or on disk)."""

    model_config = ConfigDict(frozen=True)

    routes: Optional[DiscoveredRoutes] = None
    frontend_calls: Optional[tuple[APICallInfo, ...]] = None
    matches: Optional[MatchReport] = None


@dataclass(frozen=True)
class AuditContext:
    progress: Progress = field(default_factory=Progress)
    cache: AuditCache = field(default_factory=AuditCache)
    errors: tuple[ErrorRecord, ...] = ()
    started_at: Optional[float] = None


def overall_progress(phase: Phase, phase_progress: float) -> float:
    """Weights of every phase before `phase`, plus the finished share of `phase`."""
    done = 0.0
    for p in PHASE_ORDER:
        if p == phase:
            break
        done += PHASE_WEIGHTS[p]
    done += PHASE_WEIGHTS[phase] * phase_progress / 100.0
    return min(100.0, done)


def estimate_time_remaining(elapsed: float, overall: float) -> Optional[float]:
    if overall <= 0:
        return None
    total = elapsed / overall * 100.0
    return max(0.0, total - elapsed)


def reset_progress(ctx: AuditContext, now: float) -> AuditContext:
    # cache and error ledger survive; progress is per run
    return replace(ctx, progress=Progress(), started_at=now)


def update_progress(
    ctx: AuditContext,
    phase: Phase,
    phase_progress: float,
    now: float,
    message: str = "",
) -> AuditContext:
    pct = max(0.0, min(100.0, float(phase_progress)))
    overall = overall_progress(phase, pct)
    elapsed = now - ctx.started_at if ctx.started_at is not None else 0.0
    eta = estimate_time_remaining(elapsed, overall)
    if eta is None:
        eta = ctx.progress.estimated_time_remaining

    progress = replace(
        ctx.progress,
        current_phase=phase,
        phase_progress=pct,
        overall_progress=overall,
        estimated_time_remaining=eta,
        elapsed_time=elapsed,
        message=message,
    )
    return replace(ctx, progress=progress)


def start_phase(ctx: AuditContext, phase: Phase, now: float) -> AuditContext:
    times = dict(ctx.progress.phase_times)
    times[phase] = PhaseTiming(start=now)
    ctx = replace(ctx, progress=replace(ctx.progress, phase_times=times))
    return update_progress(ctx, phase, 0, now, f"Starting {phase.value} phase")


def complete_phase(ctx: AuditContext, phase: Phase, now: float) -> AuditContext:
    times = dict(ctx.progress.phase_times)
    if phase in times:
        times[phase] = replace(times[phase], end=now)
    ctx = replace(ctx, progress=replace(ctx.progress, phase_times=times))
    return update_progress(ctx, phase, 100, now, f"Completed {phase.value} phase")


def record_error(ctx: AuditContext, record: ErrorRecord) -> AuditContext:
    return replace(ctx, errors=ctx.errors + (record,))


def with_cache(ctx: AuditContext, **changes) -> AuditContext:
    return replace(ctx, cache=ctx.cache.model_copy(update=changes))
