from __future__ import annotations

import logging
import time
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from routeaudit.config import AuditSettings, VerificationSettings
from routeaudit.domain.models import (
    DUPLICATE_PREFIX,
    MISSING_ROUTE,
    ROUTE_MISMATCH,
    APICallInfo,
    AuditResults,
    AuditSummary,
    AuthFlowCheck,
    DatabaseReport,
    DiscoveredRoutes,
    EndpointCheck,
    EndpointProbe,
    Issue,
    IssueLocation,
    MatchReport,
    MatchResult,
    ModuleStructureReport,
    RouteInfo,
    Severity,
    VerificationOutcome,
)
from routeaudit.domain.results import Err
from routeaudit.errors import PhaseError
from routeaudit.matching.matcher import detect_duplicate_prefixes, match_routes
from routeaudit.matching.paths import normalize_path
from routeaudit.orchestrator.context import (
    AuditContext,
    ErrorRecord,
    Phase,
    complete_phase,
    record_error,
    start_phase,
    update_progress,
    with_cache,
)
from routeaudit.orchestrator.events import EventSink, EventType
from routeaudit.orchestrator.ports import (
    BackendRouteScanner,
    DatabaseVerifier,
    EndpointVerifier,
    FrontendAPIScanner,
    ModuleStructureVerifier,
    ReportGenerator,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhaseEnv:
    """Everything a phase may touch besides the context it is handed."""

    settings: AuditSettings
    backend_scanner: BackendRouteScanner
    frontend_scanner: FrontendAPIScanner
    database_verifier: DatabaseVerifier
    endpoint_verifier: EndpointVerifier
    module_verifier: ModuleStructureVerifier
    report_generator: ReportGenerator
    events: EventSink
    # builds whatever scan_module_routes() expects (module name -> package dir by default)
    container_factory: Callable[[], Any]
    clock: Callable[[], float] = time.monotonic


@dataclass(frozen=True)
class DiscoveryResult:
    routes: DiscoveredRoutes
    frontend_calls: tuple[APICallInfo, ...]
    from_cache: bool = False


@dataclass(frozen=True)
class ReportFile:
    content: str
    path: Path


@dataclass(frozen=True)
class GeneratedReports:
    summary: ReportFile
    routes: ReportFile
    issues: ReportFile
    details: ReportFile


# ---- shared plumbing ----


def _emit_progress(ctx: AuditContext, env: PhaseEnv) -> None:
    p = ctx.progress
    env.events.emit(
        EventType.PROGRESS,
        p.current_phase,
        phase_progress=p.phase_progress,
        overall_progress=p.overall_progress,
        estimated_time_remaining=p.estimated_time_remaining,
        message=p.message,
    )


def _progress(ctx: AuditContext, env: PhaseEnv, phase: Phase, pct: float, message: str) -> AuditContext:
    ctx = update_progress(ctx, phase, pct, env.clock(), message)
    _emit_progress(ctx, env)
    return ctx


def _start(ctx: AuditContext, env: PhaseEnv, phase: Phase) -> AuditContext:
    logger.info("Starting %s phase", phase.value)
    ctx = start_phase(ctx, phase, env.clock())
    _emit_progress(ctx, env)
    return ctx


def _complete(ctx: AuditContext, env: PhaseEnv, phase: Phase, **summary: Any) -> AuditContext:
    ctx = complete_phase(ctx, phase, env.clock())
    _emit_progress(ctx, env)
    env.events.emit(EventType.PHASE_COMPLETE, phase, results=summary)
    logger.info("%s phase complete: %s", phase.value.capitalize(), summary)
    return ctx


def _fatal(ctx: AuditContext, env: PhaseEnv, phase: Phase, exc: Exception) -> PhaseError:
    logger.error("Error in %s phase: %s", phase.value, exc)
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    ctx = record_error(ctx, ErrorRecord(phase=phase, error=str(exc), stack=stack, critical=True))
    env.events.emit(EventType.PHASE_ERROR, phase, error=str(exc))
    return PhaseError(phase, exc, ctx)


def _step_failed(
    ctx: AuditContext,
    phase: Phase,
    step: str,
    message: str,
    route: Optional[str] = None,
) -> AuditContext:
    return record_error(ctx, ErrorRecord(phase=phase, error=message, step=step, route=route))


# ---- phase 1: discovery ----


def _scan_modular_routes(ctx: AuditContext, env: PhaseEnv) -> tuple[AuditContext, list[RouteInfo]]:
    # the modular half of the backend is optional; losing it degrades the audit
    try:
        container = env.container_factory()
        routes = list(env.backend_scanner.scan_module_routes(container))
    except Exception as exc:
        logger.warning("Could not scan modular routes: %s", exc)
        ctx = _step_failed(ctx, Phase.DISCOVERY, "module-routes", str(exc))
        return ctx, []
    logger.info("Discovered %d modular routes", len(routes))
    return ctx, routes


def run_discovery(
    ctx: AuditContext, env: PhaseEnv, use_cache: bool = False
) -> tuple[AuditContext, DiscoveryResult]:
    phase = Phase.DISCOVERY
    ctx = _start(ctx, env, phase)
    try:
        cache = ctx.cache
        if use_cache and cache.routes is not None and cache.frontend_calls is not None:
            logger.info("Using cached discovery results")
            ctx = _progress(ctx, env, phase, 100, "Using cached results")
            result = DiscoveryResult(cache.routes, tuple(cache.frontend_calls), from_cache=True)
        else:
            ctx = _progress(ctx, env, phase, 20, "Scanning legacy routes...")
            legacy = list(env.backend_scanner.scan_legacy_routes())

            ctx = _progress(ctx, env, phase, 40, "Scanning modular routes...")
            ctx, modular = _scan_modular_routes(ctx, env)

            ctx = _progress(ctx, env, phase, 60, "Scanning frontend API calls...")
            calls = tuple(env.frontend_scanner.scan_api_calls())

            ctx = _progress(ctx, env, phase, 80, "Consolidating results...")
            routes = DiscoveredRoutes(all=legacy + modular, modular=modular, legacy=legacy)
            ctx = with_cache(ctx, routes=routes, frontend_calls=calls)
            result = DiscoveryResult(routes, calls)

        ctx = _complete(
            ctx,
            env,
            phase,
            total_routes=len(result.routes.all),
            modular_routes=len(result.routes.modular),
            legacy_routes=len(result.routes.legacy),
            frontend_calls=len(result.frontend_calls),
            from_cache=result.from_cache,
        )
    except Exception as exc:
        raise _fatal(ctx, env, phase, exc) from exc
    return ctx, result


# ---- phase 2: matching ----


def run_matching(
    ctx: AuditContext,
    env: PhaseEnv,
    discovery: DiscoveryResult,
    use_cache: bool = False,
) -> tuple[AuditContext, MatchReport]:
    """
    Cached matches are only reused together with cached discovery output;
    against a fresh scan they would no longer partition the inputs.
    """
    phase = Phase.MATCHING
    ctx = _start(ctx, env, phase)
    try:
        if use_cache and discovery.from_cache and ctx.cache.matches is not None:
            logger.info("Using cached matching results")
            ctx = _progress(ctx, env, phase, 100, "Using cached results")
            report = ctx.cache.matches
        else:
            ctx = _progress(ctx, env, phase, 30, "Matching frontend calls to backend routes...")
            report = match_routes(
                discovery.frontend_calls,
                discovery.routes.all,
                previous=ctx.cache.matches,
            )

            ctx = _progress(ctx, env, phase, 70, "Detecting duplicate prefixes...")
            duplicates = detect_duplicate_prefixes(discovery.frontend_calls)
            report = report.model_copy(update={"duplicate_prefixes": duplicates})
            ctx = with_cache(ctx, matches=report)

        ctx = _complete(
            ctx,
            env,
            phase,
            matched=len(report.matched),
            unmatched_frontend=len(report.unmatched_frontend),
            unmatched_backend=len(report.unmatched_backend),
            match_rate=report.statistics.match_rate,
            duplicate_prefixes=len(report.duplicate_prefixes),
        )
    except Exception as exc:
        raise _fatal(ctx, env, phase, exc) from exc
    return ctx, report


# ---- phase 3: verification ----


def sample_routes(
    report: MatchReport,
    cfg: VerificationSettings,
    modules: Sequence[str] = (),
) -> list[MatchResult]:
    """The first `sample_size` matched routes in match order, minus skipped paths."""
    skip = {normalize_path(p) for p in cfg.skip_routes}
    picked: list[MatchResult] = []
    for m in report.matched:
        if len(picked) >= cfg.sample_size:
            break
        if normalize_path(m.backend.path) in skip:
            continue
        if modules and m.backend.module not in modules:
            continue
        picked.append(m)
    return picked


def _verify_database(
    ctx: AuditContext, db: DatabaseVerifier
) -> tuple[AuditContext, Optional[DatabaseReport]]:
    phase = Phase.VERIFICATION
    try:
        conn = db.verify_connection()
        if isinstance(conn, Err):
            logger.error("Database connection check failed: %s", conn.reason)
            return _step_failed(ctx, phase, "database", conn.reason), None

        tables = db.verify_tables()
        if isinstance(tables, Err):
            logger.error("Database table check failed: %s", tables.reason)
            return _step_failed(ctx, phase, "database", tables.reason), None
    except Exception as exc:
        logger.error("Database verification failed: %s", exc)
        return _step_failed(ctx, phase, "database", str(exc)), None

    logger.info(
        "Database verification complete: connected=%s tables=%d missing=%d",
        conn.value.connected,
        len(tables.value.tables),
        len(tables.value.missing),
    )
    return ctx, DatabaseReport(connection=conn.value, tables=tables.value)


def _verify_module_structure(
    ctx: AuditContext, verifier: ModuleStructureVerifier, modules: Sequence[str]
) -> tuple[AuditContext, Optional[ModuleStructureReport]]:
    try:
        report = verifier.verify_all_modules(list(modules) or None)
    except Exception as exc:
        logger.error("Module structure verification failed: %s", exc)
        return _step_failed(ctx, Phase.VERIFICATION, "module-structure", str(exc)), None

    logger.info(
        "Module structure verification complete: %d modules, %d passed, %d failed",
        report.total_modules,
        report.passed_modules,
        report.failed_modules,
    )
    return ctx, report


def _verify_endpoints(
    ctx: AuditContext, env: PhaseEnv, matches: MatchReport, modules: Sequence[str]
) -> tuple[AuditContext, list[EndpointCheck]]:
    phase = Phase.VERIFICATION
    verifier = env.endpoint_verifier
    checks: list[EndpointCheck] = []

    try:
        checks.append(AuthFlowCheck(result=verifier.verify_auth_flow()))
    except Exception as exc:
        logger.error("Endpoint verification failed: %s", exc)
        return _step_failed(ctx, phase, "endpoints", str(exc)), checks

    # one request at a time; the target is usually a dev server
    for match in sample_routes(matches, env.settings.verification, modules):
        route = match.backend
        try:
            result = verifier.verify_endpoint(route, token=verifier.auth_token)
        except Exception as exc:
            logger.warning("Failed to verify endpoint %s %s: %s", route.method, route.path, exc)
            ctx = _step_failed(ctx, phase, "endpoint", str(exc), route=route.path)
            continue
        checks.append(EndpointProbe(route=route, result=result))

    logger.info("Endpoint verification complete: %d checks", len(checks))
    return ctx, checks


def run_verification(
    ctx: AuditContext,
    env: PhaseEnv,
    matches: MatchReport,
    skip_verification: bool = False,
    skip_database: bool = False,
    modules: Sequence[str] = (),
) -> tuple[AuditContext, VerificationOutcome]:
    """
    Never raises for collaborator failures: each step is recorded in the
    error ledger and leaves its slot empty.
    """
    phase = Phase.VERIFICATION
    ctx = _start(ctx, env, phase)

    if skip_verification:
        ctx = _progress(ctx, env, phase, 100, "Verification skipped")
        ctx = _complete(ctx, env, phase, skipped=True)
        return ctx, VerificationOutcome()

    total_steps = 2 if skip_database else 3
    done = 0

    database: Optional[DatabaseReport] = None
    if not skip_database:
        ctx = _progress(ctx, env, phase, 0, "Verifying database connection...")
        ctx, database = _verify_database(ctx, env.database_verifier)
        done += 1

    ctx = _progress(ctx, env, phase, done / total_steps * 100, "Verifying module structure...")
    ctx, module_structure = _verify_module_structure(ctx, env.module_verifier, modules)
    done += 1

    ctx = _progress(ctx, env, phase, done / total_steps * 100, "Verifying endpoints (sample)...")
    ctx, endpoints = _verify_endpoints(ctx, env, matches, modules)

    outcome = VerificationOutcome(
        database=database,
        module_structure=module_structure,
        endpoints=endpoints,
    )
    ctx = _complete(
        ctx,
        env,
        phase,
        database_verified=database is not None,
        module_structure_verified=module_structure is not None,
        endpoints_verified=len(endpoints),
    )
    return ctx, outcome


# ---- phase 4: analysis ----


def _issues_from_matching(matches: MatchReport) -> list[Issue]:
    issues: list[Issue] = []

    for call in matches.unmatched_frontend:
        method = call.method.upper()
        issues.append(
            Issue(
                type=ROUTE_MISMATCH,
                severity=Severity.HIGH,
                title=f"Frontend call without backend route: {method} {call.path}",
                description=(
                    f'Frontend component "{call.component}" makes an API call '
                    "that has no corresponding backend route."
                ),
                location=IssueLocation(file=call.file, line=call.line),
                suggested_fix=(
                    f"Create a backend route for {method} {call.path} "
                    "or update the frontend call to use an existing route."
                ),
            )
        )

    for route in matches.unmatched_backend:
        issues.append(
            Issue(
                type=MISSING_ROUTE,
                severity=Severity.MEDIUM,
                title=f"Backend route without frontend call: {route.method} {route.path}",
                description=(
                    "Backend route exists but is not called by any frontend component. "
                    "This may be unused code."
                ),
                location=IssueLocation(file=route.file, line=route.line),
                suggested_fix=(
                    "Either add frontend integration for this route "
                    "or remove it if it's no longer needed."
                ),
                related_routes=[route],
            )
        )

    for dup in matches.duplicate_prefixes:
        issues.append(
            Issue(
                type=DUPLICATE_PREFIX,
                severity=dup.severity,
                title=f"Duplicate /api prefix: {dup.path}",
                description=dup.issue,
                location=IssueLocation(file=dup.file, line=dup.line),
                suggested_fix=dup.suggested_fix,
            )
        )
    return issues


def _issues_from_modules(report: Optional[ModuleStructureReport]) -> list[Issue]:
    if report is None:
        return []
    return [
        Issue(
            type=finding.type,
            severity=finding.severity,
            title=finding.message,
            description=finding.message,
            location=IssueLocation(file=finding.location or "unknown", line=0),
            suggested_fix=finding.suggested_fix
            or "See module structure verification report for details.",
        )
        for finding in report.issues
    ]


def run_analysis(
    ctx: AuditContext,
    env: PhaseEnv,
    discovery: DiscoveryResult,
    matches: MatchReport,
    verification: VerificationOutcome,
    run_errors: Sequence[ErrorRecord] = (),
) -> tuple[AuditContext, AuditResults]:
    phase = Phase.ANALYSIS
    ctx = _start(ctx, env, phase)
    try:
        ctx = _progress(ctx, env, phase, 25, "Analyzing results...")
        issues = _issues_from_matching(matches)

        ctx = _progress(ctx, env, phase, 75, "Analyzing verification results...")
        issues.extend(_issues_from_modules(verification.module_structure))

        passed = sum(1 for check in verification.endpoints if check.passed)
        failed = len(verification.endpoints) - passed

        results = AuditResults(
            summary=AuditSummary(
                total_routes=len(discovery.routes.all),
                total_frontend_calls=len(discovery.frontend_calls),
                matched_routes=len(matches.matched),
                unmatched_routes=len(matches.unmatched_frontend) + len(matches.unmatched_backend),
                passed_tests=passed,
                failed_tests=failed,
                issues=len(issues),
            ),
            routes=discovery.routes,
            frontend_calls=list(discovery.frontend_calls),
            matches=matches,
            verification_results=list(verification.endpoints),
            database=verification.database,
            module_structure=verification.module_structure,
            issues=issues,
            degraded_steps=[
                f"{e.phase.value}/{e.step or 'general'}: {e.error}" for e in run_errors
            ],
        )

        ctx = _complete(
            ctx,
            env,
            phase,
            total_issues=len(issues),
            critical_issues=sum(1 for i in issues if i.severity == Severity.CRITICAL),
            high_issues=sum(1 for i in issues if i.severity == Severity.HIGH),
        )
    except Exception as exc:
        raise _fatal(ctx, env, phase, exc) from exc
    return ctx, results


# ---- phase 5: reporting ----


def _write_reports(reports: Sequence[ReportFile]) -> None:
    # every file is staged next to its target first; targets are only
    # replaced once all staged writes succeeded
    staged: list[tuple[Path, Path]] = []
    try:
        for report in reports:
            tmp = report.path.with_name(report.path.name + ".tmp")
            staged.append((tmp, report.path))
            tmp.write_text(report.content, encoding="utf-8")
    except Exception:
        for tmp, _ in staged:
            if tmp.is_file():
                tmp.unlink()
        raise
    for tmp, final in staged:
        tmp.replace(final)


def run_reporting(
    ctx: AuditContext, env: PhaseEnv, results: AuditResults
) -> tuple[AuditContext, GeneratedReports]:
    """Renders every report before writing any, so a failure leaves no partial set."""
    phase = Phase.REPORTING
    cfg = env.settings.reporting
    gen = env.report_generator
    ctx = _start(ctx, env, phase)
    try:
        ctx = _progress(ctx, env, phase, 25, "Generating summary report...")
        summary = gen.generate_summary_report(results)

        ctx = _progress(ctx, env, phase, 50, "Generating route report...")
        route_report = gen.generate_route_report(results)

        ctx = _progress(ctx, env, phase, 75, "Generating issue report...")
        issue_report = gen.generate_issue_report(results)
        details = results.model_dump_json(indent=2)

        out = Path(cfg.output_path)
        out.mkdir(parents=True, exist_ok=True)
        reports = GeneratedReports(
            summary=ReportFile(summary, out / cfg.summary_file_name),
            routes=ReportFile(route_report, out / cfg.route_report_file_name),
            issues=ReportFile(issue_report, out / cfg.issue_report_file_name),
            details=ReportFile(details, out / cfg.detailed_report_file_name),
        )
        _write_reports((reports.summary, reports.routes, reports.issues, reports.details))

        ctx = _complete(ctx, env, phase, reports_generated=4, output_path=str(out))
    except Exception as exc:
        raise _fatal(ctx, env, phase, exc) from exc
    return ctx, reports
