from __future__ import annotations

import json
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence

from pydantic import ValidationError

from routeaudit.config import AuditSettings
from routeaudit.domain.models import AuditResults, EndpointProbe, RouteInfo, VerificationResult, utc_now_iso
from routeaudit.errors import AuditCancelledError, CacheError, PhaseError
from routeaudit.orchestrator.context import AuditCache, AuditContext, ErrorRecord, Phase, Progress, reset_progress
from routeaudit.orchestrator.events import CancellationToken, EventSink, EventType, Listener
from routeaudit.orchestrator.phases import (
    GeneratedReports,
    PhaseEnv,
    run_analysis,
    run_discovery,
    run_matching,
    run_reporting,
    run_verification,
)
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
class AuditOptions:
    modules: tuple[str, ...] = ()
    skip_verification: bool = False
    skip_database: bool = False
    use_cache: bool = False
    cancel_token: Optional[CancellationToken] = None


@dataclass(frozen=True)
class AuditRun:
    success: bool
    execution_time: float  # seconds
    results: AuditResults
    reports: GeneratedReports


@dataclass(frozen=True)
class RerunEntry:
    route: RouteInfo
    previous: VerificationResult
    current: Optional[VerificationResult]
    fixed: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class RerunReport:
    entries: list[RerunEntry] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def fixed(self) -> int:
        return sum(1 for e in self.entries if e.fixed)

    @property
    def still_failing(self) -> int:
        return self.total - self.fixed


@dataclass(frozen=True)
class ErrorSummary:
    total_errors: int
    errors_by_phase: dict[str, int]
    errors_by_type: dict[str, int]
    critical_errors: list[ErrorRecord]
    timestamp: str


class AuditOrchestrator:
    """
    Drives one audit through discovery, matching, verification, analysis
    and reporting.

    Phase functions are pure over an AuditContext; this class only holds the
    latest context between calls. Progress resets at the start of every run,
    while the cache and the error ledger carry over until cleared.
    """

    def __init__(
        self,
        settings: AuditSettings,
        *,
        backend_scanner: BackendRouteScanner,
        frontend_scanner: FrontendAPIScanner,
        database_verifier: DatabaseVerifier,
        endpoint_verifier: EndpointVerifier,
        module_verifier: ModuleStructureVerifier,
        report_generator: ReportGenerator,
        container_factory: Optional[Callable[[], Any]] = None,
        listeners: Iterable[Listener] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.backend_scanner = backend_scanner
        self.frontend_scanner = frontend_scanner
        self.database_verifier = database_verifier
        self.endpoint_verifier = endpoint_verifier
        self.module_verifier = module_verifier
        self.report_generator = report_generator
        self._container_factory = container_factory or dict
        self._events = EventSink(listeners)
        self._clock = clock
        self._context = AuditContext()

    @classmethod
    def from_settings(
        cls, settings: AuditSettings, listeners: Iterable[Listener] = ()
    ) -> "AuditOrchestrator":
        """Wire the default FastAPI/JavaScript collaborators."""
        from routeaudit.reporting.generator import MarkdownReportGenerator
        from routeaudit.scanners.backend import FastAPIRouteScanner, discover_module_container
        from routeaudit.scanners.frontend import JavaScriptAPIScanner
        from routeaudit.verifiers.database import SQLDatabaseVerifier
        from routeaudit.verifiers.endpoints import HTTPEndpointVerifier
        from routeaudit.verifiers.modules import FileModuleStructureVerifier

        return cls(
            settings,
            backend_scanner=FastAPIRouteScanner(settings.backend, settings.modules),
            frontend_scanner=JavaScriptAPIScanner(settings.frontend),
            database_verifier=SQLDatabaseVerifier(settings.database),
            endpoint_verifier=HTTPEndpointVerifier(settings.backend.base_url, settings.verification),
            module_verifier=FileModuleStructureVerifier(settings.backend.modules_path, settings.modules),
            report_generator=MarkdownReportGenerator(),
            container_factory=lambda: discover_module_container(
                settings.backend.modules_path, settings.modules
            ),
            listeners=listeners,
        )

    # ---- events ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self._events.subscribe(listener)

    def _env(self) -> PhaseEnv:
        return PhaseEnv(
            settings=self.settings,
            backend_scanner=self.backend_scanner,
            frontend_scanner=self.frontend_scanner,
            database_verifier=self.database_verifier,
            endpoint_verifier=self.endpoint_verifier,
            module_verifier=self.module_verifier,
            report_generator=self.report_generator,
            events=self._events,
            container_factory=self._container_factory,
            clock=self._clock,
        )

    # ---- runs ----

    def run_full_audit(self, options: Optional[AuditOptions] = None) -> AuditRun:
        opts = options or AuditOptions()
        token = opts.cancel_token or CancellationToken()
        env = self._env()

        started = self._clock()
        self._context = reset_progress(self._context, started)
        ledger_mark = len(self._context.errors)

        logger.info("Starting full system audit: %s", opts)
        self._events.emit(
            EventType.AUDIT_START,
            modules=list(opts.modules),
            skip_verification=opts.skip_verification,
            skip_database=opts.skip_database,
            use_cache=opts.use_cache,
        )

        try:
            token.raise_if_cancelled(Phase.DISCOVERY)
            self._context, discovery = run_discovery(self._context, env, use_cache=opts.use_cache)

            token.raise_if_cancelled(Phase.MATCHING)
            self._context, matches = run_matching(
                self._context, env, discovery, use_cache=opts.use_cache
            )

            token.raise_if_cancelled(Phase.VERIFICATION)
            self._context, verification = run_verification(
                self._context,
                env,
                matches,
                skip_verification=opts.skip_verification,
                skip_database=opts.skip_database,
                modules=opts.modules,
            )

            token.raise_if_cancelled(Phase.ANALYSIS)
            self._context, results = run_analysis(
                self._context,
                env,
                discovery,
                matches,
                verification,
                run_errors=self._context.errors[ledger_mark:],
            )

            token.raise_if_cancelled(Phase.REPORTING)
            self._context, reports = run_reporting(self._context, env, results)
        except PhaseError as exc:
            self._context = exc.audit_context
            logger.error("Audit failed: %s", exc)
            self._events.emit(EventType.AUDIT_ERROR, exc.phase, error=str(exc.error))
            raise
        except AuditCancelledError as exc:
            logger.warning("Audit cancelled before %s phase", exc.phase.value)
            self._events.emit(EventType.AUDIT_ERROR, exc.phase, error=str(exc), cancelled=True)
            raise

        execution_time = self._clock() - started
        logger.info(
            "Full audit completed in %.2fs: %d routes, %d issues",
            execution_time,
            results.summary.total_routes,
            results.summary.issues,
        )
        self._events.emit(
            EventType.AUDIT_COMPLETE,
            execution_time=execution_time,
            summary=results.summary.model_dump(),
        )
        return AuditRun(success=True, execution_time=execution_time, results=results, reports=reports)

    def run_incremental_audit(
        self, modules: Sequence[str], options: Optional[AuditOptions] = None
    ) -> AuditRun:
        """Full audit over cached discovery output, verification limited to `modules`."""
        if not modules:
            raise ValueError("No modules specified for incremental audit")
        logger.info("Starting incremental audit for modules: %s", list(modules))
        opts = replace(options or AuditOptions(), modules=tuple(modules), use_cache=True)
        return self.run_full_audit(opts)

    def run_quick_audit(self) -> AuditRun:
        logger.info("Starting quick audit (no verification)")
        return self.run_full_audit(AuditOptions(skip_verification=True, skip_database=True))

    def rerun_failed_verifications(self, previous: AuditResults) -> RerunReport:
        failed = [
            check
            for check in previous.verification_results
            if isinstance(check, EndpointProbe) and not check.passed
        ]
        if not failed:
            logger.info("No failed verifications to re-run")
            return RerunReport()

        logger.info("Re-running %d failed verifications", len(failed))
        verifier = self.endpoint_verifier
        entries: list[RerunEntry] = []
        for check in failed:
            try:
                result = verifier.verify_endpoint(check.route, token=verifier.auth_token)
            except Exception as exc:
                logger.error("Failed to re-run verification for %s: %s", check.route.path, exc)
                entries.append(
                    RerunEntry(check.route, check.result, None, fixed=False, error=str(exc))
                )
                continue
            entries.append(RerunEntry(check.route, check.result, result, fixed=result.success))

        report = RerunReport(entries)
        logger.info(
            "Re-verification complete: %d total, %d fixed, %d still failing",
            report.total,
            report.fixed,
            report.still_failing,
        )
        return report

    # ---- progress / errors ----

    @property
    def context(self) -> AuditContext:
        return self._context

    def get_progress(self) -> Progress:
        progress = self._context.progress
        if self._context.started_at is None:
            return progress
        return replace(progress, elapsed_time=self._clock() - self._context.started_at)

    def get_errors(self) -> list[ErrorRecord]:
        return list(self._context.errors)

    def errors_for(self, phase: Phase, step: Optional[str] = None) -> list[ErrorRecord]:
        return [
            e
            for e in self._context.errors
            if e.phase == phase and (step is None or e.step == step)
        ]

    def get_errors_by_phase(self) -> dict[str, list[ErrorRecord]]:
        out: dict[str, list[ErrorRecord]] = defaultdict(list)
        for e in self._context.errors:
            out[e.phase.value].append(e)
        return dict(out)

    def get_errors_by_type(self) -> dict[str, list[ErrorRecord]]:
        out: dict[str, list[ErrorRecord]] = defaultdict(list)
        for e in self._context.errors:
            out[e.step or "general"].append(e)
        return dict(out)

    def get_error_summary(self) -> ErrorSummary:
        return ErrorSummary(
            total_errors=len(self._context.errors),
            errors_by_phase={k: len(v) for k, v in self.get_errors_by_phase().items()},
            errors_by_type={k: len(v) for k, v in self.get_errors_by_type().items()},
            critical_errors=[e for e in self._context.errors if e.critical],
            timestamp=utc_now_iso(),
        )

    # ---- cache ----

    def clear_cache(self) -> None:
        self._context = replace(self._context, cache=AuditCache())
        logger.info("Cache cleared")

    def save_cache(self, path: Path) -> None:
        payload = self._context.cache.model_dump(mode="json")
        payload["timestamp"] = utc_now_iso()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to save cache: %s", exc)
            raise CacheError(f"Failed to save cache to {path}: {exc}", {"path": str(path)}) from exc
        logger.info("Cache saved to %s", path)

    def load_cache(self, path: Path) -> bool:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            cache = AuditCache.model_validate(data)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Failed to load cache from %s: %s", path, exc)
            return False

        self._context = replace(self._context, cache=cache)
        logger.info("Cache loaded from %s (saved %s)", path, data.get("timestamp"))
        return True

    def cleanup(self) -> None:
        logger.info("Cleaning up audit orchestrator resources")
        try:
            self.database_verifier.close()
        except Exception:
            logger.exception("Error while closing database verifier")
        self.clear_cache()
        logger.info("Cleanup complete")
