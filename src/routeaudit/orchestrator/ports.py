from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

from routeaudit.domain.models import (
    APICallInfo,
    AuditResults,
    AuthFlowResult,
    DatabaseConnectionInfo,
    ModuleStructureReport,
    RouteInfo,
    TableCheck,
    VerificationResult,
)
from routeaudit.domain.results import Outcome

# Contracts for the collaborators the orchestrator drives. The default
# implementations live under routeaudit.scanners, routeaudit.verifiers and
# routeaudit.reporting; tests substitute fakes.


class BackendRouteScanner(Protocol):
    def scan_legacy_routes(self) -> list[RouteInfo]: ...

    def scan_module_routes(self, container: Any) -> list[RouteInfo]: ...


class FrontendAPIScanner(Protocol):
    def scan_api_calls(self) -> list[APICallInfo]: ...


class DatabaseVerifier(Protocol):
    def verify_connection(self) -> Outcome[DatabaseConnectionInfo]: ...

    def verify_tables(self) -> Outcome[TableCheck]: ...

    def close(self) -> None: ...


class EndpointVerifier(Protocol):
    @property
    def auth_token(self) -> Optional[str]: ...

    def verify_auth_flow(self) -> AuthFlowResult: ...

    def verify_endpoint(self, route: RouteInfo, token: Optional[str] = None) -> VerificationResult: ...


class ModuleStructureVerifier(Protocol):
    def verify_all_modules(self, modules: Optional[Sequence[str]] = None) -> ModuleStructureReport: ...


class ReportGenerator(Protocol):
    def generate_summary_report(self, results: AuditResults) -> str: ...

    def generate_route_report(self, results: AuditResults) -> str: ...

    def generate_issue_report(self, results: AuditResults) -> str: ...
