from pathlib import Path
from typing import Optional

import pytest

from routeaudit.config import AuditSettings
from routeaudit.domain.models import (
    APICallInfo,
    AuthFlowResult,
    AuthStep,
    DatabaseConnectionInfo,
    ModuleStructureReport,
    RouteInfo,
    TableCheck,
    VerificationResult,
)
from routeaudit.domain.results import Ok
from routeaudit.orchestrator.pipeline import AuditOrchestrator
from routeaudit.reporting.generator import MarkdownReportGenerator

HEALTH = RouteInfo(method="GET", path="/api/health", handler="health", is_legacy=True)
TASKS = RouteInfo(method="GET", path="/api/tasks", handler="list_tasks", module="tasks")
TASK = RouteInfo(method="GET", path="/api/tasks/:task_id", handler="get_task", module="tasks", requires_auth=True)
CLIENTS = RouteInfo(method="GET", path="/api/clients", handler="list_clients", module="clients")


def frontend_call(method: str, full_path: str, line: int = 1) -> APICallInfo:
    return APICallInfo(
        file="src/services/api.js",
        line=line,
        method=method,
        path=full_path,
        component="api",
        full_path=full_path,
    )


CALLS = [
    frontend_call("get", "/api/health", 1),
    frontend_call("get", "/api/tasks", 2),
    frontend_call("get", "/api/tasks/:id", 3),
    frontend_call("get", "/api/clients", 4),
    frontend_call("post", "/api/nothing", 5),
]


class FakeBackendScanner:
    def __init__(self, legacy=(HEALTH,), modular=(TASKS, TASK, CLIENTS), modular_error=None):
        self.legacy = list(legacy)
        self.modular = list(modular)
        self.modular_error = modular_error
        self.legacy_calls = 0
        self.containers = []

    def scan_legacy_routes(self):
        self.legacy_calls += 1
        return list(self.legacy)

    def scan_module_routes(self, container):
        self.containers.append(container)
        if self.modular_error is not None:
            raise self.modular_error
        return list(self.modular)


class FakeFrontendScanner:
    def __init__(self, calls=CALLS, error: Optional[Exception] = None):
        self.calls = list(calls)
        self.error = error
        self.scans = 0

    def scan_api_calls(self):
        self.scans += 1
        if self.error is not None:
            raise self.error
        return list(self.calls)


class FakeDatabaseVerifier:
    def __init__(self, connection=None, tables=None):
        self.connection = connection or Ok(DatabaseConnectionInfo(dialect="sqlite", database="app.db"))
        self.tables = tables or Ok(TableCheck(tables=["users"], expected=["users"]))
        self.closed = 0
        self.checks = 0

    def verify_connection(self):
        self.checks += 1
        return self.connection

    def verify_tables(self):
        return self.tables

    def close(self):
        self.closed += 1


class FakeEndpointVerifier:
    def __init__(self, failing=(), raising=(), auth_error: Optional[Exception] = None):
        self.failing = set(failing)
        self.raising = set(raising)
        self.auth_error = auth_error
        self.probed = []
        self._token = None

    @property
    def auth_token(self):
        return self._token

    def verify_auth_flow(self):
        if self.auth_error is not None:
            raise self.auth_error
        self._token = "token-1"
        return AuthFlowResult(registration=AuthStep(success=True), login=AuthStep(success=True, token="token-1"))

    def verify_endpoint(self, route, token=None):
        self.probed.append((route.path, token))
        if route.path in self.raising:
            raise RuntimeError(f"socket closed for {route.path}")
        ok = route.path not in self.failing
        return VerificationResult(route=route, success=ok, status_code=200 if ok else 500)


class FakeModuleVerifier:
    def __init__(self, report=None):
        self.report = report or ModuleStructureReport(total_modules=2, passed_modules=2)
        self.requested = []

    def verify_all_modules(self, modules=None):
        self.requested.append(modules)
        return self.report


@pytest.fixture
def settings(tmp_path: Path) -> AuditSettings:
    return AuditSettings(reporting={"output_path": tmp_path / "reports"})


@pytest.fixture
def make_orchestrator(settings):
    """Build an orchestrator over fakes; pass replacements by collaborator name."""

    def build(**overrides):
        parts = dict(
            backend_scanner=FakeBackendScanner(),
            frontend_scanner=FakeFrontendScanner(),
            database_verifier=FakeDatabaseVerifier(),
            endpoint_verifier=FakeEndpointVerifier(),
            module_verifier=FakeModuleVerifier(),
            report_generator=MarkdownReportGenerator(),
        )
        cfg = overrides.pop("settings", settings)
        parts.update(overrides)
        return AuditOrchestrator(cfg, **parts)

    return build
