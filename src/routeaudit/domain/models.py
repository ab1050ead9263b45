from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class IssueStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    WONT_FIX = "WONT_FIX"


ROUTE_MISMATCH = "ROUTE_MISMATCH"
MISSING_ROUTE = "MISSING_ROUTE"
DUPLICATE_PREFIX = "DUPLICATE_PREFIX"


class RouteInfo(BaseModel):
    """One declared backend route, as produced by a scanner."""

    model_config = ConfigDict(frozen=True)

    method: str
    path: str
    handler: str = "unknown"
    middleware: tuple[str, ...] = ()
    module: Optional[str] = None
    is_legacy: bool = False
    requires_auth: bool = False
    file: str = "unknown"
    line: int = 0


class APICallInfo(BaseModel):
    """One frontend call site."""

    model_config = ConfigDict(frozen=True)

    file: str
    line: int
    method: str
    path: str
    component: str = ""
    has_base_url: bool = False
    full_path: str


class MatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    frontend: APICallInfo
    backend: RouteInfo
    confidence: str = "exact"


class MatchStatistics(BaseModel):
    total_frontend: int = 0
    total_backend: int = 0
    matched_count: int = 0
    match_rate: float = 0.0
    improvement_from_previous: float = 0.0


class DuplicatePrefixIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    full_path: str
    severity: Severity
    issue: str
    suggested_fix: str
    file: str
    line: int


class MatchReport(BaseModel):
    matched: list[MatchResult] = Field(default_factory=list)
    unmatched_frontend: list[APICallInfo] = Field(default_factory=list)
    unmatched_backend: list[RouteInfo] = Field(default_factory=list)
    statistics: MatchStatistics = Field(default_factory=MatchStatistics)
    duplicate_prefixes: list[DuplicatePrefixIssue] = Field(default_factory=list)


class DiscoveredRoutes(BaseModel):
    all: list[RouteInfo] = Field(default_factory=list)
    modular: list[RouteInfo] = Field(default_factory=list)
    legacy: list[RouteInfo] = Field(default_factory=list)


class IssueLocation(BaseModel):
    file: str = "unknown"
    line: int = 0


class FixInfo(BaseModel):
    timestamp: str = Field(default_factory=utc_now_iso)
    description: str = ""
    commit: Optional[str] = None
    author: Optional[str] = None


class Issue(BaseModel):
    """An audit finding. Status transitions happen downstream of the audit."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"ISSUE-{uuid.uuid4().hex[:12]}")
    type: str
    severity: Severity
    status: IssueStatus = IssueStatus.OPEN
    title: str
    description: str = ""
    location: IssueLocation = Field(default_factory=IssueLocation)
    suggested_fix: str = ""
    related_routes: list[RouteInfo] = Field(default_factory=list)
    fix: Optional[FixInfo] = None
    created_at: str = Field(default_factory=utc_now_iso)


class VerificationResult(BaseModel):
    route: RouteInfo
    success: bool
    status_code: int = 0
    response_time_ms: float = 0.0
    timestamp: str = Field(default_factory=utc_now_iso)
    errors: list[str] = Field(default_factory=list)


class AuthStep(BaseModel):
    success: bool = False
    error: Optional[str] = None
    token: Optional[str] = None


class AuthFlowResult(BaseModel):
    # "register" would shadow BaseModel.register; the JSON key stays "register"
    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)

    registration: AuthStep = Field(default_factory=AuthStep, alias="register")
    login: AuthStep = Field(default_factory=AuthStep)
    protected_route: AuthStep = Field(default_factory=AuthStep)
    logout: AuthStep = Field(default_factory=AuthStep)
    error: Optional[str] = None
    timestamp: str = Field(default_factory=utc_now_iso)

    @property
    def passed(self) -> bool:
        return self.registration.success and self.login.success


class AuthFlowCheck(BaseModel):
    kind: Literal["auth-flow"] = "auth-flow"
    result: AuthFlowResult

    @property
    def passed(self) -> bool:
        return self.result.passed


class EndpointProbe(BaseModel):
    kind: Literal["endpoint"] = "endpoint"
    route: RouteInfo
    result: VerificationResult

    @property
    def passed(self) -> bool:
        return self.result.success


EndpointCheck = Annotated[Union[AuthFlowCheck, EndpointProbe], Field(discriminator="kind")]


class DatabaseConnectionInfo(BaseModel):
    connected: bool = True
    dialect: str = ""
    database: Optional[str] = None
    server_version: Optional[str] = None


class TableCheck(BaseModel):
    tables: list[str] = Field(default_factory=list)
    expected: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    extra: list[str] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing


class DatabaseReport(BaseModel):
    connection: DatabaseConnectionInfo
    tables: TableCheck


class ModuleStructureIssue(BaseModel):
    type: str
    severity: Severity
    message: str
    module: str = ""
    location: Optional[str] = None
    suggested_fix: Optional[str] = None


class ModuleStructureReport(BaseModel):
    total_modules: int = 0
    passed_modules: int = 0
    failed_modules: int = 0
    issues: list[ModuleStructureIssue] = Field(default_factory=list)


class VerificationOutcome(BaseModel):
    """A failed step leaves its slot None or empty."""

    database: Optional[DatabaseReport] = None
    module_structure: Optional[ModuleStructureReport] = None
    endpoints: list[EndpointCheck] = Field(default_factory=list)


class AuditSummary(BaseModel):
    total_routes: int = 0
    total_frontend_calls: int = 0
    matched_routes: int = 0
    unmatched_routes: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    issues: int = 0


class AuditResults(BaseModel):
    """Terminal artifact of the analysis phase, input to reporting."""

    summary: AuditSummary
    routes: DiscoveredRoutes
    frontend_calls: list[APICallInfo] = Field(default_factory=list)
    matches: MatchReport = Field(default_factory=MatchReport)
    verification_results: list[EndpointCheck] = Field(default_factory=list)
    database: Optional[DatabaseReport] = None
    module_structure: Optional[ModuleStructureReport] = None
    issues: list[Issue] = Field(default_factory=list)
    timestamp: str = Field(default_factory=utc_now_iso)
    # non-fatal failures recorded while the run continued, "phase/step: message"
    degraded_steps: list[str] = Field(default_factory=list)
