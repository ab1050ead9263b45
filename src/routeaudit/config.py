from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from routeaudit.errors import ConfigValidationError

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _check_http_url(value: str) -> str:
    v = value.strip().rstrip("/")
    if not v.startswith(("http://", "https://")):
        raise ValueError(f"must be an http(s) URL, got {value!r}")
    return v


class BackendSettings(BaseModel):
    # legacy routers live directly under routes_path; modules_path holds one package per module
    routes_path: Path = Path("backend/app/routes")
    modules_path: Path = Path("backend/app/modules")
    base_url: str = "http://localhost:8000"
    api_prefix: str = "/api"

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return _check_http_url(v)


class FrontendSettings(BaseModel):
    src_path: Path = Path("frontend/src")
    base_url: str = "http://localhost:8000/api"
    # identifiers whose .get/.post/... calls go through the configured base URL
    api_client_names: tuple[str, ...] = ("api",)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return _check_http_url(v)


class DatabaseSettings(BaseModel):
    url: str = "sqlite:///./app.db"
    expected_tables: list[str] = Field(default_factory=list)
    connect_timeout: int = Field(default=5, gt=0)


class AuthTestUser(BaseModel):
    email: str = "audit-test@example.com"
    password: str = "AuditTest123!"
    name: str = "Audit Test User"


class VerificationSettings(BaseModel):
    timeout: float = Field(default=5.0, gt=0, description="Per-request timeout in seconds")
    retries: int = Field(default=3, ge=0)
    request_delay: float = Field(default=0.1, ge=0, description="Pause between probes in seconds")
    sample_size: int = Field(default=5, ge=0)
    skip_routes: list[str] = Field(default_factory=lambda: ["/api/health", "/api/status"])
    register_path: str = "/api/auth/register"
    login_path: str = "/api/auth/login"
    protected_path: str = "/api/auth/me"
    logout_path: str = "/api/auth/logout"
    test_user: AuthTestUser = Field(default_factory=AuthTestUser)


class ReportingSettings(BaseModel):
    output_path: Path = Path("audit-reports")
    summary_file_name: str = "audit-summary.md"
    route_report_file_name: str = "route-inventory.md"
    issue_report_file_name: str = "issues.md"
    detailed_report_file_name: str = "detailed-results.json"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    log_file: Optional[Path] = None

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _LOG_LEVELS:
            raise ValueError(f"Invalid log level '{v}'. Must be one of: {sorted(_LOG_LEVELS)}")
        return upper


class ModuleSettings(BaseModel):
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    required_directories: list[str] = Field(default_factory=list)
    required_files: list[str] = Field(default_factory=lambda: ["__init__.py", "router.py"])


class AuditSettings(BaseSettings):
    """
    Settings for one audit run.

    Sources, lowest to highest priority: defaults, `.env`, `AUDIT_*`
    environment variables (nested with `__`, e.g. AUDIT_VERIFICATION__TIMEOUT),
    then values passed explicitly (which is how a JSON config file is applied).
    """

    model_config = SettingsConfigDict(
        env_prefix="AUDIT_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend: BackendSettings = Field(default_factory=BackendSettings)
    frontend: FrontendSettings = Field(default_factory=FrontendSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    verification: VerificationSettings = Field(default_factory=VerificationSettings)
    reporting: ReportingSettings = Field(default_factory=ReportingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    modules: ModuleSettings = Field(default_factory=ModuleSettings)


@dataclass(frozen=True)
class ConfigIssue:
    field: str
    message: str


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigValidationError(
            f"Could not read config file {path}",
            [ConfigIssue("config", str(exc))],
        ) from exc
    if not isinstance(data, dict):
        raise ConfigValidationError(
            f"Config file {path} must contain a JSON object",
            [ConfigIssue("config", f"top-level value is {type(data).__name__}")],
        )
    return data


def _missing_path_warnings(settings: AuditSettings) -> list[ConfigIssue]:
    out: list[ConfigIssue] = []
    checks = [
        ("backend.routes_path", settings.backend.routes_path),
        ("backend.modules_path", settings.backend.modules_path),
        ("frontend.src_path", settings.frontend.src_path),
    ]
    for name, p in checks:
        if not p.exists():
            out.append(ConfigIssue(name, f"Directory does not exist: {p}"))
    return out


def load_settings(config_path: Optional[Path] = None) -> tuple[AuditSettings, list[ConfigIssue]]:
    """
    Build settings from env/defaults with an optional JSON file layered on top.

    Invalid values raise ConfigValidationError listing every offending field.
    Missing source directories are returned as warnings; scanners treat them
    as empty.
    """
    overrides: dict[str, Any] = {}
    if config_path is not None:
        overrides = _read_config_file(config_path)
        logger.debug("Loaded config overrides from %s", config_path)

    try:
        settings = AuditSettings(**overrides)
    except ValidationError as exc:
        issues = [
            ConfigIssue(".".join(str(p) for p in err["loc"]), err["msg"]) for err in exc.errors()
        ]
        raise ConfigValidationError("Configuration validation failed", issues) from exc

    warnings = _missing_path_warnings(settings)
    for w in warnings:
        logger.warning("Config warning: %s: %s", w.field, w.message)
    return settings, warnings
