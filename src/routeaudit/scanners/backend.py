from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Sequence

from routeaudit.config import BackendSettings, ModuleSettings
from routeaudit.domain.models import RouteInfo, Severity
from routeaudit.extractors.fastapi.chunker import RouteDecl, extract_routes_from_file, join_paths
from routeaudit.repo.scanner import PYTHON_SUFFIXES, scan_source_files, should_ignore_dir

logger = logging.getLogger(__name__)

_FASTAPI_PARAM = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)(?::[^}]*)?\}")

AUTH_DEPENDENCY_HINTS = ("auth", "current_user", "token", "jwt", "login_required", "verify_user")

PUBLIC_PATHS = (
    "/api/auth/login",
    "/api/auth/register",
    "/api/auth/forgot-password",
    "/api/auth/reset-password",
    "/api/health",
    "/api/status",
)


@dataclass(frozen=True)
class DuplicateRoute:
    method: str
    path: str
    routes: tuple[RouteInfo, RouteInfo]
    severity: Severity = Severity.HIGH

    @property
    def message(self) -> str:
        return f"Duplicate route detected: {self.method} {self.path}"


@dataclass
class MiddlewareAnalysis:
    routes_with_auth: int = 0
    routes_without_auth: int = 0
    middleware_usage: Counter = field(default_factory=Counter)
    missing_auth_routes: list[RouteInfo] = field(default_factory=list)


def to_route_path(path: str) -> str:
    """`/items/{item_id}` and `/files/{p:path}` become `/items/:item_id`, `/files/:p`."""
    return _FASTAPI_PARAM.sub(lambda m: ":" + m.group(1), path)


def has_auth_dependency(dependencies: Sequence[str]) -> bool:
    return any(hint in dep.lower() for dep in dependencies for hint in AUTH_DEPENDENCY_HINTS)


def discover_module_container(
    modules_path: Path, modules: Optional[ModuleSettings] = None
) -> dict[str, Path]:
    """
    Module name -> package directory for every module under modules_path,
    honouring include/exclude lists. Stands in for an application container
    when the backend is not imported.
    """
    if not modules_path.is_dir():
        logger.warning("Modules path does not exist: %s", modules_path)
        return {}

    include = set(modules.include) if modules else set()
    exclude = set(modules.exclude) if modules else set()

    out: dict[str, Path] = {}
    for child in sorted(modules_path.iterdir()):
        if not child.is_dir() or should_ignore_dir(child) or child.name.startswith(("_", ".")):
            continue
        if include and child.name not in include:
            continue
        if child.name in exclude:
            continue
        out[child.name] = child.resolve()
    return out


class FastAPIRouteScanner:
    """
    Reads FastAPI route declarations with ast; nothing is imported.

    Routers are assumed to be mounted at `<api_prefix>/<name>`, where name is
    the file stem (legacy routes) or module name, unless the router declares
    its own prefix.
    """

    def __init__(self, backend: BackendSettings, modules: Optional[ModuleSettings] = None) -> None:
        self.backend = backend
        self.modules = modules or ModuleSettings()

    def scan_legacy_routes(self) -> list[RouteInfo]:
        routes_path = Path(self.backend.routes_path)
        if not routes_path.is_dir():
            logger.warning("Routes path does not exist: %s", routes_path)
            return []

        out: list[RouteInfo] = []
        for f in scan_source_files(routes_path, PYTHON_SUFFIXES):
            name = f.stem if f.stem != "__init__" else f.parent.name
            decls = extract_routes_from_file(f)
            logger.debug("Found %d routes in legacy file %s", len(decls), f)
            out.extend(self._to_route_info(d, name, module=None, is_legacy=True) for d in decls)

        logger.info("Discovered %d legacy routes", len(out))
        return out

    def scan_module_routes(self, container: Mapping[str, Path]) -> list[RouteInfo]:
        out: list[RouteInfo] = []
        for name, package_dir in container.items():
            decls: list[RouteDecl] = []
            for f in scan_source_files(Path(package_dir), PYTHON_SUFFIXES):
                decls.extend(extract_routes_from_file(f))
            logger.debug("Found %d routes in %s module", len(decls), name)
            out.extend(self._to_route_info(d, name, module=name, is_legacy=False) for d in decls)

        logger.info("Discovered %d modular routes", len(out))
        return out

    def _mount(self, decl: RouteDecl, name: str) -> str:
        api = self.backend.api_prefix
        if decl.router_prefix:
            if decl.path == api or decl.path.startswith(api.rstrip("/") + "/"):
                return decl.path
            return join_paths(api, decl.path)
        return join_paths(join_paths(api, name), decl.path)

    def _to_route_info(
        self, decl: RouteDecl, name: str, module: Optional[str], is_legacy: bool
    ) -> RouteInfo:
        return RouteInfo(
            method=decl.method,
            path=to_route_path(self._mount(decl, name)),
            handler=decl.handler_name or "unknown",
            middleware=decl.dependencies,
            module=module,
            is_legacy=is_legacy,
            requires_auth=has_auth_dependency(decl.dependencies),
            file=decl.file_path or "unknown",
            line=decl.decorator_line,
        )


def detect_duplicates(routes: Sequence[RouteInfo]) -> list[DuplicateRoute]:
    seen: dict[tuple[str, str], RouteInfo] = {}
    out: list[DuplicateRoute] = []
    for r in routes:
        key = (r.method.upper(), r.path)
        if key in seen:
            out.append(DuplicateRoute(method=key[0], path=r.path, routes=(seen[key], r)))
        else:
            seen[key] = r
    logger.info("Found %d duplicate routes", len(out))
    return out


def analyze_middleware(routes: Sequence[RouteInfo]) -> MiddlewareAnalysis:
    analysis = MiddlewareAnalysis()
    for r in routes:
        if r.requires_auth:
            analysis.routes_with_auth += 1
        else:
            analysis.routes_without_auth += 1
            if not r.path.startswith(PUBLIC_PATHS):
                analysis.missing_auth_routes.append(r)
        analysis.middleware_usage.update(r.middleware)
    return analysis
