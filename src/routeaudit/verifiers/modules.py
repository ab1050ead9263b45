from __future__ import annotations

import ast
import logging
import re
from pathlib import Path
from typing import Optional, Sequence

from routeaudit.config import ModuleSettings
from routeaudit.domain.models import ModuleStructureIssue, ModuleStructureReport, Severity
from routeaudit.repo.scanner import PYTHON_SUFFIXES, scan_source_files, should_ignore_dir

logger = logging.getLogger(__name__)

MISSING_DIRECTORY = "MISSING_DIRECTORY"
MISSING_FILE = "MISSING_FILE"
MISSING_REGISTRATION = "MISSING_REGISTRATION"
NAMING_CONVENTION = "NAMING_CONVENTION"
PARSE_ERROR = "PARSE_ERROR"
VERIFICATION_ERROR = "VERIFICATION_ERROR"

ROUTER_FILE = "router.py"

_SNAKE_CASE = re.compile(r"^[a-z_][a-z0-9_]*$")


def declares_router(source: str) -> bool:
    """True when the module binds a name to an `APIRouter(...)` call."""
    tree = ast.parse(source)
    for node in ast.walk(tree):
        value = None
        if isinstance(node, ast.Assign):
            value = node.value
        elif isinstance(node, ast.AnnAssign):
            value = node.value
        if not isinstance(value, ast.Call):
            continue
        fn = value.func
        name = fn.attr if isinstance(fn, ast.Attribute) else getattr(fn, "id", None)
        if name == "APIRouter":
            return True
    return False


class FileModuleStructureVerifier:
    """Checks every backend module package for the expected layout."""

    def __init__(self, modules_path: Path, cfg: Optional[ModuleSettings] = None) -> None:
        self.modules_path = Path(modules_path)
        self.cfg = cfg or ModuleSettings()

    def discover_modules(self) -> list[str]:
        if not self.modules_path.is_dir():
            raise FileNotFoundError(f"Modules path does not exist: {self.modules_path}")
        names = [
            p.name
            for p in sorted(self.modules_path.iterdir())
            if p.is_dir() and not should_ignore_dir(p) and not p.name.startswith((".", "_"))
        ]
        if self.cfg.include:
            names = [n for n in names if n in self.cfg.include]
        names = [n for n in names if n not in self.cfg.exclude]
        logger.info("Discovered %d modules", len(names))
        return names

    def verify_all_modules(self, modules: Optional[Sequence[str]] = None) -> ModuleStructureReport:
        logger.info("Starting module structure verification")
        names = self.discover_modules()
        if modules:
            wanted = set(modules)
            names = [n for n in names if n in wanted]

        report = ModuleStructureReport(total_modules=len(names))
        for name in names:
            issues = self.verify_module(name)
            if issues:
                report.failed_modules += 1
                report.issues.extend(issues)
            else:
                report.passed_modules += 1

        logger.info(
            "Module structure verification complete: total=%d passed=%d failed=%d",
            report.total_modules,
            report.passed_modules,
            report.failed_modules,
        )
        return report

    def verify_module(self, name: str) -> list[ModuleStructureIssue]:
        module_dir = self.modules_path / name
        issues: list[ModuleStructureIssue] = []
        try:
            for d in self.cfg.required_directories:
                if not (module_dir / d).is_dir():
                    issues.append(
                        ModuleStructureIssue(
                            type=MISSING_DIRECTORY,
                            severity=Severity.HIGH,
                            message=f"Required directory '{d}' is missing",
                            module=name,
                            location=str(module_dir),
                            suggested_fix=f"Create directory: {module_dir / d}",
                        )
                    )

            for f in self.cfg.required_files:
                path = module_dir / f
                if not path.is_file():
                    issues.append(
                        ModuleStructureIssue(
                            type=MISSING_FILE,
                            severity=Severity.CRITICAL,
                            message=f"Required file '{f}' is missing",
                            module=name,
                            location=str(module_dir),
                            suggested_fix=f"Create file: {path}",
                        )
                    )
                elif f == ROUTER_FILE:
                    issues.extend(self._check_router(name, path))

            issues.extend(self._check_naming(name, module_dir))
        except OSError as exc:
            issues.append(
                ModuleStructureIssue(
                    type=VERIFICATION_ERROR,
                    severity=Severity.HIGH,
                    message=f"Error verifying module: {exc}",
                    module=name,
                    location=str(module_dir),
                )
            )
        return issues

    def _check_router(self, name: str, path: Path) -> list[ModuleStructureIssue]:
        try:
            ok = declares_router(path.read_text(encoding="utf-8", errors="ignore"))
        except SyntaxError as exc:
            return [
                ModuleStructureIssue(
                    type=PARSE_ERROR,
                    severity=Severity.HIGH,
                    message=f"{ROUTER_FILE} could not be parsed: {exc.msg}",
                    module=name,
                    location=f"{path}:{exc.lineno or 0}",
                )
            ]
        if ok:
            return []
        return [
            ModuleStructureIssue(
                type=MISSING_REGISTRATION,
                severity=Severity.HIGH,
                message=f"{ROUTER_FILE} does not declare an APIRouter",
                module=name,
                location=str(path),
                suggested_fix=f'Add `router = APIRouter(prefix="/{name}")` to {path.name}',
            )
        ]

    def _check_naming(self, name: str, module_dir: Path) -> list[ModuleStructureIssue]:
        out: list[ModuleStructureIssue] = []
        for f in scan_source_files(module_dir, PYTHON_SUFFIXES):
            if _SNAKE_CASE.match(f.stem):
                continue
            snake = re.sub(r"(?<!^)(?=[A-Z])", "_", f.stem).replace("-", "_").lower()
            out.append(
                ModuleStructureIssue(
                    type=NAMING_CONVENTION,
                    severity=Severity.MEDIUM,
                    message=f"File '{f.name}' should be snake_case",
                    module=name,
                    location=str(f),
                    suggested_fix=f"Rename to {snake}.py",
                )
            )
        return out
