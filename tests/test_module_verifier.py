from pathlib import Path

import pytest

from routeaudit.config import ModuleSettings
from routeaudit.domain.models import Severity
from routeaudit.verifiers.modules import (
    MISSING_DIRECTORY,
    MISSING_FILE,
    MISSING_REGISTRATION,
    NAMING_CONVENTION,
    PARSE_ERROR,
    FileModuleStructureVerifier,
    declares_router,
)

GOOD_ROUTER = """
from fastapi import APIRouter

router: APIRouter = APIRouter(prefix="/clients")
"""


def _module(root: Path, name: str, files: dict) -> Path:
    pkg = root / name
    pkg.mkdir(parents=True)
    for rel, content in files.items():
        p = pkg / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content)
    return pkg


def test_declares_router():
    assert declares_router(GOOD_ROUTER)
    assert declares_router("import fastapi\nr = fastapi.APIRouter()\n")
    assert not declares_router("router = None\n")


def test_verify_all_modules_reports_each_problem(tmp_path: Path):
    _module(tmp_path, "clients", {"__init__.py": "", "router.py": GOOD_ROUTER, "services/client_service.py": ""})
    _module(tmp_path, "tasks", {"__init__.py": "", "router.py": "router = make()\n", "TaskService.py": ""})
    _module(tmp_path, "reports", {"router.py": GOOD_ROUTER})
    _module(tmp_path, "broken", {"__init__.py": "", "router.py": "def (:\n"})
    (tmp_path / "__pycache__").mkdir()

    verifier = FileModuleStructureVerifier(tmp_path, ModuleSettings(required_directories=["services"]))
    report = verifier.verify_all_modules()

    assert report.total_modules == 4
    assert report.passed_modules == 1
    assert report.failed_modules == 3

    by_module = {}
    for issue in report.issues:
        by_module.setdefault(issue.module, []).append(issue)

    assert "clients" not in by_module
    assert {i.type for i in by_module["tasks"]} == {MISSING_DIRECTORY, MISSING_REGISTRATION, NAMING_CONVENTION}
    naming = next(i for i in by_module["tasks"] if i.type == NAMING_CONVENTION)
    assert naming.severity == Severity.MEDIUM
    assert naming.suggested_fix == "Rename to task_service.py"

    missing = next(i for i in by_module["reports"] if i.type == MISSING_FILE)
    assert missing.severity == Severity.CRITICAL
    assert "__init__.py" in missing.message

    assert PARSE_ERROR in {i.type for i in by_module["broken"]}


def test_verify_all_modules_filters_requested_modules(tmp_path: Path):
    _module(tmp_path, "clients", {"__init__.py": "", "router.py": GOOD_ROUTER})
    _module(tmp_path, "tasks", {"router.py": GOOD_ROUTER})

    report = FileModuleStructureVerifier(tmp_path).verify_all_modules(["clients"])
    assert report.total_modules == 1
    assert report.passed_modules == 1
    assert report.issues == []


def test_missing_modules_path_raises(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        FileModuleStructureVerifier(tmp_path / "nope").verify_all_modules()
