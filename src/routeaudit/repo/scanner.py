from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

DEFAULT_IGNORES = {
    ".git",
    ".venv",
    "venv",
    "__pycache__",
    "node_modules",
    "dist",
    "build",
    "coverage",
    ".next",
    ".mypy_cache",
    ".ruff_cache",
    ".pytest_cache",
}

PYTHON_SUFFIXES = (".py",)
SCRIPT_SUFFIXES = (".js", ".jsx", ".ts", ".tsx")


def should_ignore_dir(dir_path: Path) -> bool:
    return dir_path.name in DEFAULT_IGNORES


def scan_source_files(
    root: Path,
    suffixes: Iterable[str] = PYTHON_SUFFIXES,
    max_files: int | None = None,
) -> list[Path]:
    """
    Absolute paths of files under root with one of the given suffixes.
    Ignored directories are pruned; output is sorted so scans are deterministic.
    A missing root yields an empty list.
    """
    if not root.is_dir():
        return []

    wanted = tuple(suffixes)
    out: list[Path] = []
    for dirpath, dirs, files in os.walk(root):
        root_p = Path(dirpath)
        dirs[:] = sorted(d for d in dirs if not should_ignore_dir(root_p / d))

        for f in sorted(files):
            if f.endswith(wanted):
                out.append((root_p / f).resolve())
                if max_files is not None and len(out) >= max_files:
                    return out
    return out
