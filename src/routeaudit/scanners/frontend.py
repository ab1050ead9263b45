from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from routeaudit.config import FrontendSettings
from routeaudit.domain.models import APICallInfo
from routeaudit.extractors.javascript.calls import extract_calls_from_source
from routeaudit.repo.scanner import SCRIPT_SUFFIXES, scan_source_files

logger = logging.getLogger(__name__)

_ORIGIN = re.compile(r"^[a-z][a-z0-9+.-]*://[^/]+", re.IGNORECASE)


def compute_full_path(path: str, has_base_url: bool) -> str:
    """Paths sent through the configured client are relative to `/api`."""
    if not has_base_url:
        return path
    if path.startswith("/api"):
        return path
    if path.startswith("/"):
        return "/api" + path
    return "/api/" + path


def strip_origin(path: str) -> str:
    # fetch("http://localhost:8000/api/x") -> "/api/x"
    return _ORIGIN.sub("", path) or "/"


class JavaScriptAPIScanner:
    def __init__(self, frontend: FrontendSettings, max_bytes: int = 1_000_000) -> None:
        self.frontend = frontend
        self.max_bytes = max_bytes

    @property
    def clients(self) -> tuple[str, ...]:
        return tuple(self.frontend.api_client_names) + ("axios",)

    def scan_api_calls(self, src_path: Optional[Path] = None) -> list[APICallInfo]:
        root = Path(src_path or self.frontend.src_path)
        if not root.is_dir():
            logger.warning("Frontend source directory does not exist: %s", root)
            return []

        logger.info("Scanning API calls from %s", root)
        out: list[APICallInfo] = []
        for f in scan_source_files(root, SCRIPT_SUFFIXES):
            out.extend(self.scan_file(f))

        logger.info("Discovered %d API calls from frontend", len(out))
        return out

    def scan_file(self, path: Path) -> list[APICallInfo]:
        try:
            source = path.read_bytes()[: self.max_bytes].decode("utf-8", errors="ignore")
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
            return []

        configured = set(self.frontend.api_client_names)
        calls: list[APICallInfo] = []
        for site in extract_calls_from_source(source, self.clients):
            has_base_url = site.client in configured
            call_path = site.path if has_base_url else strip_origin(site.path)
            calls.append(
                APICallInfo(
                    file=str(path),
                    line=site.line,
                    method=site.method,
                    path=call_path,
                    component=path.stem,
                    has_base_url=has_base_url,
                    full_path=compute_full_path(call_path, has_base_url),
                )
            )
        return calls
