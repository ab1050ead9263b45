from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from pathlib import PurePath
from typing import Iterable, List, Sequence

from routeaudit.domain.models import (
    AuditResults,
    AuditSummary,
    FixInfo,
    Issue,
    IssueStatus,
    RouteInfo,
    Severity,
    utc_now_iso,
)

SEVERITY_ORDER = (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW)
STATUS_ORDER = (IssueStatus.OPEN, IssueStatus.IN_PROGRESS, IssueStatus.RESOLVED, IssueStatus.WONT_FIX)

EXCELLENT = "EXCELLENT"
GOOD_WITH_WARNINGS = "GOOD WITH WARNINGS"
NEEDS_ATTENTION = "NEEDS ATTENTION"


def _pct(part: int, whole: int) -> float:
    return (part / whole * 100) if whole > 0 else 0.0


def _when(iso: str) -> str:
    try:
        return datetime.fromisoformat(iso).strftime("%Y-%m-%d %H:%M:%S %Z").strip()
    except ValueError:
        return iso


def _file_name(path: str) -> str:
    return PurePath(path).name or path


def _auth(route: RouteInfo) -> str:
    return "yes" if route.requires_auth else "no"


def overall_status(summary: AuditSummary) -> str:
    tested = summary.passed_tests + summary.failed_tests
    low_match_rate = summary.total_routes > 0 and summary.matched_routes / summary.total_routes < 0.8
    high_failure_rate = tested > 0 and summary.failed_tests / tested > 0.2
    if summary.issues > 0 or low_match_rate or high_failure_rate:
        return NEEDS_ATTENTION
    if summary.unmatched_routes > 0 or summary.failed_tests > 0:
        return GOOD_WITH_WARNINGS
    return EXCELLENT


def count_by_severity(issues: Iterable[Issue]) -> dict[Severity, int]:
    counts = {s: 0 for s in SEVERITY_ORDER}
    for i in issues:
        counts[i.severity] += 1
    return counts


def recommendations(summary: AuditSummary, issues: Sequence[Issue]) -> List[str]:
    out: List[str] = []
    critical = sum(1 for i in issues if i.severity == Severity.CRITICAL)
    if critical:
        out.append(f"URGENT: address {critical} critical issue(s) immediately")
    if summary.unmatched_routes > 5:
        out.append(
            f"Review {summary.unmatched_routes} unmatched routes; they may be unused "
            "or missing frontend integration"
        )
    if summary.failed_tests:
        out.append(f"Fix {summary.failed_tests} failing endpoint check(s)")
    if _pct(summary.matched_routes, summary.total_routes) < 80:
        out.append("Improve frontend/backend route alignment (match rate below 80%)")
    if not out:
        out.append("No action needed; keep running audits after route changes")
    return out


class MarkdownReportGenerator:
    """Renders audit results as markdown documents."""

    def generate_summary_report(self, results: AuditResults) -> str:
        s = results.summary
        status = overall_status(s)
        tested = s.passed_tests + s.failed_tests

        lines = [
            "# Audit Summary Report",
            "",
            f"**Generated:** {_when(results.timestamp)}",
            "",
            f"## Overall Status: {status}",
            "",
            "## Route Discovery",
            "",
            "| Metric | Count |",
            "|--------|-------|",
            f"| Total Routes | {s.total_routes} |",
            f"| Frontend API Calls | {s.total_frontend_calls} |",
            f"| Matched Routes | {s.matched_routes} ({_pct(s.matched_routes, s.total_routes):.1f}%) |",
            f"| Unmatched Routes | {s.unmatched_routes} |",
            "",
            "## Verification Results",
            "",
            "| Metric | Count |",
            "|--------|-------|",
            f"| Checks Passed | {s.passed_tests} ({_pct(s.passed_tests, tested):.1f}%) |",
            f"| Checks Failed | {s.failed_tests} |",
            "",
        ]

        if results.database is not None:
            db = results.database
            lines += [
                "## Database",
                "",
                f"- **Dialect:** {db.connection.dialect}",
                f"- **Tables:** {len(db.tables.tables)}",
            ]
            if db.tables.missing:
                lines.append(f"- **Missing tables:** {', '.join(db.tables.missing)}")
            lines.append("")

        if results.module_structure is not None:
            ms = results.module_structure
            lines += [
                "## Module Structure",
                "",
                f"{ms.passed_modules}/{ms.total_modules} modules pass structure checks.",
                "",
            ]

        lines += ["## Issues Detected", ""]
        if not results.issues:
            lines += ["**No issues detected.**", ""]
        else:
            counts = count_by_severity(results.issues)
            lines += ["| Severity | Count |", "|----------|-------|"]
            lines += [f"| {sev.value} | {counts[sev]} |" for sev in SEVERITY_ORDER]
            lines += [f"| **Total** | **{len(results.issues)}** |", ""]

        if results.degraded_steps:
            lines += ["## Degraded Steps", ""]
            lines += [f"- {step}" for step in results.degraded_steps]
            lines.append("")

        lines += ["## Recommendations", ""]
        lines += [f"- {r}" for r in recommendations(s, results.issues)]
        lines.append("")
        return "\n".join(lines)

    def generate_route_report(self, results: AuditResults) -> str:
        routes, matches = results.routes, results.matches
        lines = [
            "# Route Inventory",
            "",
            f"**Generated:** {_when(results.timestamp)}",
            "",
            f"**Total Routes:** {len(routes.all)}",
            f"**Modular Routes:** {len(routes.modular)}",
            f"**Legacy Routes:** {len(routes.legacy)}",
            "",
            "## Modular Routes",
            "",
        ]

        if not routes.modular:
            lines += ["*No modular routes found.*", ""]
        else:
            by_module: dict[str, list[RouteInfo]] = defaultdict(list)
            for r in routes.modular:
                by_module[r.module or "unknown"].append(r)
            for name in sorted(by_module):
                module_routes = sorted(by_module[name], key=lambda r: (r.path, r.method))
                lines += [
                    f"### Module: {name}",
                    "",
                    "| Method | Path | Handler | Auth | Dependencies |",
                    "|--------|------|---------|------|--------------|",
                ]
                for r in module_routes:
                    deps = ", ".join(r.middleware) or "none"
                    lines.append(f"| {r.method} | `{r.path}` | {r.handler} | {_auth(r)} | {deps} |")
                lines.append("")

        lines += ["## Legacy Routes", ""]
        if not routes.legacy:
            lines += ["*No legacy routes found.*", ""]
        else:
            lines += ["| Method | Path | Handler | Auth | File |", "|--------|------|---------|------|------|"]
            for r in routes.legacy:
                lines.append(f"| {r.method} | `{r.path}` | {r.handler} | {_auth(r)} | {_file_name(r.file)} |")
            lines.append("")

        lines += ["## Frontend-Backend Matches", ""]
        if not matches.matched:
            lines += ["*No matches found.*", ""]
        else:
            lines += [
                "| Component | Method | Path | Backend Module | Handler | Confidence |",
                "|-----------|--------|------|----------------|---------|------------|",
            ]
            for m in matches.matched:
                lines.append(
                    f"| {m.frontend.component} | {m.frontend.method.upper()} | `{m.frontend.path}` "
                    f"| {m.backend.module or 'legacy'} | {m.backend.handler} | {m.confidence} |"
                )
            lines.append("")

        lines += ["## Unmatched Backend Routes", ""]
        if not matches.unmatched_backend:
            lines += ["*All backend routes have corresponding frontend calls.*", ""]
        else:
            lines += ["| Method | Path | Module | Handler |", "|--------|------|--------|---------|"]
            for r in matches.unmatched_backend:
                lines.append(f"| {r.method} | `{r.path}` | {r.module or 'legacy'} | {r.handler} |")
            lines.append("")

        lines += ["## Unmatched Frontend Calls", ""]
        if not matches.unmatched_frontend:
            lines += ["*All frontend API calls have corresponding backend routes.*", ""]
        else:
            lines += ["| Component | Method | Path | File | Line |", "|-----------|--------|------|------|------|"]
            for c in matches.unmatched_frontend:
                lines.append(
                    f"| {c.component} | {c.method.upper()} | `{c.path}` | {_file_name(c.file)} | {c.line} |"
                )
            lines.append("")

        return "\n".join(lines)

    def generate_issue_report(self, results: AuditResults) -> str:
        issues = results.issues
        lines = [
            "# Issue Report",
            "",
            f"**Generated:** {_when(results.timestamp)}",
            "",
            f"**Total Issues:** {len(issues)}",
            "",
        ]
        if not issues:
            lines += ["**No issues detected.**", ""]
            return "\n".join(lines)

        for sev in SEVERITY_ORDER:
            group = [i for i in issues if i.severity == sev]
            if not group:
                continue
            lines += [f"## {sev.value.title()} Issues", "", f"**Count:** {len(group)}", ""]
            for n, issue in enumerate(group, start=1):
                lines += self._format_issue(issue, n)
        return "\n".join(lines)

    def _format_issue(self, issue: Issue, index: int) -> List[str]:
        lines = [
            f"### Issue {index}: {issue.title}",
            "",
            f"**ID:** `{issue.id}`",
            f"**Type:** {issue.type}",
            f"**Severity:** {issue.severity.value}",
            "",
        ]
        if issue.description:
            lines += [issue.description, ""]
        loc = f"`{issue.location.file}`"
        if issue.location.line > 0:
            loc += f" (line {issue.location.line})"
        lines += [f"**Location:** {loc}", ""]
        if issue.related_routes:
            lines += ["**Related Routes:**", ""]
            lines += [f"- `{r.method} {r.path}` ({r.module or 'legacy'})" for r in issue.related_routes]
            lines.append("")
        if issue.suggested_fix:
            lines += ["**Suggested Fix:**", "", issue.suggested_fix, ""]
        return lines

    def generate_fix_tracking_report(self, issues: Sequence[Issue]) -> str:
        lines = [
            "# Fix Tracking Report",
            "",
            f"**Generated:** {_when(utc_now_iso())}",
            "",
            "| Status | Count | Percentage |",
            "|--------|-------|------------|",
        ]
        by_status = {st: [i for i in issues if i.status == st] for st in STATUS_ORDER}
        for st in STATUS_ORDER:
            lines.append(f"| {st.value} | {len(by_status[st])} | {_pct(len(by_status[st]), len(issues)):.1f}% |")
        lines.append("")

        resolved = by_status[IssueStatus.RESOLVED]
        if resolved:
            lines += ["## Resolved Issues", ""]
            for issue in resolved:
                lines += [f"### {issue.title}", "", f"**ID:** `{issue.id}`", ""]
                if issue.fix is not None:
                    lines.append(f"- **Date:** {_when(issue.fix.timestamp)}")
                    lines.append(f"- **Description:** {issue.fix.description}")
                    if issue.fix.commit:
                        lines.append(f"- **Commit:** `{issue.fix.commit}`")
                    if issue.fix.author:
                        lines.append(f"- **Author:** {issue.fix.author}")
                    lines.append("")

        for st, heading in (
            (IssueStatus.IN_PROGRESS, "In Progress Issues"),
            (IssueStatus.OPEN, "Open Issues"),
            (IssueStatus.WONT_FIX, "Won't Fix Issues"),
        ):
            group = sorted(by_status[st], key=lambda i: SEVERITY_ORDER.index(i.severity))
            if not group:
                continue
            lines += [f"## {heading}", ""]
            for issue in group:
                loc = f"`{issue.location.file}`"
                if issue.location.line > 0:
                    loc += f" (line {issue.location.line})"
                lines += [
                    f"### {issue.title}",
                    "",
                    f"**ID:** `{issue.id}`  **Severity:** {issue.severity.value}  **Type:** {issue.type}",
                    f"**Created:** {_when(issue.created_at)}",
                    f"**Location:** {loc}",
                    "",
                ]
        return "\n".join(lines)

    def mark_issue_resolved(self, issue: Issue, fix_info: FixInfo) -> Issue:
        fix = fix_info.model_copy(update={"timestamp": utc_now_iso()})
        return issue.model_copy(update={"status": IssueStatus.RESOLVED, "fix": fix})

    def update_issue_status(self, issue: Issue, status: IssueStatus) -> Issue:
        return issue.model_copy(update={"status": IssueStatus(status)})
