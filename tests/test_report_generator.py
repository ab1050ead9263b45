from datetime import datetime

from routeaudit.domain.models import (
    APICallInfo,
    AuditResults,
    AuditSummary,
    DiscoveredRoutes,
    FixInfo,
    Issue,
    IssueLocation,
    IssueStatus,
    MatchReport,
    MatchResult,
    RouteInfo,
    Severity,
    utc_now_iso,
)
from routeaudit.reporting.generator import (
    EXCELLENT,
    GOOD_WITH_WARNINGS,
    NEEDS_ATTENTION,
    MarkdownReportGenerator,
    overall_status,
)

TASKS = RouteInfo(method="GET", path="/api/tasks", handler="list_tasks", module="tasks", middleware=("get_current_user",), requires_auth=True)
LEGACY = RouteInfo(method="GET", path="/api/legacy/ping", handler="ping", is_legacy=True, file="/srv/app/routes/legacy.py")
CALL = APICallInfo(file="/srv/fe/src/tasks.js", line=3, method="get", path="/tasks", component="tasks", has_base_url=True, full_path="/api/tasks")
ORPHAN = APICallInfo(file="/srv/fe/src/x.js", line=9, method="post", path="/nope", component="x", full_path="/nope")


def _results(issues=(), summary=None):
    return AuditResults(
        summary=summary or AuditSummary(total_routes=2, total_frontend_calls=2, matched_routes=1, unmatched_routes=1, issues=len(issues)),
        routes=DiscoveredRoutes(all=[TASKS, LEGACY], modular=[TASKS], legacy=[LEGACY]),
        frontend_calls=[CALL, ORPHAN],
        matches=MatchReport(
            matched=[MatchResult(frontend=CALL, backend=TASKS)],
            unmatched_frontend=[ORPHAN],
            unmatched_backend=[LEGACY],
        ),
        issues=list(issues),
        degraded_steps=["verification/database: connection refused"],
    )


def _issue(severity, title="Frontend call has no backend route"):
    return Issue(
        type="MISSING_ROUTE",
        severity=severity,
        title=title,
        description="POST /nope",
        location=IssueLocation(file="/srv/fe/src/x.js", line=9),
        suggested_fix="Add the route or fix the call",
        related_routes=[TASKS],
    )


def test_overall_status():
    assert overall_status(AuditSummary(total_routes=10, matched_routes=10)) == EXCELLENT
    assert overall_status(AuditSummary(total_routes=10, matched_routes=9, unmatched_routes=1)) == GOOD_WITH_WARNINGS
    assert overall_status(AuditSummary(total_routes=10, matched_routes=5)) == NEEDS_ATTENTION
    assert overall_status(AuditSummary(issues=1)) == NEEDS_ATTENTION


def test_summary_report():
    gen = MarkdownReportGenerator()
    md = gen.generate_summary_report(_results([_issue(Severity.CRITICAL)]))

    assert md.startswith("# Audit Summary Report")
    assert "## Overall Status: NEEDS ATTENTION" in md
    assert "| Matched Routes | 1 (50.0%) |" in md
    assert "| CRITICAL | 1 |" in md
    assert "- verification/database: connection refused" in md
    assert "URGENT: address 1 critical issue(s) immediately" in md


def test_route_report_sections():
    md = MarkdownReportGenerator().generate_route_report(_results())

    assert "### Module: tasks" in md
    assert "| GET | `/api/tasks` | list_tasks | yes | get_current_user |" in md
    assert "| GET | `/api/legacy/ping` | ping | no | legacy.py |" in md
    assert "| tasks | GET | `/tasks` | tasks | list_tasks | exact |" in md
    assert "| x | POST | `/nope` | x.js | 9 |" in md


def test_issue_report_groups_by_severity():
    issues = [_issue(Severity.LOW, "minor"), _issue(Severity.HIGH, "major")]
    md = MarkdownReportGenerator().generate_issue_report(_results(issues))

    assert "**Total Issues:** 2" in md
    assert md.index("## High Issues") < md.index("## Low Issues")
    assert "### Issue 1: major" in md
    assert "**Location:** `/srv/fe/src/x.js` (line 9)" in md
    assert "- `GET /api/tasks` (tasks)" in md


def test_issue_report_without_issues():
    md = MarkdownReportGenerator().generate_issue_report(_results())
    assert "**No issues detected.**" in md


def test_mark_resolved_and_fix_tracking_report():
    gen = MarkdownReportGenerator()
    original = _issue(Severity.HIGH)
    resolved = gen.mark_issue_resolved(original, FixInfo(description="added route", commit="abc123"))

    assert original.status == IssueStatus.OPEN
    assert resolved.status == IssueStatus.RESOLVED
    assert resolved.id == original.id
    assert resolved.fix.commit == "abc123"

    wont_fix = gen.update_issue_status(_issue(Severity.LOW, "cosmetic"), IssueStatus.WONT_FIX)
    md = gen.generate_fix_tracking_report([resolved, wont_fix, _issue(Severity.MEDIUM, "pending")])

    assert "| RESOLVED | 1 | 33.3% |" in md
    assert "- **Commit:** `abc123`" in md
    assert "## Open Issues" in md
    assert "## Won't Fix Issues" in md


def test_mark_resolved_stamps_fix_and_keeps_other_fields():
    gen = MarkdownReportGenerator()
    original = _issue(Severity.HIGH)
    submitted = FixInfo(timestamp="2000-01-01T00:00:00+00:00", description="added route", author="dev")

    before = datetime.fromisoformat(utc_now_iso())
    resolved = gen.mark_issue_resolved(original, submitted)
    after = datetime.fromisoformat(utc_now_iso())

    assert before <= datetime.fromisoformat(resolved.fix.timestamp) <= after
    assert resolved.fix.description == "added route"
    assert resolved.fix.author == "dev"
    assert resolved.model_dump(exclude={"status", "fix"}) == original.model_dump(exclude={"status", "fix"})


def test_update_issue_status_changes_only_status():
    gen = MarkdownReportGenerator()
    original = _issue(Severity.MEDIUM, "pending")
    moved = gen.update_issue_status(original, IssueStatus.IN_PROGRESS)

    assert moved.status == IssueStatus.IN_PROGRESS
    assert moved.model_dump(exclude={"status"}) == original.model_dump(exclude={"status"})
    assert original.status == IssueStatus.OPEN
