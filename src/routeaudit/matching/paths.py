from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

# Frontend call sites and backend declarations spell the same endpoint in
# different ways: `:id`, `${id}` or a literal `42`, with or without `/api`,
# sometimes with a query string attached. Everything here is pure.

_API_URL_TOKEN = ":apiUrl/"
_MULTI_SLASH = re.compile(r"/{2,}")
_TEMPLATE_PARAM = re.compile(r"^\$\{([A-Za-z0-9_]+)\}$")
_NUMERIC_ID = re.compile(r"^[0-9]+$")
_UUID = re.compile(
    r"^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$", re.IGNORECASE
)
_OBJECT_ID = re.compile(r"^[a-f0-9]{24}$", re.IGNORECASE)

API_PREFIX = "/api"
DUPLICATE_API = "/api/api"

EXACT_MATCH = "exact-match"
NORMALIZED_MATCH = "normalized-match"
PARAMETER_MATCH = "parameter-match"
METHOD_MISMATCH = "method-mismatch"
PATH_STRUCTURE_MISMATCH = "path-structure-mismatch"
PARAMETER_COUNT_MISMATCH = "parameter-count-mismatch"
INVALID_PATH_1 = "invalid-path-1"
INVALID_PATH_2 = "invalid-path-2"


@dataclass(frozen=True)
class PathComparison:
    match: bool
    reason: str
    confidence: Optional[str] = None
    details: Optional[str] = None


def normalize_path(path: object) -> str:
    """
    Canonical form used for every comparison:
      "/api/tasks?status=open"  -> "/api/tasks"
      ":apiUrl/tasks/"          -> "/api/tasks"
      "api//tasks#top"          -> "/api/tasks"
    Returns "" for empty or non-string input. Idempotent.
    """
    if not path or not isinstance(path, str):
        return ""

    p = path.strip()

    q = p.find("?")
    if q != -1:
        p = p[:q]
    h = p.find("#")
    if h != -1:
        p = p[:h]
    p = p.strip()

    if p.startswith(_API_URL_TOKEN):
        p = "/api/" + p[len(_API_URL_TOKEN):]

    # "/tasks / /" must end up as "/tasks", not "/tasks "
    trimmed = p.rstrip().rstrip("/")
    while trimmed != p:
        p = trimmed
        trimmed = p.rstrip().rstrip("/")
    if not p.startswith("/"):
        p = "/" + p

    return _MULTI_SLASH.sub("/", p)


def remove_api_prefix(path: object) -> str:
    if not path or not isinstance(path, str):
        return ""
    p = path.strip()
    if p.startswith("/api/"):
        p = p[len(API_PREFIX):]
    elif p == API_PREFIX:
        p = "/"
    if not p.startswith("/"):
        p = "/" + p
    return p


def add_api_prefix(path: object) -> str:
    if not path or not isinstance(path, str):
        return API_PREFIX
    p = path.strip()
    if not p.startswith("/"):
        p = "/" + p
    if not p.startswith("/api/") and p != API_PREFIX:
        p = API_PREFIX + p
    return p


def is_parameter(segment: object) -> bool:
    """True for `:name`, `${name}`, numeric ids, UUIDs and 24-hex ObjectIds."""
    if not segment or not isinstance(segment, str):
        return False
    if segment.startswith(":"):
        return True
    return any(
        rx.match(segment) is not None
        for rx in (_TEMPLATE_PARAM, _NUMERIC_ID, _UUID, _OBJECT_ID)
    )


def _is_named_parameter(segment: str) -> bool:
    return segment.startswith(":") or _TEMPLATE_PARAM.match(segment) is not None


def extract_parameter_names(path: object) -> list[str]:
    # raw id values carry no name, so they contribute nothing
    if not path or not isinstance(path, str):
        return []
    names: list[str] = []
    for seg in path.split("/"):
        if not seg:
            continue
        if seg.startswith(":"):
            names.append(seg[1:])
            continue
        m = _TEMPLATE_PARAM.match(seg)
        if m:
            names.append(m.group(1))
    return names


def get_path_segments(path: object) -> list[str]:
    normalized = normalize_path(path)
    return [s for s in normalized.split("/") if s]


def _segments(normalized: str) -> list[str]:
    return [s for s in normalized.split("/") if s]


def segments_match(path1: str, path2: str) -> bool:
    """Equal segment counts; each position is a parameter on either side or identical."""
    n1 = normalize_path(path1)
    n2 = normalize_path(path2)
    if n1 == n2:
        return True

    s1 = _segments(n1)
    s2 = _segments(n2)
    if len(s1) != len(s2):
        return False

    for a, b in zip(s1, s2):
        if is_parameter(a) or is_parameter(b):
            continue
        if a != b:
            return False
    return True


def _api_variants(n1: str, n2: str) -> list[tuple[str, str]]:
    # add /api to either side, then strip it from either side
    variants: list[tuple[str, str]] = []
    if not n1.startswith("/api/"):
        variants.append((API_PREFIX + n1, n2))
    if not n2.startswith("/api/"):
        variants.append((n1, API_PREFIX + n2))
    if n1.startswith("/api/"):
        variants.append((n1[len(API_PREFIX):], n2))
    if n2.startswith("/api/"):
        variants.append((n1, n2[len(API_PREFIX):]))
    return variants


def paths_match(path1: object, path2: object) -> bool:
    if not path1 or not path2 or not isinstance(path1, str) or not isinstance(path2, str):
        return False

    n1 = normalize_path(path1)
    n2 = normalize_path(path2)
    if segments_match(n1, n2):
        return True
    return any(segments_match(a, b) for a, b in _api_variants(n1, n2))


def _compare_with_reason(n1: str, n2: str) -> PathComparison:
    if n1 == n2:
        return PathComparison(True, EXACT_MATCH, confidence="exact")

    s1 = _segments(n1)
    s2 = _segments(n2)
    if len(s1) != len(s2):
        return PathComparison(
            False,
            PATH_STRUCTURE_MISMATCH,
            details=f"Different segment counts: {len(s1)} vs {len(s2)}",
        )

    params1 = 0
    params2 = 0
    mismatched: list[int] = []
    for i, (a, b) in enumerate(zip(s1, s2)):
        pa = is_parameter(a)
        pb = is_parameter(b)
        params1 += pa
        params2 += pb
        if pa or pb:
            continue
        if a != b:
            mismatched.append(i)

    if mismatched:
        return PathComparison(
            False,
            PATH_STRUCTURE_MISMATCH,
            details="Mismatched segments at positions: " + ", ".join(str(i) for i in mismatched),
        )

    # wildcarding most of a path on one side only is not a real match
    if abs(params1 - params2) > len(s1) / 2:
        return PathComparison(
            False,
            PARAMETER_COUNT_MISMATCH,
            details=f"Parameter counts: {params1} vs {params2}",
        )

    return PathComparison(True, PARAMETER_MATCH, confidence="parameter-match")


def paths_match_with_reason(
    path1: object,
    path2: object,
    method1: Optional[str] = None,
    method2: Optional[str] = None,
) -> PathComparison:
    """
    Like paths_match, but explains the outcome.

    A method mismatch wins over any path difference. Methods are only
    compared when both are given (an empty string counts as given).
    """
    if not path1 or not isinstance(path1, str):
        return PathComparison(False, INVALID_PATH_1)
    if not path2 or not isinstance(path2, str):
        return PathComparison(False, INVALID_PATH_2)

    if method1 is not None and method2 is not None:
        if method1.upper() != method2.upper():
            return PathComparison(
                False, METHOD_MISMATCH, details=f"{method1.upper()} vs {method2.upper()}"
            )

    n1 = normalize_path(path1)
    n2 = normalize_path(path2)

    direct = _compare_with_reason(n1, n2)
    if direct.match:
        return direct

    for a, b in _api_variants(n1, n2):
        variant = _compare_with_reason(a, b)
        if variant.match:
            confidence = "normalized" if variant.reason == EXACT_MATCH else variant.confidence
            return PathComparison(True, NORMALIZED_MATCH, confidence=confidence)

    return direct


def has_duplicate_api_prefix(path: object) -> bool:
    if not path or not isinstance(path, str):
        return False
    return DUPLICATE_API in path


def fix_duplicate_api_prefix(path: object) -> str:
    if not path or not isinstance(path, str):
        return ""
    fixed = path
    while DUPLICATE_API in fixed:
        fixed = fixed.replace(DUPLICATE_API, API_PREFIX, 1)
    return fixed


def path_to_regex(path: object) -> re.Pattern[str]:
    """Anchored regex for a declared path; named parameters match one segment."""
    if not path or not isinstance(path, str):
        return re.compile(r"^$")
    parts = []
    for seg in normalize_path(path).split("/"):
        parts.append("[^/]+" if seg and _is_named_parameter(seg) else re.escape(seg))
    return re.compile("^" + "/".join(parts) + "$")
