from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

_HTTP_VERBS = ("get", "post", "put", "patch", "delete")

_MEMBER_CALL = re.compile(
    r"(?<![\w$.])(?P<client>[A-Za-z_$][\w$]*)\s*\.\s*(?P<verb>get|post|put|patch|delete)"
    r"\s*(?:<[^<>()]*>)?\s*\(",
)
_FETCH_CALL = re.compile(r"(?<![\w$.])fetch\s*\(")
_IDENT = re.compile(r"^\s*([A-Za-z_$][\w$]*)\s*$")
_FETCH_METHOD = re.compile(r"""\bmethod\s*:\s*(['"`])(?P<m>[A-Za-z]+)\1""")

# template variables that hold the API base URL rather than a path parameter
BASE_URL_VARIABLES = {"apiUrl", "API_URL", "baseURL"}

PARAM_PLACEHOLDER = ":param"


@dataclass(frozen=True)
class CallSite:
    client: str  # "fetch" for fetch() calls
    method: str  # lower-case verb as written
    path: str
    line: int


def extract_calls_from_source(source: str, clients: Iterable[str] = ("api", "axios")) -> list[CallSite]:
    """
    Find HTTP call sites in JS/TS source:
      api.get('/clients')            client.<verb>(<path>, ...)
      axios.post(`/tasks/${id}`)     template placeholders become :name
      fetch('/api/x', {method: 'PUT'})
    Only the first argument is read. Calls whose path is entirely dynamic are skipped.
    """
    wanted = set(clients)
    out: list[CallSite] = []

    for m in _MEMBER_CALL.finditer(source):
        if m.group("client") not in wanted:
            continue
        path, _ = parse_path_argument(source, m.end())
        if path is None:
            continue
        out.append(CallSite(m.group("client"), m.group("verb"), path, _line_of(source, m.start())))

    for m in _FETCH_CALL.finditer(source):
        path, end = parse_path_argument(source, m.end())
        if path is None:
            continue
        out.append(CallSite("fetch", _fetch_method(source, end), path, _line_of(source, m.start())))

    out.sort(key=lambda c: c.line)
    return out


def _line_of(source: str, offset: int) -> int:
    return source.count("\n", 0, offset) + 1


def parse_path_argument(source: str, pos: int) -> tuple[Optional[str], int]:
    """
    Read a `+`-joined chain of string, template and opaque operands starting
    at pos. Opaque operands contribute `:param` next to a literal part.
    Returns (path or None, offset just past the argument).
    """
    parts: list[Optional[str]] = []
    n = len(source)
    while True:
        pos = _skip_ws(source, pos)
        if pos >= n:
            break
        ch = source[pos]
        if ch in "'\"":
            value, pos = _read_quoted(source, pos)
            parts.append(value)
        elif ch == "`":
            value, pos = _read_template(source, pos)
            parts.append(value)
        elif ch in ",)":
            break
        else:
            pos = _skip_operand(source, pos)
            parts.append(None)

        pos = _skip_ws(source, pos)
        if pos < n and source[pos] == "+":
            pos += 1
            continue
        break

    if not parts:
        return None, pos
    path = parts[0]
    for part in parts[1:]:
        path = _concat(path, part)
    return path, pos


def _concat(left: Optional[str], right: Optional[str]) -> Optional[str]:
    if left is not None and right is not None:
        return left + right
    if left is not None:
        return left + PARAM_PLACEHOLDER
    if right is not None:
        return PARAM_PLACEHOLDER + right
    return None


def _skip_ws(source: str, pos: int) -> int:
    n = len(source)
    while pos < n and source[pos].isspace():
        pos += 1
    return pos


def _read_quoted(source: str, pos: int) -> tuple[str, int]:
    quote = source[pos]
    pos += 1
    buf: list[str] = []
    n = len(source)
    while pos < n and source[pos] != quote:
        if source[pos] == "\\" and pos + 1 < n:
            buf.append(source[pos + 1])
            pos += 2
            continue
        buf.append(source[pos])
        pos += 1
    return "".join(buf), pos + 1


def _read_template(source: str, pos: int) -> tuple[str, int]:
    pos += 1
    buf: list[str] = []
    n = len(source)
    while pos < n and source[pos] != "`":
        if source[pos] == "\\" and pos + 1 < n:
            buf.append(source[pos + 1])
            pos += 2
            continue
        if source.startswith("${", pos):
            expr, pos = _read_balanced(source, pos + 2, "{", "}")
            buf.append(_placeholder(expr))
            continue
        buf.append(source[pos])
        pos += 1
    return "".join(buf), pos + 1


def _placeholder(expr: str) -> str:
    m = _IDENT.match(expr)
    if m is None:
        return PARAM_PLACEHOLDER
    name = m.group(1)
    if name in BASE_URL_VARIABLES:
        return "/api"
    return ":" + name


def _read_balanced(source: str, pos: int, open_ch: str, close_ch: str) -> tuple[str, int]:
    # pos is just past the opening bracket; returns (inner text, offset past the closing one)
    depth = 1
    start = pos
    n = len(source)
    while pos < n:
        ch = source[pos]
        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return source[start:pos], pos + 1
        pos += 1
    return source[start:], n


_OPENERS = {"(": ")", "[": "]", "{": "}"}


def _skip_operand(source: str, pos: int) -> int:
    n = len(source)
    while pos < n:
        ch = source[pos]
        if ch in _OPENERS:
            _, pos = _read_balanced(source, pos + 1, ch, _OPENERS[ch])
            continue
        if ch in "'\"":
            _, pos = _read_quoted(source, pos)
            continue
        if ch == "`":
            _, pos = _read_template(source, pos)
            continue
        if ch in "+,)":
            return pos
        pos += 1
    return pos


def _fetch_method(source: str, pos: int) -> str:
    pos = _skip_ws(source, pos)
    if pos >= len(source) or source[pos] != ",":
        return "get"
    pos = _skip_ws(source, pos + 1)
    if pos >= len(source) or source[pos] != "{":
        return "get"
    options, _ = _read_balanced(source, pos + 1, "{", "}")
    m = _FETCH_METHOD.search(options)
    if m is None or m.group("m").lower() not in _HTTP_VERBS:
        return "get"
    return m.group("m").lower()
