from __future__ import annotations

import ast
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Optional

_HTTP_METHOD_ATTRS = {
    "get": "GET",
    "post": "POST",
    "put": "PUT",
    "patch": "PATCH",
    "delete": "DELETE",
    "options": "OPTIONS",
    "head": "HEAD",
}


@dataclass(frozen=True)
class RouteDecl:
    method: str
    path: str
    handler_name: str
    decorator_line: int
    # names passed to Depends(...), router-level first, in declaration order
    dependencies: tuple[str, ...] = ()
    router_name: str = ""
    router_prefix: str = ""
    file_path: str = ""


@dataclass(frozen=True)
class RouterDecl:
    name: str
    prefix: str = ""
    dependencies: tuple[str, ...] = ()


def extract_routes_from_source(source: str) -> list[RouteDecl]:
    """
    Parse Python source and extract FastAPI routes declared via decorators like:
      @app.get("/path")
      @router.post("/path", dependencies=[Depends(auth)])
    or programmatically via add_api_route(). A module-level
    `router = APIRouter(prefix=...)` is folded into the paths of its routes.
    Uses ast only; does not import/execute code.
    """
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return []

    routers = extract_routers_from_tree(tree)
    routes: list[RouteDecl] = []

    for node in _iter_function_defs(tree):
        param_deps = _signature_dependencies(node)
        for dec in node.decorator_list:
            maybe = _parse_fastapi_route_decorator(dec)
            if maybe is None:
                continue

            method, path, decorator_line, owner, dec_deps = maybe
            routes.append(
                _with_router(
                    RouteDecl(
                        method=method,
                        path=path,
                        handler_name=node.name,
                        decorator_line=decorator_line,
                        dependencies=dec_deps + param_deps,
                        router_name=owner,
                    ),
                    routers,
                )
            )

    for node in ast.walk(tree):
        for (method, path, handler_name, line, owner, deps) in _parse_add_api_route_call(node):
            routes.append(
                _with_router(
                    RouteDecl(
                        method=method,
                        path=path,
                        handler_name=handler_name,
                        decorator_line=line,
                        dependencies=deps,
                        router_name=owner,
                    ),
                    routers,
                )
            )

    routes.sort(key=lambda r: (r.decorator_line, r.handler_name))
    return routes


def extract_routes_from_file(path: Path, max_bytes: int = 500_000) -> list[RouteDecl]:
    try:
        data = path.read_bytes()[:max_bytes]
        source = data.decode("utf-8", errors="ignore")
    except OSError:
        return []
    abs_path = str(path.resolve())
    return [replace(r, file_path=abs_path) for r in extract_routes_from_source(source)]


def extract_routers_from_tree(tree: ast.AST) -> dict[str, RouterDecl]:
    """`name = APIRouter(prefix="/x", dependencies=[Depends(y)])` assignments, by name."""
    out: dict[str, RouterDecl] = {}
    for node in ast.walk(tree):
        if not isinstance(node, ast.Assign) or not isinstance(node.value, ast.Call):
            continue
        call = node.value
        if _name_of_expr(call.func).split(".")[-1] != "APIRouter":
            continue

        prefix = ""
        deps: tuple[str, ...] = ()
        for kw in call.keywords or []:
            if kw.arg == "prefix":
                prefix = _const_str(kw.value) or ""
            elif kw.arg == "dependencies":
                deps = _dependency_list(kw.value)

        for target in node.targets:
            if isinstance(target, ast.Name):
                out[target.id] = RouterDecl(name=target.id, prefix=prefix, dependencies=deps)
    return out


def _with_router(route: RouteDecl, routers: dict[str, RouterDecl]) -> RouteDecl:
    router = routers.get(route.router_name)
    if router is None:
        return route
    return replace(
        route,
        path=join_paths(router.prefix, route.path),
        router_prefix=router.prefix,
        dependencies=router.dependencies + route.dependencies,
    )


def join_paths(prefix: str, path: str) -> str:
    if not prefix:
        return path
    if not path or path == "/":
        return prefix.rstrip("/") or "/"
    return prefix.rstrip("/") + "/" + path.lstrip("/")


def _iter_function_defs(tree: ast.AST) -> Iterable[ast.AST]:
    for node in ast.walk(tree):
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            yield node


def _parse_fastapi_route_decorator(
    dec: ast.AST,
) -> Optional[tuple[str, str, int, str, tuple[str, ...]]]:
    """
    Recognize decorators of form:
      @<owner>.<method>(<path>, ..., dependencies=[...])
    where <method> in HTTP methods (get/post/...)

    Returns (METHOD, path, decorator_line, owner, dependencies) or None.
    """
    decorator_line = getattr(dec, "lineno", 1) or 1

    if not isinstance(dec, ast.Call):
        return None

    func = dec.func
    if not isinstance(func, ast.Attribute):
        return None

    method = _HTTP_METHOD_ATTRS.get(func.attr)
    if method is None:
        return None

    path_value = None
    if dec.args:
        path_value = _const_str(dec.args[0])

    deps: tuple[str, ...] = ()
    for kw in dec.keywords or []:
        if kw.arg == "path" and path_value is None:
            path_value = _const_str(kw.value)
        elif kw.arg == "dependencies":
            deps = _dependency_list(kw.value)

    if path_value is None:
        return None

    return (method, path_value, decorator_line, _name_of_expr(func.value), deps)


def _const_str(node: ast.AST) -> Optional[str]:
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value.strip()
    # f-strings, format() and concatenation are not evaluated
    return None


def _const_str_list(node: ast.AST) -> Optional[list[str]]:
    # methods=["GET","POST"] or ("GET",)
    if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
        out = []
        for elt in node.elts:
            s = _const_str(elt)
            if s is None:
                return None
            out.append(s.strip().upper())
        return out

    s = _const_str(node)
    if s is not None:
        return [s.strip().upper()]

    return None


def _name_of_expr(node: ast.AST) -> str:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return f"{_name_of_expr(node.value)}.{node.attr}"
    if isinstance(node, ast.Call):
        return _name_of_expr(node.func)
    if isinstance(node, ast.Subscript):
        return _name_of_expr(node.value)
    return node.__class__.__name__


def _depends_target(node: ast.AST) -> Optional[str]:
    # Depends(get_user) / fastapi.Depends(get_user) / Security(...)
    if not isinstance(node, ast.Call):
        return None
    fn = _name_of_expr(node.func).split(".")[-1]
    if fn not in ("Depends", "Security"):
        return None
    if node.args:
        return _name_of_expr(node.args[0])
    for kw in node.keywords or []:
        if kw.arg == "dependency":
            return _name_of_expr(kw.value)
    return fn


def _dependency_list(node: ast.AST) -> tuple[str, ...]:
    if not isinstance(node, (ast.List, ast.Tuple)):
        return ()
    names = [_depends_target(elt) for elt in node.elts]
    return tuple(n for n in names if n)


def _signature_dependencies(fn: ast.AST) -> tuple[str, ...]:
    """Depends(...) used as parameter defaults or inside Annotated[...]."""
    args = fn.args
    names: list[str] = []
    for default in list(args.defaults) + [d for d in args.kw_defaults if d is not None]:
        target = _depends_target(default)
        if target:
            names.append(target)
    for arg in list(args.args) + list(args.kwonlyargs):
        ann = arg.annotation
        if isinstance(ann, ast.Subscript) and _name_of_expr(ann.value).endswith("Annotated"):
            elts = ann.slice.elts if isinstance(ann.slice, ast.Tuple) else [ann.slice]
            for elt in elts[1:]:
                target = _depends_target(elt)
                if target:
                    names.append(target)
    return tuple(names)


def _handler_to_name(node: ast.AST) -> Optional[str]:
    # handler name in add_api_route("/x", handler, ...)
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return ast.unparse(node)
    return None


def _parse_add_api_route_call(
    node: ast.AST,
) -> list[tuple[str, str, str, int, str, tuple[str, ...]]]:
    """
    Return list of (METHOD, path, handler_name, call_line, owner, dependencies)
    """
    if not isinstance(node, ast.Call):
        return []
    func = node.func
    if not isinstance(func, ast.Attribute) or func.attr != "add_api_route":
        return []

    call_line = getattr(node, "lineno", 1) or 1

    # add_api_route(path, endpoint, ...)
    if len(node.args) < 2:
        return []

    path = _const_str(node.args[0])
    if path is None:
        return []

    handler_name = _handler_to_name(node.args[1])
    if handler_name is None:
        return []

    methods_node = None
    deps: tuple[str, ...] = ()
    for kw in node.keywords or []:
        if kw.arg == "methods":
            methods_node = kw.value
        elif kw.arg == "dependencies":
            deps = _dependency_list(kw.value)

    # FastAPI registers GET when methods is omitted
    methods = ["GET"] if methods_node is None else _const_str_list(methods_node)
    if not methods:
        return []

    owner = _name_of_expr(func.value)
    return [(m, path, handler_name, call_line, owner, deps) for m in methods]
