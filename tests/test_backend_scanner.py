from pathlib import Path

from routeaudit.config import BackendSettings, ModuleSettings
from routeaudit.domain.models import RouteInfo
from routeaudit.scanners.backend import (
    FastAPIRouteScanner,
    analyze_middleware,
    detect_duplicates,
    discover_module_container,
    has_auth_dependency,
    to_route_path,
)

LEGACY_USERS = """
from fastapi import APIRouter, Depends

router = APIRouter()

@router.get("/")
def list_users():
    return []

@router.get("/{user_id}")
def get_user(user_id: int, current=Depends(get_current_user)):
    return {}
"""

CLIENTS_ROUTER = """
from fastapi import APIRouter, Depends

router = APIRouter(prefix="/clients", dependencies=[Depends(require_auth)])

@router.post("")
def create_client():
    return {}

@router.get("/{client_id:int}")
def get_client(client_id: int):
    return {}
"""

HEALTH_ROUTER = """
from fastapi import APIRouter

router = APIRouter(prefix="/api/health")

@router.get("/")
def health():
    return {"ok": True}
"""


def _backend(tmp_path: Path) -> BackendSettings:
    routes = tmp_path / "backend" / "app" / "routes"
    modules = tmp_path / "backend" / "app" / "modules"
    routes.mkdir(parents=True)
    (routes / "users.py").write_text(LEGACY_USERS)
    for name, src in (("clients", CLIENTS_ROUTER), ("health", HEALTH_ROUTER)):
        pkg = modules / name
        pkg.mkdir(parents=True)
        (pkg / "__init__.py").write_text("")
        (pkg / "router.py").write_text(src)
    (modules / "__pycache__").mkdir()
    return BackendSettings(routes_path=routes, modules_path=modules)


def test_to_route_path():
    assert to_route_path("/items/{item_id}") == "/items/:item_id"
    assert to_route_path("/files/{p:path}") == "/files/:p"
    assert to_route_path("/plain") == "/plain"


def test_has_auth_dependency():
    assert has_auth_dependency(("get_current_user",))
    assert has_auth_dependency(("rate_limit", "verify_JWT"))
    assert not has_auth_dependency(("get_db",))


def test_scan_legacy_routes_mounts_under_file_stem(tmp_path: Path):
    scanner = FastAPIRouteScanner(_backend(tmp_path))
    routes = scanner.scan_legacy_routes()

    assert [(r.method, r.path, r.handler) for r in routes] == [
        ("GET", "/api/users", "list_users"),
        ("GET", "/api/users/:user_id", "get_user"),
    ]
    assert all(r.is_legacy and r.module is None for r in routes)
    assert [r.requires_auth for r in routes] == [False, True]
    assert routes[1].middleware == ("get_current_user",)
    assert routes[0].file.endswith("users.py")
    assert routes[0].line > 0


def test_scan_module_routes_honours_router_prefix(tmp_path: Path):
    backend = _backend(tmp_path)
    container = discover_module_container(backend.modules_path)
    assert list(container) == ["clients", "health"]

    routes = FastAPIRouteScanner(backend).scan_module_routes(container)
    by_handler = {r.handler: r for r in routes}

    assert by_handler["create_client"].path == "/api/clients"
    assert by_handler["create_client"].method == "POST"
    assert by_handler["get_client"].path == "/api/clients/:client_id"
    assert by_handler["get_client"].requires_auth
    assert by_handler["get_client"].module == "clients"
    assert by_handler["health"].path == "/api/health"
    assert not by_handler["health"].requires_auth
    assert not any(r.is_legacy for r in routes)


def test_discover_module_container_include_exclude(tmp_path: Path):
    backend = _backend(tmp_path)
    assert list(discover_module_container(backend.modules_path, ModuleSettings(include=["health"]))) == ["health"]
    assert list(discover_module_container(backend.modules_path, ModuleSettings(exclude=["health"]))) == ["clients"]
    assert discover_module_container(tmp_path / "missing") == {}


def test_missing_routes_path_yields_no_routes(tmp_path: Path):
    scanner = FastAPIRouteScanner(BackendSettings(routes_path=tmp_path / "nope"))
    assert scanner.scan_legacy_routes() == []


def test_detect_duplicates_and_middleware_analysis():
    a = RouteInfo(method="GET", path="/api/tasks", handler="a")
    b = RouteInfo(method="get", path="/api/tasks", handler="b")
    c = RouteInfo(method="POST", path="/api/tasks", handler="c", requires_auth=True, middleware=("get_current_user",))
    login = RouteInfo(method="POST", path="/api/auth/login", handler="login")

    dups = detect_duplicates([a, b, c])
    assert len(dups) == 1
    assert dups[0].routes == (a, b)
    assert dups[0].message == "Duplicate route detected: GET /api/tasks"

    analysis = analyze_middleware([a, c, login])
    assert analysis.routes_with_auth == 1
    assert analysis.routes_without_auth == 2
    assert analysis.missing_auth_routes == [a]
    assert analysis.middleware_usage["get_current_user"] == 1
