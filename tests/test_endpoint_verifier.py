import pytest
import requests

from routeaudit.config import VerificationSettings
from routeaudit.domain.models import AuthFlowResult, AuthStep, RouteInfo
from routeaudit.verifiers.endpoints import HTTPEndpointVerifier, concrete_path


class FakeResponse:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no json body")
        return self._body


class FakeSession:
    """Replays scripted responses keyed by (METHOD, path); exceptions are raised."""

    def __init__(self, script):
        self.script = {k: list(v) for k, v in script.items()}
        self.calls = []

    def request(self, method, url, timeout=None, **kwargs):
        path = url.split("://", 1)[-1].split("/", 1)[-1]
        key = (method, "/" + path)
        self.calls.append((method, "/" + path, kwargs))
        queue = self.script.get(key) or [FakeResponse(404)]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


def make(script, **cfg):
    settings = VerificationSettings(request_delay=0, **cfg)
    session = FakeSession(script)
    return HTTPEndpointVerifier("http://localhost:8000/", settings, session=session, sleep=lambda s: None), session


def test_concrete_path():
    assert concrete_path("/api/clients/:id/tasks/${taskId}") == "/api/clients/1/tasks/1"
    assert concrete_path("/api/clients") == "/api/clients"


def test_verify_endpoint_success_and_auth_header():
    verifier, session = make({("GET", "/api/tasks/1"): [FakeResponse(200, [])]})
    verifier.set_auth_token("tok")
    route = RouteInfo(method="GET", path="/api/tasks/:id", requires_auth=True)

    result = verifier.verify_endpoint(route)

    assert result.success
    assert result.status_code == 200
    assert result.errors == []
    _, _, kwargs = session.calls[0]
    assert kwargs["headers"]["Authorization"] == "Bearer tok"


def test_verify_endpoint_non_2xx_is_a_failed_result():
    verifier, session = make({("POST", "/api/tasks"): [FakeResponse(422, {"detail": "bad"})]})
    result = verifier.verify_endpoint(RouteInfo(method="post", path="/api/tasks"))

    assert not result.success
    assert result.status_code == 422
    assert result.errors == ["Request failed with status 422"]
    _, _, kwargs = session.calls[0]
    assert "Authorization" not in kwargs["headers"]


def test_verify_endpoint_retries_connection_errors():
    verifier, session = make(
        {("GET", "/api/x"): [requests.ConnectionError("refused"), FakeResponse(200, {})]},
        retries=2,
    )
    result = verifier.verify_endpoint(RouteInfo(method="GET", path="/api/x"))
    assert result.success
    assert len(session.calls) == 2


def test_verify_endpoint_gives_up_after_retries():
    verifier, session = make({("GET", "/api/x"): [requests.Timeout("slow")]}, retries=1)
    result = verifier.verify_endpoint(RouteInfo(method="GET", path="/api/x"))

    assert not result.success
    assert result.status_code == 0
    assert result.errors == ["slow"]
    assert len(session.calls) == 2


def test_auth_flow_happy_path_keeps_a_live_token():
    verifier, session = make(
        {
            ("POST", "/api/auth/register"): [FakeResponse(201, {"id": 1})],
            ("POST", "/api/auth/login"): [
                FakeResponse(200, {"token": "first"}),
                FakeResponse(200, {"access_token": "second"}),
            ],
            ("GET", "/api/auth/me"): [FakeResponse(200, {"id": 1})],
            ("POST", "/api/auth/logout"): [FakeResponse(204)],
        }
    )
    result = verifier.verify_auth_flow()

    assert result.passed
    assert result.registration.success and result.login.success
    assert result.protected_route.success and result.logout.success
    assert result.login.token == "first"
    assert verifier.auth_token == "second"

    register_payload = session.calls[0][2]["json"]
    assert register_payload["email"].startswith("audit-test+")
    me_headers = session.calls[2][2]["headers"]
    assert me_headers == {"Authorization": "Bearer first"}


def test_auth_flow_stops_when_registration_fails():
    verifier, session = make({("POST", "/api/auth/register"): [FakeResponse(500)]})
    result = verifier.verify_auth_flow()

    assert not result.passed
    assert result.registration.error == "Registration failed with status 500"
    assert not result.login.success
    assert len(session.calls) == 1


def test_auth_flow_login_without_token_fails():
    verifier, _ = make(
        {
            ("POST", "/api/auth/register"): [FakeResponse(200, {})],
            ("POST", "/api/auth/login"): [FakeResponse(200, {"message": "ok"})],
        }
    )
    result = verifier.verify_auth_flow()
    assert result.registration.success
    assert not result.login.success
    assert verifier.auth_token is None


def test_auth_flow_result_keeps_register_key_in_json():
    result = AuthFlowResult(registration=AuthStep(success=True), login=AuthStep(success=True, token="t"))
    assert "registration" in AuthFlowResult.model_fields
    assert "register" not in AuthFlowResult.model_fields

    data = result.model_dump()
    assert data["register"]["success"] is True
    restored = AuthFlowResult.model_validate_json(result.model_dump_json())
    assert restored.registration.success and restored.passed


def test_request_reraises_last_transport_error_after_all_attempts():
    slept = []
    session = FakeSession({("GET", "/api/x"): [requests.ConnectionError("refused"), requests.Timeout("slow")]})
    verifier = HTTPEndpointVerifier(
        "http://localhost:8000",
        VerificationSettings(retries=2, request_delay=0.5),
        session=session,
        sleep=slept.append,
    )

    with pytest.raises(requests.Timeout, match="slow"):
        verifier._request("GET", "/api/x")
    assert len(session.calls) == 3
    assert slept == [0.5, 0.5]


def test_request_without_retries_raises_on_first_failure():
    verifier, session = make({("GET", "/api/x"): [requests.ConnectionError("refused")]}, retries=0)
    with pytest.raises(requests.ConnectionError):
        verifier._request("GET", "/api/x")
    assert len(session.calls) == 1
