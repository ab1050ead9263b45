from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Any, Callable, Mapping, Optional

import requests

from routeaudit.config import VerificationSettings
from routeaudit.domain.models import AuthFlowResult, AuthStep, RouteInfo, VerificationResult

logger = logging.getLogger(__name__)

_PARAM_SEGMENT = re.compile(r"/(:[A-Za-z0-9_]+|\$\{[A-Za-z0-9_]+\})")

# value substituted for path parameters when probing a declared route
SAMPLE_PARAM_VALUE = "1"


def concrete_path(path: str) -> str:
    """`/api/clients/:id` -> `/api/clients/1`."""
    return _PARAM_SEGMENT.sub("/" + SAMPLE_PARAM_VALUE, path)


class HTTPEndpointVerifier:
    """
    Probes a running backend with requests.

    Any HTTP status is a response, 2xx counts as success. Connection-level
    failures are retried `retries` times and then reported as a failed
    result with status 0; they never raise.
    """

    def __init__(
        self,
        base_url: str,
        cfg: VerificationSettings,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.cfg = cfg
        self.session = session or requests.Session()
        self._sleep = sleep
        self._auth_token: Optional[str] = None

    @property
    def auth_token(self) -> Optional[str]:
        return self._auth_token

    def set_auth_token(self, token: Optional[str]) -> None:
        self._auth_token = token

    def clear_auth_token(self) -> None:
        self._auth_token = None

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = self.base_url + path
        attempts = self.cfg.retries + 1
        attempt = 1
        while True:
            try:
                return self.session.request(method, url, timeout=self.cfg.timeout, **kwargs)
            except (requests.ConnectionError, requests.Timeout) as exc:
                logger.debug("%s %s attempt %d/%d failed: %s", method, url, attempt, attempts, exc)
                if attempt >= attempts:
                    raise
            if self.cfg.request_delay:
                self._sleep(self.cfg.request_delay)
            attempt += 1

    def _bearer(self, token: Optional[str]) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"} if token else {}

    def verify_endpoint(
        self,
        route: RouteInfo,
        token: Optional[str] = None,
        body: Optional[Mapping[str, Any]] = None,
        query: Optional[Mapping[str, Any]] = None,
    ) -> VerificationResult:
        headers = {"Content-Type": "application/json"}
        if route.requires_auth:
            headers.update(self._bearer(self._auth_token or token))

        path = concrete_path(route.path)
        started = time.perf_counter()
        try:
            resp = self._request(
                route.method.upper(),
                path,
                headers=headers,
                json=dict(body) if body is not None else None,
                params=dict(query) if query is not None else None,
            )
        except requests.RequestException as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.error("Endpoint verification failed for %s %s: %s", route.method, route.path, exc)
            return VerificationResult(
                route=route,
                success=False,
                status_code=0,
                response_time_ms=elapsed_ms,
                errors=[str(exc)],
            )

        elapsed_ms = (time.perf_counter() - started) * 1000
        success = 200 <= resp.status_code < 300
        logger.info(
            "Endpoint %s %s: %s (%.0fms)",
            route.method,
            route.path,
            "PASS" if success else "FAIL",
            elapsed_ms,
        )
        if self.cfg.request_delay:
            self._sleep(self.cfg.request_delay)
        return VerificationResult(
            route=route,
            success=success,
            status_code=resp.status_code,
            response_time_ms=elapsed_ms,
            errors=[] if success else [f"Request failed with status {resp.status_code}"],
        )

    def _login(self, email: str, password: str) -> AuthStep:
        try:
            resp = self._request("POST", self.cfg.login_path, json={"email": email, "password": password})
        except requests.RequestException as exc:
            return AuthStep(success=False, error=str(exc))

        token = _token_from(resp)
        if resp.status_code == 200 and token:
            return AuthStep(success=True, token=token)
        return AuthStep(success=False, error=f"Login failed with status {resp.status_code}")

    def verify_auth_flow(self) -> AuthFlowResult:
        """
        register -> login -> protected route -> logout, stopping early when
        register or login fail. The token from the last successful login is
        kept for the endpoint probes that follow.
        """
        user = self.cfg.test_user
        # fresh address per run so registration does not collide with earlier runs
        local, _, domain = user.email.partition("@")
        email = f"{local}+{uuid.uuid4().hex[:8]}@{domain or 'example.com'}"
        payload = {"email": email, "password": user.password, "name": user.name}

        try:
            resp = self._request("POST", self.cfg.register_path, json=payload)
        except requests.RequestException as exc:
            logger.error("Registration test failed: %s", exc)
            return AuthFlowResult(registration=AuthStep(error=str(exc)))
        if resp.status_code not in (200, 201):
            logger.warning("Registration test: FAIL (%d)", resp.status_code)
            return AuthFlowResult(
                registration=AuthStep(error=f"Registration failed with status {resp.status_code}")
            )
        registered = AuthStep(success=True)
        logger.info("Registration test: PASS")

        login = self._login(email, user.password)
        if not login.success:
            logger.warning("Login test: FAIL (%s)", login.error)
            return AuthFlowResult(registration=registered, login=login)
        self.set_auth_token(login.token)
        logger.info("Login test: PASS")

        protected = self._check_status(
            "GET", self.cfg.protected_path, (200,), "Protected route", headers=self._bearer(login.token)
        )
        logout = self._check_status(
            "POST", self.cfg.logout_path, (200, 204), "Logout", headers=self._bearer(login.token)
        )
        if logout.success:
            # the logged-out token is dead; later probes need a live one
            relogin = self._login(email, user.password)
            self.set_auth_token(relogin.token if relogin.success else None)

        return AuthFlowResult(registration=registered, login=login, protected_route=protected, logout=logout)

    def _check_status(
        self, method: str, path: str, ok: tuple[int, ...], label: str, **kwargs: Any
    ) -> AuthStep:
        try:
            resp = self._request(method, path, **kwargs)
        except requests.RequestException as exc:
            logger.error("%s test failed: %s", label, exc)
            return AuthStep(error=str(exc))
        if resp.status_code in ok:
            logger.info("%s test: PASS", label)
            return AuthStep(success=True)
        logger.warning("%s test: FAIL (%d)", label, resp.status_code)
        return AuthStep(error=f"{label} failed with status {resp.status_code}")


def _token_from(resp: requests.Response) -> Optional[str]:
    try:
        data = resp.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    token = data.get("token") or data.get("access_token")
    return token if isinstance(token, str) and token else None
