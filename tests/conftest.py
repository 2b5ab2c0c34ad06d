import base64
import pathlib
import sys
from collections import Counter
from copy import deepcopy

import pytest
from starlette.requests import Request

# Ensure repo root on sys.path for direct module imports when running tests locally.
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from c8y_fastapi.client import C8yClient
from c8y_fastapi.config_loader import Config
from c8y_fastapi.errors import UpstreamFailure


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubPlatform:
    """In-memory stand-in for the Cumulocity REST API."""

    def __init__(self):
        self.current_user = {
            "userName": "alice",
            "roles": {"references": [{"id": "ROLE_INVENTORY_READ"}, {"id": "ROLE_TENANT_ADMIN"}]},
        }
        self.token_tenant = "t12345"
        self.subscriptions = [
            {"tenant": "t12345", "user": "service_t12345", "password": "pw1"},
            {"tenant": "t67890", "user": "service_t67890", "password": "pw2"},
        ]
        self.options: dict[str, str] = {}
        self.option_requests: list[tuple[str, str, str | None]] = []
        self.calls: Counter = Counter()
        self.subscriptions_error: Exception | None = None


def make_client_class(platform: StubPlatform) -> type[C8yClient]:
    class StubC8yClient(C8yClient):
        async def request(self, method, path, **kwargs):  # pragma: no cover - never reached
            raise AssertionError(f"unexpected request {method} {path}")

        async def current_user(self):
            platform.calls["current_user"] += 1
            return deepcopy(platform.current_user)

        async def current_tenant(self):
            platform.calls["current_tenant"] += 1
            return {"name": platform.token_tenant}

        async def tenant_option(self, category, key):
            platform.calls["tenant_option"] += 1
            platform.option_requests.append((category, key, self.credentials.tenant))
            if key not in platform.options:
                raise UpstreamFailure(404, "Not Found")
            return platform.options[key]

        @classmethod
        async def microservice_subscriptions(cls, bootstrap, base_url):
            platform.calls["subscriptions"] += 1
            if platform.subscriptions_error is not None:
                raise platform.subscriptions_error
            return deepcopy(platform.subscriptions)

    return StubC8yClient


def basic(raw: str) -> str:
    return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")


def make_request(authorization: str | None = None, cookie: str | None = None) -> Request:
    headers = []
    if authorization is not None:
        headers.append((b"authorization", authorization.encode("latin-1")))
    if cookie is not None:
        headers.append((b"cookie", cookie.encode("latin-1")))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


def make_config(**c8y) -> Config:
    data = {
        "base_url": "https://example.cumulocity.com/",
        "bootstrap": {"tenant": "t12345", "user": "servicebootstrap", "password": "bootpw"},
        "settings_category": "my-service",
    }
    data.update(c8y)
    return Config(data={"c8y": data})


@pytest.fixture(autouse=True)
def _clear_c8y_env(monkeypatch):
    # Real environment variables would override the test configuration.
    for name in (
        "C8Y_BASEURL",
        "C8Y_BOOTSTRAP_TENANT",
        "C8Y_BOOTSTRAP_USER",
        "C8Y_BOOTSTRAP_PASSWORD",
        "C8Y_DEVELOPMENT_TENANT",
        "C8Y_DEVELOPMENT_USER",
        "C8Y_DEVELOPMENT_PASSWORD",
        "C8Y_CREDENTIALS_CACHE_TTL",
        "C8Y_DEFAULT_TENANT_OPTIONS_TTL",
        "C8Y_SETTINGS_CATEGORY",
        "C8Y_DEV_MODE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def platform():
    return StubPlatform()


@pytest.fixture
def client_class(platform):
    return make_client_class(platform)
