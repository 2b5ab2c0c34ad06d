import base64
from contextlib import asynccontextmanager

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from c8y_fastapi.dependencies import (
    get_factory,
    has_user_required_role,
    is_user_from_allowed_tenant,
    is_user_from_deployed_tenant,
)
from c8y_fastapi.factory import CredentialedClientFactory
from c8y_fastapi.plugin import (
    LIVENESS_ROUTE,
    READINESS_ROUTE,
    check_probes,
    create_storage,
    setup_c8y,
)
from c8y_fastapi.storage import FileStorage, MemoryStorage

from conftest import basic, make_config


def _app(config, client_class, **kwargs):
    app = FastAPI()

    @app.get("/roles", dependencies=[Depends(has_user_required_role("ROLE_TENANT_ADMIN"))])
    async def roles(request: Request, factory: CredentialedClientFactory = Depends(get_factory)):
        return {"roles": await factory.get_user_roles(request)}

    @app.get("/any-role", dependencies=[Depends(has_user_required_role(["ROLE_X", "ROLE_INVENTORY_READ"]))])
    async def any_role():
        return {"ok": True}

    @app.get("/tenants", dependencies=[Depends(is_user_from_allowed_tenant(["t1", "t2"]))])
    async def tenants():
        return {"ok": True}

    @app.get("/deployed", dependencies=[Depends(is_user_from_deployed_tenant())])
    async def deployed():
        return {"ok": True}

    @app.get("/auth-header")
    async def auth_header(request: Request):
        return {"authHeader": request.headers.get("authorization")}

    factory = CredentialedClientFactory(config, MemoryStorage(), client_class=client_class)
    setup_c8y(app, config, factory=factory, **kwargs)
    return app


def test_generated_probes_answer_ok(client_class):
    app = _app(make_config(), client_class)

    with TestClient(app) as client:
        assert client.get(LIVENESS_ROUTE).json() == {"status": "OK"}
        assert client.get(READINESS_ROUTE).json() == {"status": "OK"}


def test_probes_defined_in_manifest_are_not_generated(client_class):
    manifest = {"livenessProbe": {"httpGet": {"path": "/auth-header", "port": 80}}}
    app = _app(make_config(manifest=manifest), client_class)

    client = TestClient(app)
    assert client.get(LIVENESS_ROUTE).status_code == 404
    assert client.get(READINESS_ROUTE).status_code == 200


def test_check_probes_warns_about_missing_or_wrong_routes():
    app = FastAPI()

    @app.post("/ready")
    async def ready():
        return {}

    manifest = {
        "livenessProbe": {"httpGet": {"path": "/missing"}},
        "readinessProbe": {"httpGet": {"path": "/ready"}},
    }
    warnings = check_probes(app, manifest)

    assert len(warnings) == 2
    assert '"/missing" not found' in warnings[0]
    assert "does not accept GET" in warnings[1]
    assert "POST" in warnings[1]


def test_startup_fails_without_required_variables(client_class):
    app = _app(make_config(base_url="", bootstrap={}), client_class)

    with pytest.raises(RuntimeError) as exc:
        with TestClient(app):
            pass
    message = str(exc.value)
    assert "C8Y_BASEURL" in message
    assert "C8Y_BOOTSTRAP_PASSWORD" in message


def test_required_variables_can_come_from_environment(client_class, monkeypatch):
    monkeypatch.setenv("C8Y_BASEURL", "https://env.example.com")
    monkeypatch.setenv("C8Y_BOOTSTRAP_TENANT", "t1")
    monkeypatch.setenv("C8Y_BOOTSTRAP_USER", "u")
    monkeypatch.setenv("C8Y_BOOTSTRAP_PASSWORD", "p")
    app = _app(make_config(base_url="", bootstrap={}), client_class)

    with TestClient(app) as client:
        assert client.get(LIVENESS_ROUTE).status_code == 200


def test_user_lifespan_still_runs(client_class):
    events = []
    config = make_config()
    app = FastAPI()

    @asynccontextmanager
    async def lifespan(app_):
        events.append("start")
        yield
        events.append("stop")

    app.router.lifespan_context = lifespan
    setup_c8y(app, config, factory=CredentialedClientFactory(config, client_class=client_class))

    with TestClient(app):
        assert events == ["start"]
    assert events == ["start", "stop"]


def test_role_dependency(client_class):
    client = TestClient(_app(make_config(), client_class))

    response = client.get("/roles", headers={"Authorization": basic("t12345/alice:secret")})
    assert response.status_code == 200
    assert "ROLE_TENANT_ADMIN" in response.json()["roles"]

    assert client.get("/any-role", headers={"Authorization": basic("t12345/alice:secret")}).status_code == 200


def test_role_dependency_forbids_user_without_role(client_class, platform):
    platform.current_user["roles"] = {"references": [{"id": "ROLE_INVENTORY_READ"}]}
    client = TestClient(_app(make_config(), client_class))

    response = client.get("/roles", headers={"Authorization": basic("t12345/alice:secret")})

    assert response.status_code == 403
    assert "ROLE_TENANT_ADMIN" in response.json()["detail"]


def test_missing_authorization_is_401(client_class):
    client = TestClient(_app(make_config(), client_class))

    response = client.get("/roles")

    assert response.status_code == 401
    assert response.json()["detail"] == "Missing Authorization header"


def test_allowed_tenant_dependency(client_class):
    client = TestClient(_app(make_config(), client_class))

    assert client.get("/tenants", headers={"Authorization": basic("t2/alice:pw")}).status_code == 200
    assert client.get("/tenants", headers={"Authorization": basic("t3/alice:pw")}).status_code == 403


def test_deployed_tenant_dependency(client_class):
    client = TestClient(_app(make_config(), client_class))

    assert client.get("/deployed", headers={"Authorization": basic("t12345/alice:pw")}).status_code == 200
    assert client.get("/deployed", headers={"Authorization": basic("t67890/bob:pw")}).status_code == 403


def test_dev_user_is_injected_in_dev_mode(client_class, monkeypatch):
    monkeypatch.setenv("C8Y_DEVELOPMENT_TENANT", "t12345")
    monkeypatch.setenv("C8Y_DEVELOPMENT_USER", "someUser@example.com")
    monkeypatch.setenv("C8Y_DEVELOPMENT_PASSWORD", "devpw")
    client = TestClient(_app(make_config(dev_mode=True), client_class))

    response = client.get("/auth-header", headers={"Authorization": "Bearer other"})

    expected = base64.b64encode(b"t12345/someUser@example.com:devpw").decode("ascii")
    assert response.json() == {"authHeader": f"Basic {expected}"}


def test_dev_user_is_skipped_when_variables_are_missing(client_class):
    client = TestClient(_app(make_config(dev_mode=True), client_class))

    response = client.get("/auth-header", headers={"Authorization": "Bearer mine"})

    assert response.json() == {"authHeader": "Bearer mine"}


def test_dev_user_is_not_injected_outside_dev_mode(client_class, monkeypatch):
    monkeypatch.setenv("C8Y_DEVELOPMENT_TENANT", "t12345")
    monkeypatch.setenv("C8Y_DEVELOPMENT_USER", "dev")
    monkeypatch.setenv("C8Y_DEVELOPMENT_PASSWORD", "devpw")
    client = TestClient(_app(make_config(), client_class))

    assert client.get("/auth-header").json() == {"authHeader": None}


def test_create_storage_selects_backend(tmp_path):
    assert isinstance(create_storage(make_config()), MemoryStorage)

    file_config = make_config(cache={"storage": "file", "storage_dir": str(tmp_path)})
    storage = create_storage(file_config)
    assert isinstance(storage, FileStorage)
    assert storage.base_dir == tmp_path

    with pytest.raises(ValueError):
        create_storage(make_config(cache={"storage": "redis"}))


def test_get_factory_requires_setup():
    app = FastAPI()

    @app.get("/needs-factory")
    async def needs_factory(factory: CredentialedClientFactory = Depends(get_factory)):
        return {}

    with pytest.raises(RuntimeError):
        TestClient(app).get("/needs-factory")
