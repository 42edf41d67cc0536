import base64
import io
import json
import tarfile

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from gatewrap.config.schema import Settings
from gatewrap.gateway.supervisor import GatewayResult
from gatewrap.gateway.token import ResolvedToken
from gatewrap.processes.runner import CommandResult
from gatewrap.server.app import create_app
from gatewrap.server.proxy import GatewayProxy

TOKEN = "c" * 64


def _basic(password: str, user: str = "anyone") -> dict[str, str]:
    raw = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {raw}"}


AUTH = _basic("s3cret")


class FakeCli:
    def __init__(self):
        self.approved: list[tuple[str, str]] = []

    async def version(self):
        return CommandResult(exit_code=0, output="2026.1.30\n")

    async def channels_add_help(self):
        return CommandResult(exit_code=0, output="Usage: channels add telegram|discord|slack")

    async def pairing_approve(self, channel, code):
        self.approved.append((channel, code))
        return CommandResult(exit_code=0, output=f"approved {channel} {code}\n")


class StubSupervisor:
    def __init__(self, settings: Settings, result: GatewayResult | None = None):
        self.settings = settings
        self.result = result or GatewayResult(ok=True)
        self.cli = FakeCli()
        self.ensures = 0
        self.restarts = 0
        self.shutdowns = 0

    def is_configured(self) -> bool:
        return self.settings.config_path.exists()

    async def ensure_running(self) -> GatewayResult:
        self.ensures += 1
        return self.result

    async def restart(self) -> GatewayResult:
        self.restarts += 1
        return self.result

    async def shutdown(self) -> None:
        self.shutdowns += 1

    def status(self) -> dict:
        return {"state": "running" if self.is_configured() else "not_configured"}


def _upstream_echo(request: httpx.Request) -> httpx.Response:
    payload = {
        "method": request.method,
        "path": request.url.path,
        "query": request.url.query.decode("ascii"),
        "authorization": request.headers.get("authorization"),
        "forwarded_for": request.headers.get("x-forwarded-for"),
        "body": request.content.decode("utf-8"),
    }
    # A streamed body, as a real upstream connection delivers it.
    return httpx.Response(
        201,
        headers={"content-type": "application/json", "x-upstream": "yes", "connection": "close"},
        stream=httpx.ByteStream(json.dumps(payload).encode("utf-8")),
    )


def _build(settings: Settings, *, configured: bool = False, result: GatewayResult | None = None, upstream=_upstream_echo):
    if configured:
        settings.config_path.parent.mkdir(parents=True, exist_ok=True)
        settings.config_path.write_text("{}", encoding="utf-8")
    supervisor = StubSupervisor(settings, result)
    client = httpx.AsyncClient(base_url=settings.gateway_target, transport=httpx.MockTransport(upstream))
    proxy = GatewayProxy(settings, TOKEN, client=client)
    token = ResolvedToken(value=TOKEN, source="generated", persisted=True)
    app = create_app(settings, supervisor, token, cli=supervisor.cli, proxy=proxy)
    return app, supervisor


def test_healthz_needs_no_auth(settings: Settings) -> None:
    app, _ = _build(settings)
    resp = TestClient(app).get("/setup/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


def test_setup_requires_configured_password(settings: Settings) -> None:
    settings.setup_password = ""
    app, _ = _build(settings)
    resp = TestClient(app).get("/setup", headers=AUTH)
    assert resp.status_code == 500
    assert "SETUP_PASSWORD" in resp.text


@pytest.mark.parametrize(
    ("headers", "detail"),
    [
        ({}, "Auth required"),
        ({"Authorization": "Bearer s3cret"}, "Auth required"),
        (_basic("wrong"), "Invalid password"),
    ],
)
def test_setup_rejects_bad_credentials(settings: Settings, headers: dict, detail: str) -> None:
    app, _ = _build(settings)
    resp = TestClient(app).get("/setup/api/status", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["detail"] == detail
    assert resp.headers["www-authenticate"] == 'Basic realm="Openclaw Setup"'


def test_setup_page_and_assets(settings: Settings) -> None:
    app, _ = _build(settings)
    client = TestClient(app)
    page = client.get("/setup", headers=_basic("s3cret", user=""))
    assert page.status_code == 200
    assert "text/html" in page.headers["content-type"]
    assert client.get("/setup/app.js", headers=AUTH).status_code == 200
    assert client.get("/setup/styles.css", headers=AUTH).status_code == 200


def test_status_reports_cli_and_auth_groups(settings: Settings) -> None:
    app, _ = _build(settings)
    data = TestClient(app).get("/setup/api/status", headers=AUTH).json()
    assert data["configured"] is False
    assert data["gatewayTarget"] == "http://127.0.0.1:18789"
    assert data["openclawVersion"] == "2026.1.30"
    assert "telegram" in data["channelsAddHelp"]
    assert any(group["value"] == "anthropic" for group in data["authGroups"])


def test_debug_never_exposes_token(settings: Settings) -> None:
    app, _ = _build(settings)
    resp = TestClient(app).get("/setup/api/debug", headers=AUTH)
    assert resp.status_code == 200
    assert TOKEN not in resp.text
    data = resp.json()
    assert data["wrapper"]["tokenSource"] == "generated"
    assert data["wrapper"]["configPath"] == str(settings.config_path)
    assert data["openclaw"]["channelsAddHelpIncludesTelegram"] is True


def test_unconfigured_requests_redirect_to_setup(settings: Settings) -> None:
    app, supervisor = _build(settings)
    resp = TestClient(app).get("/openclaw/chat", follow_redirects=False)
    assert resp.status_code == 302
    assert resp.headers["location"] == "/setup"
    assert supervisor.ensures == 0


def test_gateway_failure_gives_503(settings: Settings) -> None:
    app, supervisor = _build(settings, configured=True, result=GatewayResult(ok=False, reason="token mismatch"))
    resp = TestClient(app).get("/openclaw")
    assert resp.status_code == 503
    assert resp.text == "Gateway not ready: token mismatch"
    assert supervisor.ensures == 1


def test_proxy_replaces_client_authorization(settings: Settings) -> None:
    app, supervisor = _build(settings, configured=True)
    resp = TestClient(app).post(
        "/api/messages?limit=5",
        content=b'{"hello": "world"}',
        headers={"Authorization": "Bearer client-supplied", "Content-Type": "application/json"},
    )
    assert resp.status_code == 201
    assert resp.headers["x-upstream"] == "yes"
    assert "connection" not in resp.headers
    data = resp.json()
    assert data["method"] == "POST"
    assert data["path"] == "/api/messages"
    assert data["query"] == "limit=5"
    assert data["authorization"] == f"Bearer {TOKEN}"
    assert data["forwarded_for"]
    assert json.loads(data["body"]) == {"hello": "world"}
    assert supervisor.ensures == 1


def test_proxy_connection_error_gives_502(settings: Settings) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    app, _ = _build(settings, configured=True, upstream=refuse)
    resp = TestClient(app).get("/openclaw")
    assert resp.status_code == 502


def test_pairing_approve_validates_input(settings: Settings) -> None:
    app, supervisor = _build(settings)
    client = TestClient(app)
    missing = client.post("/setup/api/pairing/approve", json={"channel": "telegram"}, headers=AUTH)
    assert missing.status_code == 400
    assert missing.json() == {"ok": False, "error": "Missing channel or code"}

    ok = client.post("/setup/api/pairing/approve", json={"channel": "telegram", "code": "ABC123"}, headers=AUTH)
    assert ok.status_code == 200
    assert ok.json()["ok"] is True
    assert supervisor.cli.approved == [("telegram", "ABC123")]


def test_run_when_already_configured(settings: Settings) -> None:
    app, supervisor = _build(settings, configured=True)
    resp = TestClient(app).post("/setup/api/run", json={}, headers=AUTH)
    assert resp.status_code == 200
    assert resp.json()["ok"] is True
    assert "Already configured" in resp.json()["output"]
    assert supervisor.ensures == 1


def test_run_rejects_malformed_payload_as_json(settings: Settings) -> None:
    app, _ = _build(settings)
    resp = TestClient(app).post("/setup/api/run", json={"authChoice": ["not", "a", "string"]}, headers=AUTH)
    assert resp.status_code == 500
    data = resp.json()
    assert data["ok"] is False
    assert data["output"].startswith("Internal error:")


def test_reset_deletes_config(settings: Settings) -> None:
    app, _ = _build(settings, configured=True)
    resp = TestClient(app).post("/setup/api/reset", headers=AUTH)
    assert resp.status_code == 200
    assert resp.text == "OK - deleted config file. You can rerun setup now."
    assert not settings.config_path.exists()


def test_restart_endpoint(settings: Settings) -> None:
    app, supervisor = _build(settings, configured=True)
    resp = TestClient(app).post("/setup/api/restart", headers=AUTH)
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert supervisor.restarts == 1


def test_export_bundles_state_and_workspace(settings: Settings) -> None:
    settings.state_path.mkdir(parents=True)
    settings.token_path.write_text(TOKEN, encoding="utf-8")
    settings.workspace_path.mkdir(parents=True)
    (settings.workspace_path / "notes.md").write_text("hi", encoding="utf-8")
    app, _ = _build(settings)

    resp = TestClient(app).get("/setup/export", headers=AUTH)
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/gzip"
    assert "openclaw-backup-" in resp.headers["content-disposition"]

    with tarfile.open(fileobj=io.BytesIO(resp.content), mode="r:gz") as tar:
        names = tar.getnames()
    assert any(name.endswith("state/gateway.token") for name in names)
    assert any(name.endswith("workspace/notes.md") for name in names)


def test_lifespan_shuts_gateway_down(settings: Settings) -> None:
    app, supervisor = _build(settings)
    with TestClient(app) as client:
        assert client.get("/setup/healthz").status_code == 200
    assert supervisor.shutdowns == 1


def test_websocket_refused_when_not_configured(settings: Settings) -> None:
    app, _ = _build(settings)
    with pytest.raises(WebSocketDisconnect) as exc:
        with TestClient(app).websocket_connect("/openclaw/ws"):
            pass
    assert exc.value.code == 1013


def test_websocket_refused_when_gateway_down(settings: Settings) -> None:
    app, supervisor = _build(settings, configured=True, result=GatewayResult(ok=False, reason="spawn failed"))
    with pytest.raises(WebSocketDisconnect) as exc:
        with TestClient(app).websocket_connect("/openclaw/ws"):
            pass
    assert exc.value.code == 1013
    assert supervisor.ensures == 1
