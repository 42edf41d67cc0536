"""FastAPI front door: setup wizard under /setup, everything else proxied to the gateway."""

import asyncio
import platform
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, RedirectResponse
from loguru import logger
from starlette.background import BackgroundTask

from gatewrap import __version__
from gatewrap.config.schema import Settings
from gatewrap.gateway.cli import GatewayCli
from gatewrap.gateway.supervisor import GatewaySupervisor
from gatewrap.gateway.token import ResolvedToken
from gatewrap.server.auth import require_setup_password
from gatewrap.server.export import backup_filename, write_backup
from gatewrap.server.onboarding import AUTH_GROUPS, OnboardPayload, run_onboarding
from gatewrap.server.proxy import GatewayProxy

STATIC_DIR = Path(__file__).parent / "static"

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

# Close code for "try again later" when the gateway cannot serve a socket.
WS_TRY_AGAIN_LATER = 1013


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def create_app(
    settings: Settings,
    supervisor: GatewaySupervisor,
    token: ResolvedToken,
    cli: GatewayCli | None = None,
    proxy: GatewayProxy | None = None,
) -> FastAPI:
    """Create the wrapper app."""
    cli = cli or supervisor.cli
    proxy = proxy or GatewayProxy(settings, token.value)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        logger.info(f"Wrapper listening on port {settings.port}, setup wizard at /setup")
        logger.info(f"Configured: {supervisor.is_configured()}")
        try:
            yield
        finally:
            await supervisor.shutdown()
            await proxy.aclose()

    app = FastAPI(title="gatewrap", docs_url=None, redoc_url=None, lifespan=lifespan)
    auth = require_setup_password(settings.setup_password)

    # === Setup wizard ===

    @app.get("/setup/healthz")
    async def healthz():
        return {"ok": True}

    @app.get("/setup", dependencies=[Depends(auth)])
    async def setup_page():
        return FileResponse(STATIC_DIR / "setup.html", media_type="text/html")

    @app.get("/setup/app.js", dependencies=[Depends(auth)])
    async def setup_script():
        return FileResponse(STATIC_DIR / "setup-app.js", media_type="application/javascript")

    @app.get("/setup/styles.css", dependencies=[Depends(auth)])
    async def setup_styles():
        return FileResponse(STATIC_DIR / "styles.css", media_type="text/css")

    @app.get("/setup/api/status", dependencies=[Depends(auth)])
    async def setup_status():
        version, channels_help = await asyncio.gather(cli.version(), cli.channels_add_help())
        return {
            "configured": supervisor.is_configured(),
            "gatewayTarget": settings.gateway_target,
            "openclawVersion": version.output.strip(),
            "channelsAddHelp": channels_help.output,
            "authGroups": AUTH_GROUPS,
            "gateway": supervisor.status(),
        }

    @app.post("/setup/api/run", dependencies=[Depends(auth)])
    async def setup_run(request: Request):
        body = await _json_body(request)
        try:
            payload = OnboardPayload.model_validate(body)
            ok, output = await run_onboarding(
                payload,
                settings=settings,
                cli=cli,
                supervisor=supervisor,
                token=token.value,
            )
        except Exception as e:
            logger.exception("Setup run failed")
            return JSONResponse({"ok": False, "output": f"Internal error: {e}"}, status_code=500)
        return JSONResponse({"ok": ok, "output": output}, status_code=200 if ok else 500)

    @app.get("/setup/api/debug", dependencies=[Depends(auth)])
    async def setup_debug():
        version, channels_help = await asyncio.gather(cli.version(), cli.channels_add_help())
        return {
            "wrapper": {
                "version": __version__,
                "python": platform.python_version(),
                "port": settings.port,
                "stateDir": str(settings.state_path),
                "workspaceDir": str(settings.workspace_path),
                "configPath": str(settings.config_path),
                "tokenSource": token.source,
                "gatewayTokenFromEnv": token.source == "env",
                "gatewayTokenPersisted": settings.token_path.exists(),
            },
            "openclaw": {
                "entry": settings.openclaw_entry,
                "node": settings.openclaw_node,
                "version": version.output.strip(),
                "channelsAddHelpIncludesTelegram": "telegram" in channels_help.output,
            },
            "gateway": supervisor.status(),
        }

    @app.post("/setup/api/pairing/approve", dependencies=[Depends(auth)])
    async def pairing_approve(request: Request):
        body = await _json_body(request)
        channel = str(body.get("channel") or "").strip()
        code = str(body.get("code") or "").strip()
        if not channel or not code:
            return JSONResponse({"ok": False, "error": "Missing channel or code"}, status_code=400)
        result = await cli.pairing_approve(channel, code)
        return JSONResponse({"ok": result.ok, "output": result.output}, status_code=200 if result.ok else 500)

    @app.post("/setup/api/reset", dependencies=[Depends(auth)])
    async def setup_reset():
        # Credentials, sessions and the workspace are kept.
        try:
            settings.config_path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Reset failed: {e}")
            return PlainTextResponse(str(e), status_code=500)
        logger.info(f"Deleted {settings.config_path}")
        return PlainTextResponse("OK - deleted config file. You can rerun setup now.")

    @app.post("/setup/api/restart", dependencies=[Depends(auth)])
    async def setup_restart():
        result = await supervisor.restart()
        return JSONResponse(result.to_dict(), status_code=200 if result.ok else 503)

    @app.get("/setup/export", dependencies=[Depends(auth)])
    async def setup_export():
        settings.state_path.mkdir(parents=True, exist_ok=True)
        settings.workspace_path.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(prefix="gatewrap-export-", suffix=".tar.gz", delete=False) as f:
            dest = Path(f.name)
        try:
            await asyncio.to_thread(write_backup, [settings.state_path, settings.workspace_path], dest)
        except OSError as e:
            dest.unlink(missing_ok=True)
            logger.error(f"Export failed: {e}")
            return PlainTextResponse(f"Export failed: {e}", status_code=500)
        return FileResponse(
            dest,
            media_type="application/gzip",
            filename=backup_filename(),
            background=BackgroundTask(dest.unlink, missing_ok=True),
        )

    # === Gateway proxy ===

    @app.api_route("/{path:path}", methods=PROXY_METHODS)
    async def proxy_http(request: Request, path: str):
        if not supervisor.is_configured():
            if not request.url.path.startswith("/setup"):
                return RedirectResponse("/setup", status_code=302)
            return PlainTextResponse("Not found", status_code=404)

        result = await supervisor.ensure_running()
        if not result.ok:
            return PlainTextResponse(f"Gateway not ready: {result.reason}", status_code=503)
        return await proxy.forward_http(request)

    @app.websocket("/{path:path}")
    async def proxy_ws(websocket: WebSocket, path: str):
        if not supervisor.is_configured():
            await websocket.close(code=WS_TRY_AGAIN_LATER)
            return
        result = await supervisor.ensure_running()
        if not result.ok:
            logger.warning(f"Refusing WebSocket {websocket.url.path}: {result.reason}")
            await websocket.close(code=WS_TRY_AGAIN_LATER)
            return
        await proxy.forward_websocket(websocket)

    return app
