"""Reverse proxy to the loopback gateway, stamping every request with the bearer token."""

from __future__ import annotations

import asyncio

import httpx
import websockets
from fastapi import Request, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from loguru import logger
from starlette.background import BackgroundTask
from starlette.websockets import WebSocketState
from websockets.exceptions import ConnectionClosed, WebSocketException

from gatewrap.config.schema import Settings

HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}
_REQUEST_DROP = HOP_BY_HOP | {"host", "content-length", "authorization"}
_RESPONSE_DROP = HOP_BY_HOP | {"content-length"}
# Headers the websockets client sets itself during the handshake.
_WS_DROP = HOP_BY_HOP | {
    "host",
    "authorization",
    "sec-websocket-key",
    "sec-websocket-version",
    "sec-websocket-extensions",
    "sec-websocket-protocol",
}


def _target_path(path: str, query: str) -> str:
    return f"{path}?{query}" if query else path


class GatewayProxy:
    """Forward HTTP requests and WebSocket sessions to the internal gateway."""

    def __init__(self, settings: Settings, token: str, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self.token = token
        self.client = client or httpx.AsyncClient(
            base_url=settings.gateway_target,
            timeout=httpx.Timeout(30.0, read=None),
            follow_redirects=False,
        )

    @property
    def bearer(self) -> str:
        return f"Bearer {self.token}"

    def _forwarded(self, headers: dict[str, str], client_host: str | None, scheme: str, host: str | None) -> None:
        if client_host:
            prior = headers.get("x-forwarded-for")
            headers["x-forwarded-for"] = f"{prior}, {client_host}" if prior else client_host
        headers.setdefault("x-forwarded-proto", scheme)
        if host:
            headers.setdefault("x-forwarded-host", host)

    def upstream_headers(self, request: Request) -> dict[str, str]:
        headers = {k: v for k, v in request.headers.items() if k.lower() not in _REQUEST_DROP}
        client_host = request.client.host if request.client else None
        self._forwarded(headers, client_host, request.url.scheme, request.headers.get("host"))
        headers["authorization"] = self.bearer
        return headers

    async def forward_http(self, request: Request) -> Response:
        target = _target_path(request.url.path, request.url.query)
        body = await request.body()
        upstream = self.client.build_request(
            request.method,
            target,
            headers=self.upstream_headers(request),
            content=body or None,
        )
        logger.debug(f"Proxy HTTP {request.method} {target}")
        try:
            resp = await self.client.send(upstream, stream=True)
        except httpx.HTTPError as e:
            logger.error(f"Proxy error for {request.method} {target}: {e}")
            return PlainTextResponse("Bad gateway", status_code=502)

        response = StreamingResponse(
            resp.aiter_raw(),
            status_code=resp.status_code,
            background=BackgroundTask(resp.aclose),
        )
        response.raw_headers = [
            (key, value)
            for key, value in resp.headers.raw
            if key.decode("latin-1").lower() not in _RESPONSE_DROP
        ]
        return response

    async def forward_websocket(self, websocket: WebSocket) -> None:
        """Bridge a client WebSocket to the gateway until either side closes."""
        url = self.settings.gateway_ws_target + _target_path(websocket.url.path, websocket.url.query)
        headers = {k: v for k, v in websocket.headers.items() if k.lower() not in _WS_DROP}
        client_host = websocket.client.host if websocket.client else None
        scheme = "https" if websocket.url.scheme == "wss" else "http"
        self._forwarded(headers, client_host, scheme, websocket.headers.get("host"))
        headers["authorization"] = self.bearer
        subprotocols = list(websocket.scope.get("subprotocols") or [])

        try:
            async with websockets.connect(
                url,
                additional_headers=headers,
                subprotocols=subprotocols or None,
                max_size=None,
                open_timeout=10,
                ping_interval=20,
                ping_timeout=20,
            ) as upstream:
                await websocket.accept(subprotocol=upstream.subprotocol)
                await self._pump(websocket, upstream)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            logger.error(f"WebSocket proxy error for {websocket.url.path}: {e}")
        finally:
            if websocket.client_state == WebSocketState.CONNECTING:
                await websocket.close(code=1011)
            elif websocket.client_state == WebSocketState.CONNECTED:
                try:
                    await websocket.close(code=1000)
                except RuntimeError:
                    pass

    async def _pump(self, websocket: WebSocket, upstream) -> None:
        async def client_to_gateway() -> None:
            try:
                while True:
                    message = await websocket.receive()
                    if message["type"] == "websocket.disconnect":
                        break
                    if message.get("text") is not None:
                        await upstream.send(message["text"])
                    elif message.get("bytes") is not None:
                        await upstream.send(message["bytes"])
            except (WebSocketDisconnect, ConnectionClosed):
                pass
            await upstream.close()

        async def gateway_to_client() -> None:
            try:
                async for message in upstream:
                    if isinstance(message, str):
                        await websocket.send_text(message)
                    else:
                        await websocket.send_bytes(message)
            except ConnectionClosed as e:
                logger.debug(f"Gateway WebSocket closed: {e}")

        tasks = [asyncio.create_task(client_to_gateway()), asyncio.create_task(gateway_to_client())]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.warning(f"WebSocket bridge ended with error: {task.exception()}")

    async def aclose(self) -> None:
        await self.client.aclose()
