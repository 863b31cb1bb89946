from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable
from urllib.parse import unquote

from aiohttp import WSCloseCode, WSMsgType, web

from . import protocol as p
from .auth import PBKDF2_ITERATIONS, AuthService
from .config import GatewayConfig
from .errors import AuthenticationRequired, GatewayError, ValidationFailure
from .models import User
from .presence import PresenceRegistry
from .router import ConversationRouter
from .session_gateway import SessionGateway
from .sessions import SessionStore
from .sqlite_backend import SQLiteBackend
from .sqlite_sessions import SQLiteSessionStore
from .sqlite_store import SQLiteSnapshotStore
from .store import InMemorySnapshotStore, JsonFileSnapshotStore, SnapshotStore
from .uploads import UploadStore

logger = logging.getLogger(__name__)

SESSION_COOKIE = "user_session"
OUTBOUND_QUEUE_SIZE = 1000


class Runtime:
    def __init__(
        self,
        *,
        store: SnapshotStore,
        sessions,
        presence: PresenceRegistry,
        router: ConversationRouter,
        gateway: SessionGateway,
        auth: AuthService,
        uploads: UploadStore,
        backend: SQLiteBackend | None = None,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.presence = presence
        self.router = router
        self.gateway = gateway
        self.auth = auth
        self.uploads = uploads
        self.backend = backend


def _session_token(request: web.Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[len("Bearer ") :].strip() or None
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    return request.query.get("token") or None


def _current_user(request: web.Request) -> User:
    runtime: Runtime = request.app["runtime"]
    return runtime.auth.current_user(_session_token(request))


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationFailure("malformed json") from None
    if not isinstance(body, dict):
        raise ValidationFailure("malformed json")
    return body


@web.middleware
async def error_middleware(
    request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
) -> web.StreamResponse:
    try:
        return await handler(request)
    except GatewayError as exc:
        if isinstance(exc, AuthenticationRequired):
            logger.debug("unauthenticated request to %s", request.path)
        return web.json_response({"error": exc.text, "code": exc.code}, status=exc.status)


def _with_session_cookie(response: web.Response, runtime: Runtime, token: str) -> web.Response:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        httponly=True,
        max_age=runtime.sessions.ttl_ms // 1000,
        samesite="Lax",
    )
    return response


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


async def handle_register(request: web.Request) -> web.Response:
    runtime: Runtime = request.app["runtime"]
    body = await _json_body(request)
    user, session = runtime.auth.register(body.get("username"), body.get("password"))
    response = web.json_response(
        {"message": "User registered successfully", "userId": user.id, "token": session.session_token},
        status=201,
    )
    return _with_session_cookie(response, runtime, session.session_token)


async def handle_login(request: web.Request) -> web.Response:
    runtime: Runtime = request.app["runtime"]
    body = await _json_body(request)
    user, session = runtime.auth.login(body.get("username"), body.get("password"))
    response = web.json_response(
        {"message": "Logged in successfully", "userId": user.id, "token": session.session_token}
    )
    return _with_session_cookie(response, runtime, session.session_token)


async def handle_logout(request: web.Request) -> web.Response:
    runtime: Runtime = request.app["runtime"]
    runtime.auth.logout(_session_token(request))
    response = web.json_response({"message": "Logged out successfully"})
    response.del_cookie(SESSION_COOKIE)
    return response


async def handle_me(request: web.Request) -> web.Response:
    return web.json_response(_current_user(request).to_public())


async def handle_search_users(request: web.Request) -> web.Response:
    runtime: Runtime = request.app["runtime"]
    user = _current_user(request)
    return web.json_response(runtime.auth.search_users(user, request.query.get("query")))


async def handle_update_avatar(request: web.Request) -> web.Response:
    runtime: Runtime = request.app["runtime"]
    user = _current_user(request)
    body = await _json_body(request)
    updated = runtime.auth.update_avatar(user, body.get("newAvatarUrl"))
    runtime.gateway.announce(updated.id)
    return web.json_response({"message": "Avatar updated successfully", "user": updated.to_public()})


async def handle_update_username(request: web.Request) -> web.Response:
    runtime: Runtime = request.app["runtime"]
    user = _current_user(request)
    body = await _json_body(request)
    updated = runtime.auth.update_username(user, body.get("username"))
    runtime.gateway.announce(updated.id)
    return web.json_response({"message": "Username updated successfully", "user": updated.to_public()})


async def handle_upload(request: web.Request) -> web.Response:
    runtime: Runtime = request.app["runtime"]
    _current_user(request)
    form = await request.post()
    field = form.get("file")
    if field is None or isinstance(field, str):
        raise ValidationFailure("No file")
    data = field.file.read()
    # newer aiohttp clients percent-encode multipart filenames
    filename = unquote(field.filename or "") or "upload"
    stored = runtime.uploads.store(data, filename, field.content_type)
    return web.json_response(stored)


def _build_stores(config: GatewayConfig) -> tuple[SnapshotStore, Any, SQLiteBackend | None]:
    if config.db_path is not None:
        backend = SQLiteBackend(config.db_path)
        sessions = SQLiteSessionStore(backend, ttl_ms=config.session_ttl_ms)
        sessions.purge_expired()
        return SQLiteSnapshotStore(backend), sessions, backend
    sessions = SessionStore(ttl_ms=config.session_ttl_ms)
    if config.data_path is not None:
        return JsonFileSnapshotStore(config.data_path), sessions, None
    return InMemorySnapshotStore(), sessions, None


def create_app(
    config: GatewayConfig | None = None,
    *,
    store: SnapshotStore | None = None,
    password_iterations: int = PBKDF2_ITERATIONS,
) -> web.Application:
    config = config or GatewayConfig()
    built_store, sessions, backend = _build_stores(config)
    store = store or built_store

    presence = PresenceRegistry()
    router = ConversationRouter(store, presence, avatar_template=config.avatar_template)
    gateway = SessionGateway(sessions, router)
    auth = AuthService(store, sessions, avatar_template=config.avatar_template, iterations=password_iterations)
    uploads = UploadStore(config.upload_dir)
    runtime = Runtime(
        store=store,
        sessions=sessions,
        presence=presence,
        router=router,
        gateway=gateway,
        auth=auth,
        uploads=uploads,
        backend=backend,
    )

    app = web.Application(middlewares=[error_middleware], client_max_size=uploads.max_bytes + 65536)
    app["runtime"] = runtime
    app["ws_config"] = {
        "ping_interval_s": config.ping_interval_s,
        "ping_miss_limit": config.ping_miss_limit,
        "max_msg_size": config.max_msg_size,
    }
    app.router.add_get("/healthz", handle_health)
    app.router.add_post("/api/register", handle_register)
    app.router.add_post("/api/login", handle_login)
    app.router.add_post("/api/logout", handle_logout)
    app.router.add_get("/api/me", handle_me)
    app.router.add_get("/api/search_users", handle_search_users)
    app.router.add_post("/api/update_avatar", handle_update_avatar)
    app.router.add_post("/api/update_username", handle_update_username)
    app.router.add_post("/api/upload", handle_upload)
    app.router.add_static(uploads.url_prefix, uploads.directory)
    app.router.add_get("/v1/ws", websocket_handler)

    async def close_store(_: web.Application) -> None:
        if backend is not None:
            backend.close()
        else:
            store.close()

    app.on_cleanup.append(close_store)
    return app


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    runtime: Runtime = request.app["runtime"]
    ws_config: dict[str, Any] = request.app["ws_config"]

    ws = web.WebSocketResponse(max_msg_size=ws_config["max_msg_size"])
    await ws.prepare(request)

    loop = asyncio.get_running_loop()
    last_activity = loop.time()
    missed_heartbeats = 0
    outbound: asyncio.Queue[dict | None] = asyncio.Queue(maxsize=OUTBOUND_QUEUE_SIZE)
    closed = False

    async def close_with_error(message: str) -> None:
        nonlocal closed
        if closed:
            return
        closed = True
        await ws.close(code=WSCloseCode.INTERNAL_ERROR, message=message.encode("utf-8"))

    def mark_activity() -> None:
        nonlocal last_activity, missed_heartbeats
        last_activity = loop.time()
        missed_heartbeats = 0

    def enqueue(frame: dict) -> None:
        try:
            outbound.put_nowait(frame)
        except asyncio.QueueFull:
            asyncio.create_task(close_with_error("backpressure"))

    connection = runtime.gateway.open(_session_token(request), enqueue)
    if connection is None:
        await ws.close(code=WSCloseCode.POLICY_VIOLATION, message=b"authentication required")
        return ws

    async def writer() -> None:
        try:
            while True:
                frame = await outbound.get()
                if frame is None:
                    break
                await ws.send_json(frame)
        except (asyncio.CancelledError, ConnectionResetError):
            return

    async def heartbeat() -> None:
        nonlocal missed_heartbeats
        try:
            while True:
                await asyncio.sleep(ws_config["ping_interval_s"])
                if ws.closed:
                    return
                if loop.time() - last_activity >= ws_config["ping_interval_s"]:
                    enqueue(p.frame(p.PING))
                    missed_heartbeats += 1
                    if missed_heartbeats > ws_config["ping_miss_limit"]:
                        await ws.close(code=WSCloseCode.GOING_AWAY, message=b"heartbeat timeout")
                        return
        except asyncio.CancelledError:
            return

    writer_task = asyncio.create_task(writer())
    heartbeat_task = asyncio.create_task(heartbeat())

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                mark_activity()
                try:
                    frame = msg.json()
                except ValueError:
                    enqueue(p.error_frame("invalid_request", "malformed json"))
                    continue
                if not isinstance(frame, dict):
                    enqueue(p.error_frame("invalid_request", "frame must be an object"))
                    continue
                request_id = frame.get("id")
                if frame.get("v") != p.PROTOCOL_VERSION:
                    enqueue(p.error_frame("invalid_request", "unsupported version", request_id=request_id))
                    continue

                frame_type = frame.get("t")
                if frame_type == p.PING:
                    enqueue(p.frame(p.PONG, request_id=request_id))
                elif frame_type == p.PONG:
                    continue
                elif isinstance(frame_type, str):
                    runtime.gateway.handle(connection, frame_type, frame.get("body"), request_id=request_id)
                else:
                    enqueue(p.error_frame("invalid_request", "unknown frame type", request_id=request_id))
            elif msg.type in {WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR}:
                break
            else:
                await ws.close(code=WSCloseCode.UNSUPPORTED_DATA, message=b"unsupported frame type")
                break
    finally:
        heartbeat_task.cancel()
        runtime.gateway.close(connection)
        try:
            outbound.put_nowait(None)
        except asyncio.QueueFull:
            writer_task.cancel()
        await asyncio.gather(heartbeat_task, writer_task, return_exceptions=True)

    return ws
