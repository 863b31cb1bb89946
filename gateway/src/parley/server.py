"""Command line entry point: run the server or replay scripted sessions offline."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Callable, Iterable, TextIO

from aiohttp import web

from .auth import AuthService
from .config import GatewayConfig, add_serve_arguments
from .presence import Connection, PresenceRegistry
from .router import ConversationRouter
from .session_gateway import SessionGateway
from .sessions import SessionStore
from .store import InMemorySnapshotStore
from .ws_transport import create_app

SIMULATION_HASH_ITERATIONS = 1_000


def _resolve_refs(value: Any, user_ids: dict[str, str]) -> Any:
    """Replace ``"@name"`` strings with the id registered for ``name``."""

    if isinstance(value, str) and value.startswith("@") and value[1:] in user_ids:
        return user_ids[value[1:]]
    if isinstance(value, list):
        return [_resolve_refs(item, user_ids) for item in value]
    if isinstance(value, dict):
        return {key: _resolve_refs(item, user_ids) for key, item in value.items()}
    return value


def simulate(frames: Iterable[dict], output: TextIO) -> None:
    """Drive the messaging core from JSON frames and emit every delivered frame.

    Supported frames: ``register`` (username, password), ``connect`` and
    ``disconnect`` (user), and any client intent addressed with ``user`` and an
    optional ``body``. Output lines are ``{"user", "t", "body"}``.
    """

    store = InMemorySnapshotStore()
    sessions = SessionStore()
    presence = PresenceRegistry()
    router = ConversationRouter(store, presence)
    gateway = SessionGateway(sessions, router)
    auth = AuthService(store, sessions, iterations=SIMULATION_HASH_ITERATIONS)

    tokens: dict[str, str] = {}
    user_ids: dict[str, str] = {}
    connections: dict[str, Connection] = {}

    def sink_for(username: str) -> Callable[[dict], None]:
        def _sink(frame: dict) -> None:
            line = {"user": username, "t": frame["t"], "body": frame.get("body")}
            output.write(json.dumps(line) + "\n")

        return _sink

    for frame in frames:
        frame_type = frame.get("t")
        if frame_type == "register":
            user, session = auth.register(frame["username"], frame["password"])
            tokens[user.username] = session.session_token
            user_ids[user.username] = user.id
        elif frame_type == "connect":
            username = frame["user"]
            connection = gateway.open(tokens.get(username), sink_for(username))
            if connection is None:
                raise ValueError(f"unknown user: {username}")
            connections[username] = connection
        elif frame_type == "disconnect":
            connection = connections.pop(frame["user"], None)
            if connection is not None:
                gateway.close(connection)
        elif frame_type in router.intents:
            username = frame.get("user")
            connection = connections.get(username)
            if connection is None:
                raise ValueError(f"user is not connected: {username}")
            gateway.handle(connection, frame_type, _resolve_refs(frame.get("body"), user_ids))
        else:
            raise ValueError(f"unsupported frame type: {frame_type}")


def _load_frames(handle: TextIO) -> Iterable[dict]:
    """Accept a JSON array, a single frame object, or one frame per line."""

    content = handle.read()
    lines = [line for line in content.splitlines() if line.strip()]
    if not lines:
        return []
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        return [json.loads(line) for line in lines]
    return parsed if isinstance(parsed, list) else [parsed]


def _run_simulation(args: argparse.Namespace, output: TextIO) -> int:
    if args.file is None:
        frames = _load_frames(sys.stdin)
    else:
        with args.file:
            frames = _load_frames(args.file)
    simulate(frames, output)
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    config = GatewayConfig.from_args(args)
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(config)
    web.run_app(app, host=config.host, port=config.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="parley", description="Real-time messaging server")
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate_parser = subparsers.add_parser("simulate", help="Replay scripted client frames offline")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON frames file; defaults to stdin",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the aiohttp messaging server")
    add_serve_arguments(serve_parser)
    return parser


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Run the ``parley`` command line; returns the process exit code."""

    args = build_parser().parse_args(sys.argv[1:] if argv is None else argv)
    if args.command == "simulate":
        return _run_simulation(args, output or sys.stdout)
    return _run_serve(args)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
