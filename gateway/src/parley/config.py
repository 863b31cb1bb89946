from __future__ import annotations

import argparse
from dataclasses import dataclass

from .models import DEFAULT_AVATAR_TEMPLATE
from .sessions import DEFAULT_SESSION_TTL_MS


@dataclass
class GatewayConfig:
    host: str = "127.0.0.1"
    port: int = 3000
    data_path: str | None = None
    db_path: str | None = None
    upload_dir: str = "uploads"
    session_ttl_ms: int = DEFAULT_SESSION_TTL_MS
    ping_interval_s: int = 30
    ping_miss_limit: int = 2
    max_msg_size: int = 1_048_576
    avatar_template: str = DEFAULT_AVATAR_TEMPLATE
    log_level: str = "INFO"

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "GatewayConfig":
        return cls(
            host=args.host,
            port=args.port,
            data_path=args.data,
            db_path=args.db,
            upload_dir=args.upload_dir,
            session_ttl_ms=int(args.session_ttl * 1000),
            ping_interval_s=args.ping_interval,
            log_level=args.log_level,
        )


def add_serve_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind")
    parser.add_argument("--port", type=int, default=3000, help="Port to bind")
    storage = parser.add_mutually_exclusive_group()
    storage.add_argument("--data", type=str, default=None, help="Path to the JSON snapshot file")
    storage.add_argument("--db", type=str, default=None, help="Path to SQLite database for durability")
    parser.add_argument("--upload-dir", default="uploads", help="Directory for uploaded files")
    parser.add_argument(
        "--session-ttl",
        type=int,
        default=DEFAULT_SESSION_TTL_MS // 1000,
        help="Seconds a login session stays valid",
    )
    parser.add_argument(
        "--ping-interval",
        type=int,
        default=30,
        help="Seconds between heartbeat pings",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
