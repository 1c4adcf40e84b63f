#!/usr/bin/env python3
"""
Launch the session intelligence webhook sink.
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path

import uvicorn


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the session intelligence webhook sink.",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Sink bind host.")
    parser.add_argument("--port", type=int, default=8766, help="Sink bind port.")
    parser.add_argument(
        "--db-path",
        default=None,
        help="Override session store path. Default: ./output/session_intel.db.",
    )
    parser.add_argument(
        "--archive-dir",
        default=None,
        help="Override audio archive directory. Default: ./output/audio.",
    )
    parser.add_argument(
        "--webhook-secret",
        default=None,
        help="Shared secret for webhook signature checks (RECALL_WEBHOOK_SECRET).",
    )
    parser.add_argument(
        "--notify-webhook-url",
        default=None,
        help="HTTP endpoint receiving notification payloads.",
    )
    parser.add_argument("--log-level", default="info", help="Uvicorn log level.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()

    os.environ["SINK_HOST"] = args.host
    os.environ["SINK_PORT"] = str(args.port)
    if args.db_path:
        os.environ["SESSION_DB_PATH"] = str(Path(args.db_path).expanduser())
    if args.archive_dir:
        os.environ["ARCHIVE_DIR"] = str(Path(args.archive_dir).expanduser())
    if args.webhook_secret:
        os.environ["RECALL_WEBHOOK_SECRET"] = args.webhook_secret
    if args.notify_webhook_url:
        os.environ["NOTIFY_WEBHOOK_URL"] = args.notify_webhook_url

    from webhook_sink import RUNTIME_CONFIG, app  # Import after env config

    print(
        f"Starting session intelligence sink bind=http://{args.host}:{args.port} "
        f"db={RUNTIME_CONFIG.db_path} archive_dir={RUNTIME_CONFIG.archive_dir}"
    )
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
