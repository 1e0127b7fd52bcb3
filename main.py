"""
Entrypoint to run the deer-nodes FastAPI backend.

Usage examples:
    python main.py
    python main.py --port 9000 --reload
    python main.py --log-level DEBUG
"""

from __future__ import annotations

import argparse
import os
from typing import List, Optional

import uvicorn

from config.settings import load_settings
from utils.logging_config import setup_logging


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Run the deer-nodes backend")
    default_host = os.environ.get("HOST", "0.0.0.0")
    default_port = int(os.environ.get("PORT", "8000"))
    parser.add_argument("--host", default=default_host, help=f"Backend host (default: {default_host})")
    parser.add_argument("--port", type=int, default=default_port, help=f"Backend port (default: {default_port})")
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help=f"Log level (default: {settings.log_level})",
    )
    parser.add_argument("--reload", action="store_true", help="Restart the server on source changes")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    print(f"Starting backend on http://{args.host}:{args.port}")
    uvicorn.run(
        "server.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
