#!/usr/bin/env python3
"""Serve the Recmatcher mock backend with uvicorn."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import uvicorn

from src.service import config
from src.service.app import app, load_project
from src.service.project import ProjectNotFound


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recmatcher mock backend")
    parser.add_argument("--host", default=config.HOST)
    parser.add_argument("--port", type=int, default=config.PORT)
    parser.add_argument("--project", help="Project root holding a recmatch_project.json fixture")
    parser.add_argument("--log-level", default=config.LOG_LEVEL)
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="[%(levelname)s] %(name)s: %(message)s")

    if args.project:
        try:
            load_project(args.project)
        except (ProjectNotFound, ValueError) as error:
            logging.error("%s", error)
            return 2

    print(f"Mock backend listening on http://{args.host}:{args.port}", flush=True)
    server = uvicorn.Server(uvicorn.Config(app, host=args.host, port=args.port, log_level=args.log_level.lower()))
    server.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
