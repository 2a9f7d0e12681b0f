"""
host/app.py

Artifact host for the screening page.

Serves one static directory (page bundle + exported model descriptor and
weight shards) with permissive CORS so the page can fetch the model from any
origin. There is no inference or business logic here.

Usage:
    python -m host.app --static_dir ./public --port 3001
"""

from __future__ import annotations

import argparse
import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3001

# Model artifacts: descriptor is JSON, graph and weight shards are opaque bytes.
mimetypes.add_type("application/json", ".json")
mimetypes.add_type("application/octet-stream", ".bin")
mimetypes.add_type("application/octet-stream", ".onnx")
mimetypes.add_type("application/octet-stream", ".data")


@dataclass(frozen=True)
class HostConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    static_dir: str = "."

    @classmethod
    def from_env(cls) -> "HostConfig":
        return cls(
            port=int(os.environ.get("LEUKOSCAN_PORT", DEFAULT_PORT)),
            static_dir=os.environ.get("LEUKOSCAN_STATIC_DIR", "."),
        )


def create_app(static_dir: str) -> FastAPI:
    root = Path(static_dir).resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"Static directory not found: {static_dir}")

    app = FastAPI(
        title="Leukemia Screening Artifact Host (Demo)",
        description="Static host for the screening page and its exported model (non-diagnostic).",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok", "static_dir": str(root)}

    # Registered last so /health is matched before the catch-all mount.
    app.mount("/", StaticFiles(directory=str(root), html=True), name="static")

    logger.info("Serving %s", root)
    return app


def app_from_env() -> FastAPI:
    """Factory for `uvicorn host.app:app_from_env --factory`."""
    return create_app(HostConfig.from_env().static_dir)


def main(argv: Optional[List[str]] = None) -> None:
    defaults = HostConfig.from_env()
    parser = argparse.ArgumentParser(description="Serve the screening page and model artifacts.")
    parser.add_argument("--static_dir", default=defaults.static_dir, help="Directory to serve at '/'.")
    parser.add_argument("--host", default=defaults.host)
    parser.add_argument("--port", type=int, default=defaults.port)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)

    server_app = create_app(args.static_dir)
    logger.info("Server running on port %d", args.port)
    uvicorn.run(server_app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
