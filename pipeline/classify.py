"""
classify.py

Command-line front end for the screening pipeline.

Loads the model once from the artifact host, then feeds each image as its own
upload (one image per run, no batching) and prints what the page would show.

Usage:
    python -m host.app --static_dir ./public      # serves /model/model.json
    python -m pipeline.classify cell1.png cell2.jpg
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from model.lifecycle import ModelLifecycle
from pipeline.config import PipelineConfig
from pipeline.render import render_session
from pipeline.session import Session, Upload

logger = logging.getLogger(__name__)


async def run(model_url: str, image_paths: List[str]) -> int:
    lifecycle = ModelLifecycle(model_url)
    session = Session(lifecycle)
    failures = 0
    try:
        if not await session.start():
            print(render_session(session))
            return 2

        for path in image_paths:
            try:
                upload = Upload.from_path(path)
            except OSError as e:
                logger.error("Cannot read %s: %s", path, e)
                failures += 1
                continue

            result = await session.select_file(upload)
            print(render_session(session))
            if result is None:
                failures += 1
                print(f"No result for {path}: {session.last_error.message}")
            print()
    finally:
        lifecycle.close()

    return 1 if failures else 0


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Classify blood-cell images as Normal/Abnormal.")
    parser.add_argument("images", nargs="+", help="Image files (JPG, PNG, GIF).")
    parser.add_argument("--model_url", default=None, help="Model descriptor URL or path (model.json).")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    model_url = args.model_url or PipelineConfig.from_env().model_url
    sys.exit(asyncio.run(run(model_url, args.images)))


if __name__ == "__main__":
    main()
