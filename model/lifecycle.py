"""
lifecycle.py

Fetch-once model lifecycle for the client-side pipeline.

The artifact host serves a descriptor (model.json) next to the graph and
weight shard files it names:

    {
      "format": "onnx",
      "modelTopology": "model.onnx",
      "weightsManifest": [{"paths": ["model.onnx.data"]}],
      "inputShape": [1, 224, 224, 3]
    }

Files are resolved relative to the descriptor location, which may be an
http(s) URL or a local path. The lifecycle moves NOT_LOADED -> LOADED or
NOT_LOADED -> FAILED exactly once; a failed load is terminal and is never
retried automatically.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

import requests

from model.inference import Classifier, DemoCellClassifier, OnnxCellClassifier
from preprocessing.transforms import INPUT_SHAPE

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("onnx", "demo")
DEFAULT_MODEL_URL = "http://localhost:3001/model/model.json"


class ModelLoadError(RuntimeError):
    """The model artifact could not be fetched or deserialized."""


class ModelNotReadyError(RuntimeError):
    """A prediction was requested before the model finished loading."""


class ModelState(str, Enum):
    NOT_LOADED = "not_loaded"
    LOADED = "loaded"
    FAILED = "failed"


# ----------------------------
# Descriptor
# ----------------------------

@dataclass(frozen=True)
class ModelDescriptor:
    format: str
    model_topology: Optional[str] = None
    weight_paths: Tuple[str, ...] = field(default_factory=tuple)
    input_shape: Tuple[int, ...] = INPUT_SHAPE

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "ModelDescriptor":
        if not isinstance(payload, dict):
            raise ModelLoadError("Model descriptor must be a JSON object")

        fmt = payload.get("format")
        if fmt not in SUPPORTED_FORMATS:
            raise ModelLoadError(f"Unsupported model format: {fmt!r}")

        weight_paths: List[str] = []
        for group in payload.get("weightsManifest", []):
            weight_paths.extend(group.get("paths", []))

        topology = payload.get("modelTopology")
        if fmt == "onnx" and not topology:
            raise ModelLoadError("ONNX descriptor is missing 'modelTopology'")

        shape = tuple(int(d) for d in payload.get("inputShape", INPUT_SHAPE))
        return cls(
            format=fmt,
            model_topology=topology,
            weight_paths=tuple(weight_paths),
            input_shape=shape,
        )

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"format": self.format, "inputShape": list(self.input_shape)}
        if self.model_topology:
            out["modelTopology"] = self.model_topology
        if self.weight_paths:
            out["weightsManifest"] = [{"paths": list(self.weight_paths)}]
        return out

    def files(self) -> List[str]:
        names = [self.model_topology] if self.model_topology else []
        return names + list(self.weight_paths)


# ----------------------------
# Fetching
# ----------------------------

def _is_remote(location: str) -> bool:
    return urlparse(location).scheme in ("http", "https")


def resolve_artifact(descriptor_location: str, name: str) -> str:
    parts = PurePosixPath(name).parts
    if not parts or PurePosixPath(name).is_absolute() or ".." in parts:
        raise ModelLoadError(f"Artifact path escapes the model directory: {name!r}")
    if _is_remote(descriptor_location):
        return urljoin(descriptor_location, name)
    return str(Path(descriptor_location).parent / name)


class ArtifactFetcher:
    """
    Reads artifact bytes from the artifact host or the local filesystem.

    `session` is anything with a requests-style `get(url)` (a requests.Session
    in production, a TestClient in tests).
    """

    def __init__(self, session: Optional[Any] = None):
        self.session = session or requests.Session()

    def read(self, location: str) -> bytes:
        if _is_remote(location):
            response = self.session.get(location)
            response.raise_for_status()
            return response.content
        path = Path(location)
        if not path.exists():
            raise FileNotFoundError(f"Model artifact not found: {location}")
        return path.read_bytes()


# ----------------------------
# Lifecycle
# ----------------------------

class ModelLifecycle:
    def __init__(self, model_url: str, fetcher: Optional[ArtifactFetcher] = None):
        self.model_url = model_url
        self.fetcher = fetcher or ArtifactFetcher()
        self.state = ModelState.NOT_LOADED
        self.error: Optional[BaseException] = None
        self.descriptor: Optional[ModelDescriptor] = None
        self._classifier: Optional[Classifier] = None
        self._cache_dir: Optional[str] = None
        self._task: Optional[asyncio.Future] = None

    @property
    def ready(self) -> bool:
        return self.state is ModelState.LOADED

    async def load(self) -> Classifier:
        """Load the model once; concurrent callers share the same attempt."""
        if self._task is None:
            self._task = asyncio.ensure_future(self._load())
        return await self._task

    async def _load(self) -> Classifier:
        logger.info("Starting to load model from %s", self.model_url)
        try:
            classifier = await asyncio.to_thread(self._load_blocking)
        except Exception as e:
            self.state = ModelState.FAILED
            self.error = e
            self._remove_cache()
            logger.error("Error loading model from %s: %s", self.model_url, e)
            if isinstance(e, ModelLoadError):
                raise
            raise ModelLoadError(f"Failed to load model from {self.model_url}") from e

        self._classifier = classifier
        self.state = ModelState.LOADED
        logger.info("Model loaded successfully (%s)", classifier.backend_name)
        return classifier

    def _load_blocking(self) -> Classifier:
        raw = self.fetcher.read(self.model_url)
        try:
            payload = json.loads(raw)
        except ValueError as e:
            raise ModelLoadError("Model descriptor is not valid JSON") from e

        descriptor = ModelDescriptor.from_json(payload)
        if tuple(descriptor.input_shape) != INPUT_SHAPE:
            raise ModelLoadError(
                f"Model expects input shape {list(descriptor.input_shape)}, pipeline produces {list(INPUT_SHAPE)}"
            )
        self.descriptor = descriptor

        if descriptor.format == "demo":
            return DemoCellClassifier()

        self._cache_dir = tempfile.mkdtemp(prefix="leukoscan-model-")
        for name in descriptor.files():
            data = self.fetcher.read(resolve_artifact(self.model_url, name))
            target = Path(self._cache_dir) / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            logger.debug("Fetched %s (%d bytes)", name, len(data))

        return OnnxCellClassifier(str(Path(self._cache_dir) / descriptor.model_topology))

    def require(self) -> Classifier:
        if self.state is ModelState.FAILED:
            raise ModelLoadError("Model failed to load; reload to try again") from self.error
        if self._classifier is None:
            raise ModelNotReadyError("Model not loaded yet - please wait and try again")
        return self._classifier

    def _remove_cache(self) -> None:
        if self._cache_dir:
            shutil.rmtree(self._cache_dir, ignore_errors=True)
            self._cache_dir = None

    def close(self) -> None:
        self._remove_cache()


def write_demo_artifact(out_dir: str) -> str:
    """Write a weight-free demo descriptor; returns the descriptor path."""
    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, "model.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(ModelDescriptor(format="demo").to_json(), f, indent=2)
    return path


def main() -> None:
    parser = argparse.ArgumentParser(description="Check that a model artifact loads.")
    parser.add_argument("--model_url", default=None, help="Descriptor URL or path (model.json).")
    parser.add_argument("--init_demo", default=None, help="Write a demo descriptor into this directory.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    if args.init_demo:
        print(f"Wrote: {write_demo_artifact(args.init_demo)}")
        if not args.model_url:
            return

    url = args.model_url or os.environ.get("LEUKOSCAN_MODEL_URL", DEFAULT_MODEL_URL)
    lifecycle = ModelLifecycle(url)
    try:
        classifier = asyncio.run(lifecycle.load())
        print(f"Backend: {classifier.backend_name}")
        print(f"Input shape: {list(lifecycle.descriptor.input_shape)}")
    finally:
        lifecycle.close()


if __name__ == "__main__":
    main()
