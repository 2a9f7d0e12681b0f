from __future__ import annotations

import threading
from io import BytesIO
from typing import List, Optional

import numpy as np
import pytest
from PIL import Image

from model.lifecycle import ModelLoadError, ModelNotReadyError, write_demo_artifact
from pipeline.session import Upload


def encode_image(arr: np.ndarray, fmt: str = "PNG") -> bytes:
    buf = BytesIO()
    Image.fromarray(arr).save(buf, format=fmt)
    return buf.getvalue()


def gradient_rgb(h: int = 60, w: int = 80) -> np.ndarray:
    ys = np.linspace(0, 255, h, dtype=np.float64)[:, None]
    xs = np.linspace(0, 255, w, dtype=np.float64)[None, :]
    r = np.broadcast_to(ys, (h, w))
    g = np.broadcast_to(xs, (h, w))
    b = (r + g) / 2.0
    return np.stack([r, g, b], axis=-1).astype(np.uint8)


class ScriptedClassifier:
    """Returns scripted scores in call order and counts forward passes."""

    backend_name = "scripted"

    def __init__(self, scores: List[float], gate: Optional[threading.Event] = None):
        self.scores = list(scores)
        self.calls = 0
        self.gate = gate
        self.first_started = threading.Event()
        self._lock = threading.Lock()

    def forward(self, tensor: np.ndarray) -> np.ndarray:
        assert tensor.shape == (1, 224, 224, 3)
        with self._lock:
            idx = self.calls
            self.calls += 1
        if idx == 0:
            self.first_started.set()
            if self.gate is not None:
                self.gate.wait(timeout=10)
        score = self.scores[min(idx, len(self.scores) - 1)]
        return np.array([[score]], dtype=np.float32)


class ExplodingClassifier:
    backend_name = "exploding"

    def __init__(self):
        self.calls = 0

    def forward(self, tensor: np.ndarray) -> np.ndarray:
        self.calls += 1
        raise RuntimeError("forward pass failed")


class StubLifecycle:
    """Stands in for ModelLifecycle with a fixed classifier."""

    def __init__(self, classifier=None, failed: bool = False, loaded: bool = True):
        self.classifier = classifier
        self.failed = failed
        self.loaded = loaded
        self.closed = False

    @property
    def ready(self) -> bool:
        return self.loaded and self.classifier is not None and not self.failed

    async def load(self):
        if self.failed:
            raise ModelLoadError("stub load failure")
        self.loaded = True
        return self.classifier

    def require(self):
        if self.failed:
            raise ModelLoadError("stub load failure")
        if not self.loaded or self.classifier is None:
            raise ModelNotReadyError("Model not loaded yet - please wait and try again")
        return self.classifier

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def png_bytes() -> bytes:
    return encode_image(gradient_rgb())


@pytest.fixture
def png_upload(png_bytes) -> Upload:
    return Upload(filename="cell.png", data=png_bytes, content_type="image/png")


@pytest.fixture
def corrupt_upload() -> Upload:
    return Upload(filename="broken.png", data=b"\x89PNG\r\n\x1a\nnot really a png", content_type="image/png")


@pytest.fixture
def demo_model_dir(tmp_path):
    model_dir = tmp_path / "model"
    write_demo_artifact(str(model_dir))
    return model_dir
