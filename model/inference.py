"""
inference.py

Single-image inference for blood-cell screening.

The classifier maps a [1, 224, 224, 3] float tensor to one probability that
the cell is abnormal. This module holds:

1) the classifier backends (ONNX Runtime for exported models, and a
   deterministic "demo" backend that needs no weights)
2) the forward pass + threshold rule that turns the raw score into a verdict

The demo backend is NOT a medical model. It exists so the plumbing
(loading, preprocessing, orchestration) can run end-to-end.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol

import numpy as np

THRESHOLD = 0.5


class PredictionError(RuntimeError):
    """Raised when a forward pass fails or yields an unusable score."""


class Label(str, Enum):
    NORMAL = "Normal"
    ABNORMAL = "Abnormal"


# ----------------------------
# Types / Contracts
# ----------------------------

@dataclass(frozen=True)
class Verdict:
    label: Label
    confidence: float
    score: float


class Classifier(Protocol):
    backend_name: str

    def forward(self, tensor: np.ndarray) -> np.ndarray:
        ...


def _sigmoid(z: float) -> float:
    return 1.0 / (1.0 + math.exp(-z))


# ----------------------------
# Demo backend (deterministic)
# ----------------------------

class DemoCellClassifier:
    """
    Deterministic, weight-free scoring backend.

    This is NOT a leukemia detector. It maps image intensity / contrast
    signals into a probability for demonstration purposes, so the repo is
    runnable without a trained artifact.
    """

    backend_name = "demo-statistical"

    def forward(self, tensor: np.ndarray) -> np.ndarray:
        """
        Args:
            tensor: float32 array of shape (1, H, W, 3) with values in [0, 1]

        Returns:
            float32 array of shape (1, 1)
        """
        if tensor.ndim != 4 or tensor.shape[-1] != 3:
            raise ValueError("Expected tensor shape (1, H, W, 3)")

        mean = float(tensor.mean(dtype=np.float64))
        std = float(tensor.std(dtype=np.float64))
        z = (std * 6.0) - (mean * 2.0) - 1.0
        return np.array([[_sigmoid(z)]], dtype=np.float32)


# ----------------------------
# ONNX backend
# ----------------------------

class OnnxCellClassifier:
    """Exported classifier executed with ONNX Runtime on CPU."""

    backend_name = "onnxruntime"

    def __init__(self, graph_path: str, providers: Optional[List[str]] = None):
        import onnxruntime as ort

        self.session = ort.InferenceSession(
            graph_path,
            providers=providers or ["CPUExecutionProvider"],
        )
        self.input_name = self.session.get_inputs()[0].name
        self.output_name = self.session.get_outputs()[0].name

    def forward(self, tensor: np.ndarray) -> np.ndarray:
        return self.session.run([self.output_name], {self.input_name: tensor})[0]


# ----------------------------
# Threshold rule
# ----------------------------

def interpret_score(score: float) -> Verdict:
    """
    Normal iff score < 0.5; confidence is the probability mass of the
    chosen label.
    """
    score = float(score)
    if not math.isfinite(score) or score < 0.0 or score > 1.0:
        raise PredictionError(f"Model score outside [0, 1]: {score!r}")

    if score < THRESHOLD:
        return Verdict(label=Label.NORMAL, confidence=1.0 - score, score=score)
    return Verdict(label=Label.ABNORMAL, confidence=score, score=score)


def predict(classifier: Classifier, tensor: np.ndarray) -> Verdict:
    """Run one forward pass and interpret its first output value."""
    output = np.asarray(classifier.forward(tensor))
    if output.size == 0:
        raise PredictionError("Model returned an empty output tensor")
    score = float(output.reshape(-1)[0])
    del output
    return interpret_score(score)
