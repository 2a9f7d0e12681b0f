"""
session.py

Upload orchestration for the screening page.

One Session owns the loaded model and the single "currently displayed"
result slot. Every upload (file picker or drag-and-drop) becomes an
independent run:

    IDLE -> DECODING -> PREDICTING -> DONE
    DECODING | PREDICTING -> IDLE            (on failure)

Runs are not queued or cancelled. Each run carries a sequence number and the
display slot only accepts results from a run at least as new as the one
currently shown, so a slow older run never overwrites a newer result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import numpy as np

from model.inference import Classifier, Label, Verdict, predict
from model.lifecycle import ModelLifecycle, ModelLoadError, ModelNotReadyError
from preprocessing.decode import DecodeError, decode_image_async, guess_content_type, is_image_mime
from preprocessing.transforms import to_input_tensor

logger = logging.getLogger(__name__)


class UploadState(str, Enum):
    IDLE = "idle"
    DECODING = "decoding"
    PREDICTING = "predicting"
    DONE = "done"


class ErrorKind(str, Enum):
    MODEL_LOAD_FAILURE = "model_load_failure"
    MODEL_NOT_READY = "model_not_ready"
    DECODE_FAILURE = "decode_failure"
    PREDICTION_FAILURE = "prediction_failure"


# ----------------------------
# Types / Contracts
# ----------------------------

@dataclass(frozen=True)
class Upload:
    filename: str
    data: bytes
    content_type: Optional[str] = None

    @classmethod
    def from_path(cls, path: str) -> "Upload":
        p = Path(path)
        return cls(filename=p.name, data=p.read_bytes(), content_type=guess_content_type(p.name))


@dataclass(frozen=True)
class PredictionResult:
    label: Label
    confidence: float
    processing_time: float  # seconds
    sequence: int


@dataclass(frozen=True)
class UploadError:
    kind: ErrorKind
    message: str
    sequence: Optional[int] = None

    @property
    def fatal(self) -> bool:
        return self.kind is ErrorKind.MODEL_LOAD_FAILURE


# ----------------------------
# Session
# ----------------------------

class Session:
    def __init__(self, lifecycle: ModelLifecycle, clock: Callable[[], float] = time.perf_counter):
        self.lifecycle = lifecycle
        self.state = UploadState.IDLE
        self.loading = False
        self.preview: Optional[Upload] = None
        self.current: Optional[PredictionResult] = None
        self.last_error: Optional[UploadError] = None
        self._clock = clock
        self._started_sequence = 0
        self._displayed_sequence = 0
        self._in_flight = 0

    async def start(self) -> bool:
        """Load the model; returns False if the session is now degraded."""
        try:
            await self.lifecycle.load()
        except ModelLoadError as e:
            self._report(ErrorKind.MODEL_LOAD_FAILURE, e)
            return False
        return True

    async def select_file(self, upload: Upload) -> Optional[PredictionResult]:
        return await self.handle_upload(upload)

    async def drop_file(self, upload: Upload) -> Optional[PredictionResult]:
        return await self.handle_upload(upload)

    async def handle_upload(self, upload: Upload) -> Optional[PredictionResult]:
        self.preview = upload

        try:
            classifier = self.lifecycle.require()
        except ModelNotReadyError as e:
            logger.error("Model not loaded yet - please wait and try again")
            self._report(ErrorKind.MODEL_NOT_READY, e)
            return None
        except ModelLoadError as e:
            self._report(ErrorKind.MODEL_LOAD_FAILURE, e)
            return None

        self._started_sequence += 1
        seq = self._started_sequence
        self._in_flight += 1
        self.loading = True

        try:
            self._set_state(seq, UploadState.DECODING)
            logger.info("Processing image %s (run %d)", upload.filename, seq)
            if not is_image_mime(upload.content_type):
                raise DecodeError(f"Not an image upload: {upload.content_type or 'unknown type'}")
            pixels = await decode_image_async(upload.data)

            self._set_state(seq, UploadState.PREDICTING)
            started = self._clock()
            verdict = await asyncio.to_thread(_classify, classifier, pixels)
            elapsed = self._clock() - started
        except DecodeError as e:
            self._fail(seq, ErrorKind.DECODE_FAILURE, e)
            return None
        except Exception as e:
            self._fail(seq, ErrorKind.PREDICTION_FAILURE, e)
            return None
        finally:
            self._in_flight -= 1
            self.loading = self._in_flight > 0

        result = PredictionResult(
            label=verdict.label,
            confidence=verdict.confidence,
            processing_time=elapsed,
            sequence=seq,
        )
        logger.info("Prediction complete (run %d): %s %.4f", seq, result.label.value, result.confidence)
        self._display(seq, result)
        self._set_state(seq, UploadState.DONE)
        return result

    # ----------------------------
    # Display slot
    # ----------------------------

    def _set_state(self, seq: int, state: UploadState) -> None:
        if seq == self._started_sequence:
            self.state = state

    def _display(self, seq: int, result: PredictionResult) -> None:
        if seq < self._displayed_sequence:
            logger.info("Discarding stale result from run %d (run %d is displayed)", seq, self._displayed_sequence)
            return
        self._displayed_sequence = seq
        self.current = result
        self.last_error = None

    def _fail(self, seq: int, kind: ErrorKind, error: BaseException) -> None:
        logger.error("Error during upload/prediction (run %d): %s", seq, error, exc_info=error)
        self._set_state(seq, UploadState.IDLE)
        if seq < self._displayed_sequence:
            return
        self._displayed_sequence = seq
        self.current = None
        self._report(kind, error, seq)

    def _report(self, kind: ErrorKind, error: BaseException, seq: Optional[int] = None) -> None:
        self.last_error = UploadError(kind=kind, message=str(error), sequence=seq)


def _classify(classifier: Classifier, pixels: np.ndarray) -> Verdict:
    tensor = to_input_tensor(pixels)
    try:
        return predict(classifier, tensor)
    finally:
        del tensor
