"""Text rendering of session state, mirroring what the screening page shows."""

from __future__ import annotations

from typing import List

from pipeline.session import ErrorKind, PredictionResult, Session

LOADING_MODEL_MESSAGE = "Loading model... Please wait before uploading images."
ANALYZING_MESSAGE = "Analyzing image..."
MODEL_FAILED_MESSAGE = "Model failed to load. Reload the page to try again."


def format_confidence(confidence: float) -> str:
    return f"{confidence * 100:.1f}%"


def format_processing_time(seconds: float) -> str:
    return f"{seconds:.2f}s"


def render_result(result: PredictionResult) -> str:
    lines = [
        "Analysis Results",
        f"Classification: {result.label.value}",
        f"Confidence: {format_confidence(result.confidence)}",
        f"Processing Time: {format_processing_time(result.processing_time)}",
    ]
    return "\n".join(lines)


def render_session(session: Session) -> str:
    blocks: List[str] = []
    err = session.last_error
    if err is not None and err.kind is ErrorKind.MODEL_LOAD_FAILURE:
        blocks.append(MODEL_FAILED_MESSAGE)
    elif not session.lifecycle.ready:
        blocks.append(LOADING_MODEL_MESSAGE)

    if session.preview is not None:
        blocks.append(f"Image Preview: {session.preview.filename}")
    if session.loading:
        blocks.append(ANALYZING_MESSAGE)
    if session.current is not None:
        blocks.append(render_result(session.current))
    return "\n\n".join(blocks)
