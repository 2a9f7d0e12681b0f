"""
Runtime settings for the client-side pipeline.

Only the model location is configurable; input size and threshold are fixed
by the exported model.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from model.lifecycle import DEFAULT_MODEL_URL


@dataclass(frozen=True)
class PipelineConfig:
    model_url: str = DEFAULT_MODEL_URL

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        return cls(model_url=os.environ.get("LEUKOSCAN_MODEL_URL", DEFAULT_MODEL_URL))
