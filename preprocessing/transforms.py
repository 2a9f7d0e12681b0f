"""
transforms.py

Deterministic pixel -> tensor transform for the blood-cell classifier.

The exported model was trained on 224x224 RGB inputs scaled to [0, 1], resized
with the same bilinear sampling the browser runtime uses
(align_corners=False, half_pixel_centers=False). Reproducing that sampling
exactly keeps predictions consistent with the model's expected inputs, so the
resize is implemented here rather than delegated to PIL, whose bilinear filter
samples at pixel centres and antialiases when downscaling.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

INPUT_SIZE: Tuple[int, int] = (224, 224)  # (height, width)
INPUT_SHAPE: Tuple[int, int, int, int] = (1, INPUT_SIZE[0], INPUT_SIZE[1], 3)


def _source_coords(in_size: int, out_size: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Map each output index to (floor index, ceil index, fractional weight)
    in the source axis.
    """
    ratio = in_size / out_size
    src = np.arange(out_size, dtype=np.float64) * ratio
    lo = np.maximum(0.0, np.floor(src))
    hi = np.minimum(float(in_size - 1), np.ceil(src))
    frac = src - lo
    return lo.astype(np.int64), hi.astype(np.int64), frac


def resize_bilinear(pixels: np.ndarray, size: Tuple[int, int] = INPUT_SIZE) -> np.ndarray:
    """
    Bilinear resize of an (H, W, C) array to (size[0], size[1], C).

    Interpolation is carried out in float64 and stored as float32.
    """
    if pixels.ndim != 3:
        raise ValueError("Expected image array of shape (H, W, C)")
    out_h, out_w = size
    if out_h <= 0 or out_w <= 0:
        raise ValueError(f"Invalid target size {size}")

    in_h, in_w, _ = pixels.shape
    if in_h == 0 or in_w == 0:
        raise ValueError("Cannot resize an empty image")

    px = pixels.astype(np.float64)
    y_lo, y_hi, y_frac = _source_coords(in_h, out_h)
    x_lo, x_hi, x_frac = _source_coords(in_w, out_w)

    rows_top = px[y_lo]
    rows_bottom = px[y_hi]
    col_w = x_frac[None, :, None]

    top = rows_top[:, x_lo] + (rows_top[:, x_hi] - rows_top[:, x_lo]) * col_w
    bottom = rows_bottom[:, x_lo] + (rows_bottom[:, x_hi] - rows_bottom[:, x_lo]) * col_w
    out = top + (bottom - top) * y_frac[:, None, None]
    return out.astype(np.float32)


def to_input_tensor(pixels: np.ndarray, size: Tuple[int, int] = INPUT_SIZE) -> np.ndarray:
    """
    Args:
        pixels: uint8 RGB array of shape (H, W, 3), any H and W

    Returns:
        float32 array of shape (1, size[0], size[1], 3) with values in [0, 1]
    """
    if pixels.ndim != 3 or pixels.shape[-1] != 3:
        raise ValueError("Expected RGB image array (H, W, 3)")

    resized = resize_bilinear(pixels, size)
    scaled = resized / np.float32(255.0)
    return np.ascontiguousarray(scaled[np.newaxis, ...])
