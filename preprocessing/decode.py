"""
decode.py

Image decoding for uploaded blood-cell images.

Uploads arrive as raw bytes (file picker or drag-and-drop). This module turns
them into an RGB pixel grid and reports unreadable input as a DecodeError
instead of silently producing a blank image.
"""

from __future__ import annotations

import asyncio
import mimetypes
from io import BytesIO
from typing import Optional

import numpy as np
from PIL import Image, ImageOps


class DecodeError(ValueError):
    """Raised when uploaded bytes cannot be decoded into an image."""


def is_image_mime(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    return content_type.split(";", 1)[0].strip().lower().startswith("image/")


def guess_content_type(filename: str) -> Optional[str]:
    content_type, _ = mimetypes.guess_type(filename)
    return content_type


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode image bytes into a uint8 RGB array of shape (H, W, 3).

    Multi-frame images (animated GIF) are reduced to their first frame and
    EXIF orientation is applied, as a browser does for an <img> element.
    16-bit greyscale is scaled down to 8 bits rather than clipped.
    An alpha channel is dropped without compositing onto a background.
    """
    if not data:
        raise DecodeError("Empty image upload")

    try:
        img = Image.open(BytesIO(data))
        img.load()
        img = ImageOps.exif_transpose(img)
        rgb = np.asarray(_to_8bit(img).convert("RGB"), dtype=np.uint8)
    except Exception as e:
        raise DecodeError("Invalid image file") from e

    if rgb.ndim != 3 or rgb.shape[0] == 0 or rgb.shape[1] == 0:
        raise DecodeError(f"Decoded image has unusable shape {rgb.shape}")
    return rgb


def _to_8bit(img: Image.Image) -> Image.Image:
    if img.mode not in ("I", "I;16", "I;16B", "I;16L", "I;16N"):
        return img
    arr = np.asarray(img).astype(np.int64)
    arr = np.clip(arr >> 8, 0, 255).astype(np.uint8)
    return Image.fromarray(arr)


async def decode_image_async(data: bytes) -> np.ndarray:
    return await asyncio.to_thread(decode_image, data)
