"""Pillow helpers shared by the strategies and the placeholder generator."""

from __future__ import annotations

import io
from typing import Optional

from PIL import Image

from .configuration import OutputConfig
from .exceptions import EmptyResultError

ALPHA_MODES = {"RGBA", "LA", "PA", "RGBa", "La"}


def has_alpha(image: Image.Image) -> bool:
    if image.mode in ALPHA_MODES:
        return True
    return image.mode == "P" and "transparency" in image.info


def flatten(image: Image.Image, background: str = "white") -> Image.Image:
    """Composite transparency onto ``background`` and return an RGB image."""
    if has_alpha(image):
        rgba = image.convert("RGBA")
        canvas = Image.new("RGB", rgba.size, background)
        canvas.paste(rgba, mask=rgba.getchannel("A"))
        return canvas
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def encode_image(
    image: Image.Image,
    output: OutputConfig,
    quality: Optional[int] = None,
    progressive: bool = False,
) -> bytes:
    """Encode ``image`` in the configured output format."""
    buffer = io.BytesIO()
    fmt = output.format.upper()
    if fmt in ("JPEG", "JPG"):
        flatten(image).save(
            buffer,
            format="JPEG",
            quality=quality or output.quality,
            optimize=True,
            progressive=progressive,
        )
    elif fmt == "WEBP":
        image.save(buffer, format="WEBP", quality=quality or output.quality)
    else:
        image.save(buffer, format=fmt)
    data = buffer.getvalue()
    if not data:
        raise EmptyResultError("Encoder returned no bytes")
    return data


def encode_png(image: Image.Image, compress_level: int = 6) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG", optimize=False, compress_level=compress_level)
    return buffer.getvalue()


def verify_image(data: bytes) -> None:
    """
    Raise if ``data`` does not decode as a raster image.

    Raises:
        EmptyResultError: For empty input
        PIL.UnidentifiedImageError: For undecodable bytes
    """
    if not data:
        raise EmptyResultError("Image is empty")
    with Image.open(io.BytesIO(data)) as image:
        image.verify()


def fit_within(image: Image.Image, width: int, height: int) -> Image.Image:
    """Shrink ``image`` to fit the envelope, keeping aspect ratio, never upscaling."""
    copy = image.copy()
    copy.thumbnail((width, height), Image.Resampling.LANCZOS)
    return copy
