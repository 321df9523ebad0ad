"""
Raster image thumbnails.

One resize-and-recompress pass with Pillow. There is no secondary library:
any validation or processing failure yields the "image" placeholder.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Optional

from PIL import Image, ImageOps

from ..configuration import FormatConfig
from ..exceptions import InvalidSignatureError
from ..guard import Deadline, ResourceGuard
from ..imaging import encode_image, encode_png, fit_within, flatten, has_alpha, verify_image
from ..models import GenerationMethod, GenerationRequest, StrategyResult
from ..placeholder import PlaceholderGenerator
from ..utils import sniff_image_format

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageRenderOptions:
    format: str
    quality: Optional[int]
    tier: str


def cover_fit(image: Image.Image, width: int, height: int) -> Image.Image:
    """Crop-to-fill the envelope when the source is large enough, else shrink to fit."""
    if image.width >= width and image.height >= height:
        return ImageOps.fit(image, (width, height), Image.Resampling.LANCZOS, centering=(0.5, 0.5))
    return fit_within(image, width, height)


class ImageStrategy:
    placeholder_type = "image"

    def __init__(
        self,
        config: FormatConfig,
        guard: ResourceGuard,
        placeholders: PlaceholderGenerator,
    ) -> None:
        self.config = config
        self._guard = guard
        self._placeholders = placeholders

    def select_options(self, width: int, height: int, alpha: bool, source_format: str) -> ImageRenderOptions:
        """
        Pick the output encoding and quality for a source image.

        PNG sources with alpha stay PNG. Everything else, transparent GIF,
        TIFF and WebP included, is re-encoded to the output format, starting
        from the per-format quality and then bounded by the pixel-count tier.
        """
        cfg = self.config.image
        if alpha and source_format == "png":
            return ImageRenderOptions(format="PNG", quality=None, tier="alpha")

        quality = {
            "gif": cfg.gif_quality,
            "tiff": cfg.tiff_quality,
            "webp": cfg.webp_quality,
        }.get(source_format, cfg.quality)

        pixels = width * height
        if pixels > cfg.large_pixel_threshold:
            return ImageRenderOptions(format=self.config.output.format, quality=min(quality, cfg.large_quality), tier="large")
        if pixels < cfg.small_pixel_threshold:
            return ImageRenderOptions(format=self.config.output.format, quality=max(quality, cfg.small_quality), tier="small")
        return ImageRenderOptions(format=self.config.output.format, quality=quality, tier="default")

    def render(self, data: bytes, source_format: str) -> bytes:
        """Decode, orient, cover-fit and re-encode (blocking)."""
        cfg = self.config.image
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
            alpha = has_alpha(image)
            options = self.select_options(width, height, alpha, source_format)
            logger.debug(f"Image {source_format} {width}x{height} alpha={alpha} -> {options.format} q={options.quality} ({options.tier})")

            # Decode JPEGs at reduced scale when far larger than the envelope.
            image.draft("RGB", (cfg.width * 2, cfg.height * 2))
            frame = ImageOps.exif_transpose(image)
            frame = frame.convert("RGBA") if options.format == "PNG" else flatten(frame)
            thumb = cover_fit(frame, cfg.width, cfg.height)

        if options.format == "PNG":
            return encode_png(thumb, cfg.png_compress_level)
        return encode_image(thumb, self.config.output, quality=options.quality, progressive=cfg.jpeg_progressive)

    async def generate(self, request: GenerationRequest, deadline: Deadline) -> StrategyResult:
        stage = f"{request.document_id}:image"
        try:
            source_format = sniff_image_format(request.source_bytes)
            if source_format is None:
                raise InvalidSignatureError("Unrecognized image signature or corrupt buffer")
            data = await self._guard.run_with_timeout(
                self.render,
                request.source_bytes,
                source_format,
                timeout=deadline.bound(self._guard.limits.max_processing_seconds),
                stage=stage,
            )
            verify_image(data)
        except Exception as exc:
            logger.warning(
                f"[{request.document_id}] image thumbnail failed after {deadline.elapsed_ms()}ms "
                f"({request.size} bytes), using placeholder: {exc}"
            )
            return StrategyResult(
                image_bytes=await self._guard.run_blocking(self._placeholders.generate, self.placeholder_type),
                method=GenerationMethod.PLACEHOLDER,
                placeholder_type=self.placeholder_type,
            )

        logger.debug(f"[{request.document_id}] image thumbnail {request.size} -> {len(data)} bytes")
        return StrategyResult(image_bytes=data, method=GenerationMethod.PRIMARY)
