"""
Placeholder thumbnails.

The last resort of every strategy. Resolution order for a type name:

1. a pre-supplied asset from ``placeholder.assets_dir``, returned verbatim;
2. a card with a border, the type name and a subtitle, drawn with Pillow;
3. a flat solid-colour image with no text.

If step 3 fails too, :class:`PlaceholderUnavailableError` propagates. For the
same type and configuration the result is byte-identical.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from PIL import Image, ImageDraw, ImageFont

from .configuration import OutputConfig, PlaceholderConfig
from .exceptions import PlaceholderUnavailableError
from .imaging import encode_image

logger = logging.getLogger(__name__)

LABEL_FONT_SIZE = 16
SUBTITLE_FONT_SIZE = 12
SUBTITLE_OFFSET = 30
FONT_CANDIDATES = ("DejaVuSans.ttf", "Arial.ttf", "arial.ttf")


def load_font(size: int):
    for name in FONT_CANDIDATES:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default()


class PlaceholderGenerator:
    def __init__(
        self,
        config: PlaceholderConfig,
        output: OutputConfig,
        base_dir: Optional[Path] = None,
    ) -> None:
        self.config = config
        self.output = output
        assets_dir = Path(config.assets_dir)
        if not assets_dir.is_absolute():
            assets_dir = (base_dir or Path.cwd()) / assets_dir
        self.assets_dir = assets_dir

    def generate(self, type_name: str) -> bytes:
        """
        Return placeholder bytes for ``type_name`` (e.g. ``"pdf"``, ``"docx"``).

        Raises:
            PlaceholderUnavailableError: If even the solid-colour image fails
        """
        asset = self._load_asset(type_name)
        if asset:
            return asset

        try:
            return self._render_card(type_name)
        except Exception as exc:
            logger.error(f"Failed to render placeholder card for '{type_name}': {exc}")

        try:
            return self._render_solid()
        except Exception as exc:
            logger.critical(f"Failed to encode solid placeholder for '{type_name}': {exc}")
            raise PlaceholderUnavailableError(f"Unable to generate placeholder for '{type_name}'") from exc

    def _load_asset(self, type_name: str) -> Optional[bytes]:
        file_name = self.config.files.get(type_name) or self.config.default_file
        path = self.assets_dir / file_name
        try:
            if path.is_file():
                return path.read_bytes() or None
        except OSError as exc:
            logger.warning(f"Could not read placeholder asset {path}: {exc}")
        return None

    def draw_card(self, type_name: str) -> Image.Image:
        """Draw the bordered card with the upper-cased type name and subtitle."""
        cfg = self.config
        image = Image.new("RGB", (cfg.width, cfg.height), cfg.background)
        draw = ImageDraw.Draw(image)
        draw.rectangle((1, 1, cfg.width - 2, cfg.height - 2), outline=cfg.border, width=2)

        center_x, center_y = cfg.width // 2, cfg.height // 2
        self._draw_centered(draw, type_name.upper(), center_x, center_y, LABEL_FONT_SIZE, cfg.text_color)
        self._draw_centered(draw, cfg.subtitle, center_x, center_y + SUBTITLE_OFFSET, SUBTITLE_FONT_SIZE, cfg.subtitle_color)
        return image

    def _draw_centered(self, draw: ImageDraw.ImageDraw, text: str, x: int, y: int, size: int, fill: str) -> None:
        if not text:
            return
        font = load_font(size)
        left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
        draw.text((x - (right - left) / 2 - left, y - (bottom - top) / 2 - top), text, fill=fill, font=font)

    def _render_card(self, type_name: str) -> bytes:
        return encode_image(self.draw_card(type_name), self.output, quality=self.config.quality)

    def _render_solid(self) -> bytes:
        image = Image.new("RGB", (self.config.width, self.config.height), self.config.background)
        return encode_image(image, self.output, quality=self.config.quality)
