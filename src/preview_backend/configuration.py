"""
Settings for thumbnail generation.

Every recognized field has an explicit default on the models below. A
process-wide :class:`ThumbnailSettings` is built once at startup by merging,
in order:

1. the model defaults,
2. an optional YAML file (``config_path`` or the ``THUMBNAIL_CONFIG`` env var),
3. an in-process overrides mapping (used by tests to tighten limits).

The merge runs through OmegaConf in struct mode, so a misspelled key fails
loudly instead of being ignored. The validated result is frozen.
"""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf
from omegaconf.errors import OmegaConfBaseException
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import ConfigurationError

CONFIG_ENV_VAR = "THUMBNAIL_CONFIG"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ResourceLimits(_Frozen):
    """Hard budgets applied to every generation call."""

    max_input_bytes: int = Field(default=50 * 1024 * 1024, gt=0)
    max_processing_seconds: float = Field(default=30.0, gt=0)
    max_command_seconds: float = Field(default=30.0, gt=0)
    max_stream_seconds: float = Field(default=10.0, gt=0)
    max_store_seconds: float = Field(default=5.0, gt=0)
    max_temp_files: int = Field(default=10, gt=0)

    @model_validator(mode="after")
    def _check_budgets(self) -> "ResourceLimits":
        if self.max_command_seconds > self.max_processing_seconds:
            raise ValueError("max_command_seconds must not exceed max_processing_seconds")
        if self.max_stream_seconds > self.max_processing_seconds:
            raise ValueError("max_stream_seconds must not exceed max_processing_seconds")
        return self


class OutputConfig(_Frozen):
    format: str = "JPEG"
    extension: str = "jpg"
    content_type: str = "image/jpeg"
    quality: int = Field(default=80, ge=1, le=100)


class PdfRenderConfig(_Frozen):
    """Primary rasterizer parameters."""

    width: int = Field(default=200, gt=0)
    height: int = Field(default=200, gt=0)
    density: int = Field(default=100, gt=0)
    quality: int = Field(default=75, ge=1, le=100)
    format: str = "jpeg"


class PdfFallbackVariant(_Frozen):
    """One configuration tried by the secondary rasterizer.

    Unset fields fall back to the library default (72 dpi), the primary
    envelope and the output quality.
    """

    name: str
    density: Optional[int] = Field(default=None, gt=0)
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    quality: Optional[int] = Field(default=None, ge=1, le=100)


DEFAULT_PDF_FALLBACK_VARIANTS: Tuple[PdfFallbackVariant, ...] = (
    PdfFallbackVariant(name="full", density=100, width=200, height=200, quality=75),
    PdfFallbackVariant(name="quality", quality=80),
    PdfFallbackVariant(name="plain"),
    PdfFallbackVariant(name="small", width=200, height=200, quality=70),
)


class ExternalToolConfig(_Frozen):
    """ImageMagick invocation; the first binary found on PATH is used."""

    enabled: bool = True
    binaries: Tuple[str, ...] = ("magick", "convert")
    temp_dir: Optional[str] = None
    width: int = Field(default=200, gt=0)
    height: int = Field(default=200, gt=0)
    quality: int = Field(default=75, ge=1, le=100)


class ImageRenderConfig(_Frozen):
    """Envelope and quality tiers for raster sources."""

    width: int = Field(default=200, gt=0)
    height: int = Field(default=200, gt=0)
    quality: int = Field(default=80, ge=1, le=100)
    jpeg_progressive: bool = True
    png_compress_level: int = Field(default=6, ge=0, le=9)
    gif_quality: int = Field(default=70, ge=1, le=100)
    tiff_quality: int = Field(default=85, ge=1, le=100)
    webp_quality: int = Field(default=80, ge=1, le=100)
    large_pixel_threshold: int = Field(default=4_000_000, gt=0)
    large_quality: int = Field(default=60, ge=1, le=100)
    small_pixel_threshold: int = Field(default=40_000, gt=0)
    small_quality: int = Field(default=90, ge=1, le=100)

    @model_validator(mode="after")
    def _check_tiers(self) -> "ImageRenderConfig":
        if self.small_pixel_threshold >= self.large_pixel_threshold:
            raise ValueError("small_pixel_threshold must be below large_pixel_threshold")
        return self


class PlaceholderConfig(_Frozen):
    assets_dir: str = "assets/thumbnails"
    files: Dict[str, str] = Field(
        default_factory=lambda: {
            "pdf": "pdf.jpg",
            "image": "image.jpg",
            "doc": "doc.jpg",
            "docx": "docx.jpg",
            "xls": "xls.jpg",
            "xlsx": "xlsx.jpg",
        }
    )
    default_file: str = "default.jpg"
    width: int = Field(default=200, gt=0)
    height: int = Field(default=200, gt=0)
    background: str = "#f0f0f0"
    border: str = "#cccccc"
    text_color: str = "#666666"
    subtitle_color: str = "#999999"
    subtitle: str = "Documento"
    quality: int = Field(default=80, ge=1, le=100)


class FormatConfig(_Frozen):
    output: OutputConfig = Field(default_factory=OutputConfig)
    pdf: PdfRenderConfig = Field(default_factory=PdfRenderConfig)
    pdf_fallback: Tuple[PdfFallbackVariant, ...] = DEFAULT_PDF_FALLBACK_VARIANTS
    external_tool: ExternalToolConfig = Field(default_factory=ExternalToolConfig)
    image: ImageRenderConfig = Field(default_factory=ImageRenderConfig)
    placeholder: PlaceholderConfig = Field(default_factory=PlaceholderConfig)


class ThumbnailSettings(_Frozen):
    limits: ResourceLimits = Field(default_factory=ResourceLimits)
    formats: FormatConfig = Field(default_factory=FormatConfig)
    storage_prefix: str = "thumbnails"
    worker_threads: int = Field(default=4, gt=0)


def _base_config() -> DictConfig:
    base = OmegaConf.create(ThumbnailSettings().model_dump(mode="json"))
    OmegaConf.set_struct(base, True)
    # Placeholder files are keyed by arbitrary type names.
    OmegaConf.set_struct(base.formats.placeholder.files, False)
    return base


def _resolve_config_path(config_path: Path | str | None) -> Optional[Path]:
    candidate = config_path or os.environ.get(CONFIG_ENV_VAR)
    if not candidate:
        return None
    path = Path(candidate)
    if not path.exists():
        raise ConfigurationError(f"Thumbnail config not found at {path}")
    return path


def make_settings(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Path | str | None = None,
) -> ThumbnailSettings:
    """Merge defaults, an optional YAML file and overrides into settings."""
    try:
        layers = [_base_config()]
        path = _resolve_config_path(config_path)
        if path is not None:
            layers.append(OmegaConf.load(path))
        if overrides:
            layers.append(OmegaConf.create(overrides))
        merged = OmegaConf.merge(*layers)
        container = OmegaConf.to_container(merged, resolve=True)
    except OmegaConfBaseException as exc:
        raise ConfigurationError(f"Invalid thumbnail configuration: {exc}") from exc

    try:
        return ThumbnailSettings.model_validate(container)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid thumbnail configuration: {exc}") from exc


@lru_cache(maxsize=1)
def get_settings() -> ThumbnailSettings:
    """Process-wide settings, loaded once."""
    load_dotenv()
    return make_settings()
