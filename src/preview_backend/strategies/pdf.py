"""
PDF thumbnails through a cascading chain.

Order, strictly sequential and all under the request deadline:

1. ``%PDF`` signature check (mismatch goes straight to the placeholder)
2. pdf2image (poppler) at the configured density, shrunk into the envelope
3. pypdfium2 with decreasing-complexity variants
4. ImageMagick on a temporary copy of the document
5. the "pdf" placeholder (or the caller's type, for converted office files)
"""

from __future__ import annotations

import functools
import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

import pypdfium2 as pdfium
from pdf2image import convert_from_bytes

from ..chain import ChainStep, run_chain
from ..configuration import FormatConfig, PdfFallbackVariant
from ..exceptions import ChainExhaustedError, ConversionTimeoutError, EmptyResultError, ExternalToolError
from ..guard import Deadline, ResourceGuard
from ..imaging import encode_image, fit_within, verify_image
from ..models import GenerationMethod, GenerationRequest, StrategyResult
from ..placeholder import PlaceholderGenerator
from ..utils import is_pdf, make_temp_path, sanitize_path

logger = logging.getLogger(__name__)


class PdfStrategy:
    placeholder_type = "pdf"

    def __init__(
        self,
        config: FormatConfig,
        guard: ResourceGuard,
        placeholders: PlaceholderGenerator,
    ) -> None:
        self.config = config
        self._guard = guard
        self._placeholders = placeholders
        temp_dir = config.external_tool.temp_dir
        self._temp_dir = Path(temp_dir) if temp_dir else None

    def render_primary(self, data: bytes) -> bytes:
        cfg = self.config.pdf
        pages = convert_from_bytes(
            data,
            dpi=cfg.density,
            fmt=cfg.format,
            first_page=1,
            last_page=1,
            timeout=int(max(1, self._guard.limits.max_command_seconds)),
        )
        if not pages:
            raise EmptyResultError("pdf2image returned no pages")
        image = fit_within(pages[0], cfg.width, cfg.height)
        return encode_image(image, self.config.output, quality=cfg.quality)

    def render_fallback(self, data: bytes, variant: PdfFallbackVariant) -> bytes:
        pdf = pdfium.PdfDocument(data)
        try:
            if len(pdf) == 0:
                raise EmptyResultError("PDF has no pages")
            page = pdf[0]
            try:
                bitmap = page.render(scale=(variant.density or 72) / 72)
                image = bitmap.to_pil()
            finally:
                page.close()
        finally:
            pdf.close()

        envelope = self.config.pdf
        image = fit_within(image, variant.width or envelope.width, variant.height or envelope.height)
        return encode_image(image, self.config.output, quality=variant.quality)

    def _resolve_binary(self) -> str:
        for name in self.config.external_tool.binaries:
            found = shutil.which(name)
            if found:
                return found
        raise ExternalToolError(f"None of {list(self.config.external_tool.binaries)} found on PATH")

    def build_command(self, binary: str, input_path: str, output_path: str) -> List[str]:
        tool = self.config.external_tool
        return [
            binary,
            f"{input_path}[0]",
            "-thumbnail",
            f"{tool.width}x{tool.height}",
            "-quality",
            str(tool.quality),
            "-background",
            "white",
            "-alpha",
            "remove",
            output_path,
        ]

    def render_external(self, data: bytes, deadline: Deadline) -> bytes:
        """
        Convert the first page with ImageMagick.

        Both temp paths are sanitized before anything touches the disk or a
        process is spawned, and both are removed on every exit path.
        """
        input_path = make_temp_path("pdf", ".pdf", self._temp_dir)
        output_path = make_temp_path("thumbnail", f".{self.config.output.extension}", self._temp_dir)
        safe_input = sanitize_path(input_path)
        safe_output = sanitize_path(output_path)
        command = self.build_command(self._resolve_binary(), safe_input, safe_output)

        with self._guard.temp_slot(deadline.remaining()):
            try:
                input_path.write_bytes(data)
                logger.debug(f"Running external tool: {command}")
                try:
                    result = subprocess.run(
                        command,
                        capture_output=True,
                        text=True,
                        check=False,
                        timeout=max(0.1, deadline.bound(self._guard.limits.max_command_seconds)),
                    )
                except subprocess.TimeoutExpired as exc:
                    raise ConversionTimeoutError("External raster tool timed out") from exc
                except OSError as exc:
                    raise ExternalToolError(f"Failed to execute external raster tool: {exc}") from exc

                if result.returncode != 0:
                    raise ExternalToolError(f"External raster tool exited with {result.returncode}: {(result.stderr or '').strip()}")
                if not output_path.is_file():
                    raise ExternalToolError("External raster tool produced no output file")
                return output_path.read_bytes()
            finally:
                for path in (input_path, output_path):
                    try:
                        path.unlink(missing_ok=True)
                    except OSError as exc:
                        logger.warning(f"Could not remove temporary file {path}: {exc}")

    def build_chain(self, data: bytes, deadline: Deadline) -> List[ChainStep]:
        limits = self._guard.limits
        steps = [
            ChainStep(
                name="pdf2image",
                attempt=functools.partial(self.render_primary, data),
                timeout=limits.max_processing_seconds,
                method=GenerationMethod.PRIMARY,
            )
        ]
        for index, variant in enumerate(self.config.pdf_fallback, start=1):
            steps.append(
                ChainStep(
                    name=f"pypdfium2:{variant.name}",
                    attempt=functools.partial(self.render_fallback, data, variant),
                    timeout=limits.max_processing_seconds,
                    method=GenerationMethod.FALLBACK,
                    index=index,
                )
            )
        if self.config.external_tool.enabled:
            steps.append(
                ChainStep(
                    name="imagemagick",
                    attempt=functools.partial(self.render_external, data, deadline),
                    timeout=limits.max_processing_seconds,
                    method=GenerationMethod.EXTERNAL_TOOL,
                )
            )
        return steps

    async def _placeholder(self, type_name: str) -> StrategyResult:
        return StrategyResult(
            image_bytes=await self._guard.run_blocking(self._placeholders.generate, type_name),
            method=GenerationMethod.PLACEHOLDER,
            placeholder_type=type_name,
        )

    async def generate(
        self,
        request: GenerationRequest,
        deadline: Deadline,
        placeholder_type: Optional[str] = None,
    ) -> StrategyResult:
        type_name = placeholder_type or self.placeholder_type
        if not is_pdf(request.source_bytes):
            logger.warning(f"[{request.document_id}] missing %PDF signature ({request.size} bytes), using placeholder")
            return await self._placeholder(type_name)

        try:
            result = await run_chain(
                self.build_chain(request.source_bytes, deadline),
                self._guard,
                deadline,
                context=request.document_id,
                validate=verify_image,
            )
        except ChainExhaustedError as exc:
            stages = ", ".join(name for name, _ in exc.errors)
            logger.error(
                f"[{request.document_id}] PDF thumbnail exhausted after {deadline.elapsed_ms()}ms "
                f"({request.size} bytes; tried {stages}), using placeholder"
            )
            return await self._placeholder(type_name)

        return StrategyResult(image_bytes=result.image_bytes, method=result.step.method, attempt=result.step.index)
