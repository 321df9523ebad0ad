"""
Office document thumbnails.

The document is converted to PDF by the external converter and the PDF is
handed to :class:`~preview_backend.strategies.pdf.PdfStrategy`. A failed or
raising converter is not retried; the type placeholder is used instead.
"""

from __future__ import annotations

import inspect
import logging
from typing import Dict, Optional

from ..converter import OfficeConverter
from ..guard import Deadline, ResourceGuard
from ..models import ConversionResult, GenerationMethod, GenerationRequest, StrategyResult
from ..placeholder import PlaceholderGenerator
from ..utils import normalize_mime
from .pdf import PdfStrategy

logger = logging.getLogger(__name__)

OFFICE_MIME_TYPES: Dict[str, str] = {
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.ms-excel": "xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-powerpoint": "ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "application/vnd.oasis.opendocument.text": "odt",
    "application/vnd.oasis.opendocument.spreadsheet": "ods",
    "application/vnd.oasis.opendocument.presentation": "odp",
    "application/rtf": "doc",
}

MIME_ALIASES: Dict[str, str] = {
    "text/rtf": "application/rtf",
    "application/x-msexcel": "application/vnd.ms-excel",
    "application/mspowerpoint": "application/vnd.ms-powerpoint",
}

EXTENSION_MIME_TYPES: Dict[str, str] = {
    ext: mime for mime, ext in OFFICE_MIME_TYPES.items() if mime != "application/rtf"
}
EXTENSION_MIME_TYPES["rtf"] = "application/rtf"


def canonical_mime(value: str) -> Optional[str]:
    """
    Map a declared MIME type or a file extension to its canonical office MIME.

    Example:
        >>> canonical_mime(".DOCX")
        'application/vnd.openxmlformats-officedocument.wordprocessingml.document'
        >>> canonical_mime("text/plain") is None
        True
    """
    mime = normalize_mime(value)
    mime = MIME_ALIASES.get(mime, mime)
    if mime in OFFICE_MIME_TYPES:
        return mime
    return EXTENSION_MIME_TYPES.get(mime.lstrip("."))


def office_type_name(value: str) -> Optional[str]:
    mime = canonical_mime(value)
    return OFFICE_MIME_TYPES[mime] if mime else None


class OfficeStrategy:
    def __init__(
        self,
        converter: Optional[OfficeConverter],
        pdf_strategy: PdfStrategy,
        guard: ResourceGuard,
        placeholders: PlaceholderGenerator,
    ) -> None:
        self._converter = converter
        self._pdf = pdf_strategy
        self._guard = guard
        self._placeholders = placeholders

    async def _placeholder(self, type_name: str) -> StrategyResult:
        return StrategyResult(
            image_bytes=await self._guard.run_blocking(self._placeholders.generate, type_name),
            method=GenerationMethod.PLACEHOLDER,
            placeholder_type=type_name,
        )

    async def _convert(self, request: GenerationRequest, mime: str, deadline: Deadline) -> ConversionResult:
        stage = f"{request.document_id}:office-converter"
        timeout = deadline.bound(self._guard.limits.max_processing_seconds)
        convert = self._converter.convert_to_pdf
        if inspect.iscoroutinefunction(convert):
            return await self._guard.await_with_timeout(convert(request.source_bytes, mime), timeout, stage)
        return await self._guard.run_with_timeout(convert, request.source_bytes, mime, timeout=timeout, stage=stage)

    async def generate(self, request: GenerationRequest, deadline: Deadline) -> StrategyResult:
        mime = canonical_mime(request.declared_mime_type) or normalize_mime(request.declared_mime_type)
        type_name = OFFICE_MIME_TYPES.get(mime, "document")

        if self._converter is None:
            logger.info(f"[{request.document_id}] no office converter configured, using {type_name} placeholder")
            return await self._placeholder(type_name)

        try:
            result = await self._convert(request, mime, deadline)
        except Exception as exc:
            logger.warning(f"[{request.document_id}] office conversion raised after {deadline.elapsed_ms()}ms ({request.size} bytes): {exc}")
            return await self._placeholder(type_name)

        if not result.success or not result.pdf_bytes:
            logger.warning(f"[{request.document_id}] office conversion failed ({request.size} bytes): {result.error or 'empty PDF'}")
            return await self._placeholder(type_name)

        logger.debug(f"[{request.document_id}] converted {type_name} to PDF: {result.original_size} -> {len(result.pdf_bytes)} bytes in {result.elapsed_ms}ms")
        pdf_request = request.model_copy(update={"source_bytes": result.pdf_bytes, "declared_mime_type": "application/pdf"})
        return await self._pdf.generate(pdf_request, deadline, placeholder_type=type_name)
