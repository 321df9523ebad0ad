"""
Thumbnail orchestration.

:class:`ThumbnailService` is the only entry point the rest of the backend
uses. It validates the input, dispatches by declared MIME type to one of the
three strategies, checks the result and writes it to the object store under
``thumbnails/<document_id>.<ext>``.

Callers get either an outcome with a usable image or ``None`` ("no preview
available"). The only exception that leaves the service is
:class:`~preview_backend.exceptions.PlaceholderUnavailableError`.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .configuration import ThumbnailSettings, get_settings
from .converter import OfficeConverter
from .exceptions import (
    EmptyResultError,
    InputTooLargeError,
    ObjectNotFoundError,
    PlaceholderUnavailableError,
)
from .guard import Deadline, ResourceGuard
from .logging_config import document_id_var
from .models import GenerationMethod, GenerationRequest, StrategyResult, ThumbnailOutcome
from .placeholder import PlaceholderGenerator
from .storage import ObjectStore
from .strategies import ImageStrategy, OfficeStrategy, PdfStrategy, canonical_mime, office_type_name
from .utils import content_type_for, is_safe_identifier, normalize_mime

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"

IMAGE_MIME_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/pjpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/x-ms-bmp",
    "image/tiff",
    "image/x-icon",
    "image/vnd.microsoft.icon",
}


class ThumbnailService:
    """
    Generate, store and look up document thumbnails.

    The service owns a conversion pool for the blocking library calls and an
    I/O pool for store writes and placeholders. Settings are read-only and
    shared; no other state is shared between calls.

    Attributes:
        settings: Frozen thumbnail settings
        store: Object store the thumbnails are written to
    """

    def __init__(
        self,
        store: ObjectStore,
        converter: Optional[OfficeConverter] = None,
        settings: Optional[ThumbnailSettings] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        io_executor: Optional[ThreadPoolExecutor] = None,
        base_dir: Optional[Path] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self._owned_executors: List[ThreadPoolExecutor] = []
        if executor is None:
            executor = ThreadPoolExecutor(max_workers=self.settings.worker_threads, thread_name_prefix="thumbnail")
            self._owned_executors.append(executor)
        if io_executor is None:
            io_executor = ThreadPoolExecutor(max_workers=self.settings.worker_threads, thread_name_prefix="thumbnail-io")
            self._owned_executors.append(io_executor)
        formats = self.settings.formats
        self.guard = ResourceGuard(self.settings.limits, executor, io_executor)
        self.placeholders = PlaceholderGenerator(formats.placeholder, formats.output, base_dir=base_dir)
        self.pdf = PdfStrategy(formats, self.guard, self.placeholders)
        self.image = ImageStrategy(formats, self.guard, self.placeholders)
        self.office = OfficeStrategy(converter, self.pdf, self.guard, self.placeholders)

    def thumbnail_key(self, document_id: str) -> str:
        return f"{self.settings.storage_prefix}/{document_id}.{self.settings.formats.output.extension}"

    def _placeholder_type(self, mime: str) -> Optional[str]:
        """Placeholder type for a supported MIME, or None when unsupported."""
        if mime == PDF_MIME:
            return PdfStrategy.placeholder_type
        if mime in IMAGE_MIME_TYPES:
            return ImageStrategy.placeholder_type
        return office_type_name(mime)

    async def _dispatch(self, request: GenerationRequest, mime: str, deadline: Deadline) -> StrategyResult:
        if mime == PDF_MIME:
            return await self.pdf.generate(request, deadline)
        if mime in IMAGE_MIME_TYPES:
            return await self.image.generate(request, deadline)
        return await self.office.generate(request, deadline)

    async def _placeholder_result(self, type_name: str) -> StrategyResult:
        return StrategyResult(
            image_bytes=await self.guard.run_blocking(self.placeholders.generate, type_name),
            method=GenerationMethod.PLACEHOLDER,
            placeholder_type=type_name,
        )

    async def generate_thumbnail(
        self,
        source_bytes: bytes,
        mime_type: str,
        document_id: str,
    ) -> Optional[ThumbnailOutcome]:
        """
        Produce and store the thumbnail for one document.

        Args:
            source_bytes: Raw document bytes
            mime_type: Declared MIME type (parameters are ignored)
            document_id: Id used for the storage key and in logs

        Returns:
            The outcome, or None when no preview is available (empty input,
            unsupported type, unsafe id, or an unrecovered failure)

        Raises:
            PlaceholderUnavailableError: If even the placeholder could not be produced
        """
        token = document_id_var.set(document_id)
        try:
            return await self._generate(source_bytes, mime_type, document_id)
        finally:
            document_id_var.reset(token)

    async def _generate(self, source_bytes: bytes, mime_type: str, document_id: str) -> Optional[ThumbnailOutcome]:
        if not source_bytes:
            logger.info(f"[{document_id}] empty document, no thumbnail")
            return None

        if not is_safe_identifier(document_id):
            logger.warning(f"Refusing thumbnail for unsafe document id {document_id!r}")
            return None

        mime = normalize_mime(mime_type)
        mime = canonical_mime(mime) or mime
        type_name = self._placeholder_type(mime)
        if type_name is None:
            logger.debug(f"[{document_id}] no thumbnail strategy for {mime_type!r}")
            return None

        deadline = self.guard.start_deadline()
        request = GenerationRequest(source_bytes=source_bytes, declared_mime_type=mime, document_id=document_id)
        stage = "dispatch"

        try:
            try:
                self.guard.check_input(source_bytes)
            except InputTooLargeError as exc:
                logger.warning(f"[{document_id}] {exc}, using {type_name} placeholder")
                result = await self._placeholder_result(type_name)
            else:
                stage = f"{type_name} strategy"
                result = await self._dispatch(request, mime, deadline)

            if not result.image_bytes:
                logger.warning(f"[{document_id}] {stage} returned an empty image, using {type_name} placeholder")
                result = await self._placeholder_result(type_name)
            if not result.image_bytes:
                raise EmptyResultError(f"Placeholder for '{type_name}' is empty")

            stage = "store"
            outcome = await self.guard.run_blocking(
                self._store,
                request,
                result,
                deadline,
                timeout=self.settings.limits.max_store_seconds,
                stage=f"{document_id}:store",
            )
        except PlaceholderUnavailableError:
            logger.critical(f"[{document_id}] placeholder unavailable after {deadline.elapsed_ms()}ms")
            raise
        except Exception as exc:
            logger.error(
                f"[{document_id}] thumbnail failed at {stage} after {deadline.elapsed_ms()}ms "
                f"({len(source_bytes)} bytes, {mime}): {exc}"
            )
            return None

        logger.info(
            f"[{document_id}] thumbnail stored at {outcome.storage_key} via {outcome.method_label}: "
            f"{outcome.original_size} -> {outcome.output_size} bytes in {outcome.elapsed_ms}ms"
        )
        return outcome

    def _metadata(self, document_id: str) -> Dict[str, str]:
        return {
            "type": "thumbnail",
            "original-document": document_id,
            "generated-at": datetime.now(timezone.utc).isoformat(),
        }

    def _store(self, request: GenerationRequest, result: StrategyResult, deadline: Deadline) -> ThumbnailOutcome:
        key = self.thumbnail_key(request.document_id)
        content_type = content_type_for(result.image_bytes, self.settings.formats.output.content_type)
        self.store.put(key, result.image_bytes, content_type, self._metadata(request.document_id))
        return ThumbnailOutcome(
            success=True,
            image_bytes=result.image_bytes,
            storage_key=key,
            content_type=content_type,
            method=result.method,
            attempt=result.attempt,
            placeholder_type=result.placeholder_type,
            original_size=request.size,
            output_size=len(result.image_bytes),
            elapsed_ms=deadline.elapsed_ms(),
        )

    async def thumbnail_exists(self, document_id: str) -> bool:
        if not is_safe_identifier(document_id):
            return False
        return await self.guard.run_blocking(self.store.exists, self.thumbnail_key(document_id))

    async def remove_thumbnail(self, document_id: str) -> None:
        """Delete the stored thumbnail; a missing one is not an error."""
        if not is_safe_identifier(document_id):
            return
        try:
            await self.guard.run_blocking(self.store.delete, self.thumbnail_key(document_id))
        except ObjectNotFoundError:
            logger.debug(f"[{document_id}] no thumbnail to remove")

    async def get_thumbnail(self, document_id: str) -> Optional[bytes]:
        if not is_safe_identifier(document_id):
            return None
        try:
            return await self.guard.run_blocking(self.store.get, self.thumbnail_key(document_id))
        except ObjectNotFoundError:
            return None

    def close(self) -> None:
        """Release the worker pools without waiting for abandoned calls."""
        for executor in self._owned_executors:
            executor.shutdown(wait=False, cancel_futures=True)
