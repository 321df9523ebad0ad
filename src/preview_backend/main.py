from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from .exceptions import PlaceholderUnavailableError
from .logging_config import configure_logging
from .models import OutcomeSummary, QueueStatus
from .queue import ThumbnailQueue
from .service import ThumbnailService
from .storage import create_object_store
from .strategies import canonical_mime
from .utils import content_type_for

thumbnail_service = ThumbnailService(create_object_store())
thumbnail_queue: Optional[ThumbnailQueue] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))
    yield
    if thumbnail_queue is not None:
        thumbnail_queue.shutdown()
    thumbnail_service.close()


app = FastAPI(title="Preview API", version="0.1.0", lifespan=lifespan)

allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_thumbnail_service() -> ThumbnailService:
    return thumbnail_service


def get_thumbnail_queue() -> Optional[ThumbnailQueue]:
    return thumbnail_queue


def attach_queue(queue: ThumbnailQueue, interval: float = 5.0) -> None:
    """Install a background queue once the host has a document source."""
    global thumbnail_queue
    thumbnail_queue = queue
    queue.start(interval)


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


def _declared_mime(file: UploadFile) -> str:
    content_type = (file.content_type or "").lower()
    if content_type and content_type != "application/octet-stream":
        return content_type
    # Browsers send octet-stream for many office files; fall back to the extension.
    extension = os.path.splitext(file.filename or "")[1]
    if extension.lower() == ".pdf":
        return "application/pdf"
    return canonical_mime(extension) or content_type


@app.post("/documents/{document_id}/thumbnail", response_model=OutcomeSummary)
async def create_thumbnail(
    document_id: str,
    file: UploadFile = File(...),
    service: ThumbnailService = Depends(get_thumbnail_service),
) -> OutcomeSummary:
    data = await file.read()
    await file.close()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    try:
        outcome = await service.generate_thumbnail(data, _declared_mime(file), document_id)
    except PlaceholderUnavailableError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    if outcome is None:
        raise HTTPException(status_code=415, detail="No preview available for this document")
    return OutcomeSummary.from_outcome(document_id, outcome)


@app.get("/documents/{document_id}/thumbnail")
async def get_thumbnail(document_id: str, service: ThumbnailService = Depends(get_thumbnail_service)) -> Response:
    data = await service.get_thumbnail(document_id)
    if data is None:
        raise HTTPException(status_code=404, detail="Thumbnail not found")
    media_type = content_type_for(data, service.settings.formats.output.content_type)
    return Response(content=data, media_type=media_type)


@app.get("/documents/{document_id}/thumbnail/exists")
async def thumbnail_exists(document_id: str, service: ThumbnailService = Depends(get_thumbnail_service)) -> Dict[str, bool]:
    return {"exists": await service.thumbnail_exists(document_id)}


@app.delete("/documents/{document_id}/thumbnail")
async def delete_thumbnail(document_id: str, service: ThumbnailService = Depends(get_thumbnail_service)) -> Dict[str, str]:
    await service.remove_thumbnail(document_id)
    return {"status": "removed"}


@app.get("/thumbnails/queue", response_model=QueueStatus)
def queue_status(queue: Optional[ThumbnailQueue] = Depends(get_thumbnail_queue)) -> QueueStatus:
    if queue is None:
        raise HTTPException(status_code=404, detail="Thumbnail queue not running")
    return queue.status()
