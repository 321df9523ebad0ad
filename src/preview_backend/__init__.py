"""
Preview Backend - thumbnails for case documents

This package turns uploaded case documents into one small preview image each:

- PDFs through a chain of rasterizers (pdf2image, pypdfium2, ImageMagick)
- Photos and scans through a single Pillow resize pass
- Office files through an external office-to-PDF converter, then the PDF chain
- A placeholder image when every real conversion fails

Every step runs under hard byte and time budgets, and the caller always gets
either a usable image or a clear "no preview" result.

Key Components:
    - service: ThumbnailService orchestrator (generate, exists, remove)
    - strategies: PDF, image and office strategies
    - guard: input ceilings, per-request deadlines and timeout races
    - placeholder: last-resort placeholder images
    - storage: object store adapters (S3, local filesystem)
    - queue: background thumbnail queue with retries
    - main: FastAPI application

Usage:
    Run the API server with:
        uvicorn preview_backend.main:app --reload --host 0.0.0.0 --port 8000
"""
