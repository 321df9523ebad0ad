from __future__ import annotations

import contextvars
import logging
import sys

# Carries the document being processed across awaits for log records
document_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("document_id", default="-")


class DocumentIdFilter(logging.Filter):
    """Inject the current document id into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.document_id = document_id_var.get()
        return True


def configure_logging(level: str = "INFO") -> None:
    """Install a single stdout handler on the root logger.

    Safe to call repeatedly.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level.upper())
    handler.addFilter(DocumentIdFilter())
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(name)s | document=%(document_id)s | %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    )
    root.addHandler(handler)
