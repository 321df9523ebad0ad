"""Format-specific thumbnail strategies."""

from .image import ImageStrategy
from .office import OFFICE_MIME_TYPES, OfficeStrategy, canonical_mime, office_type_name
from .pdf import PdfStrategy

__all__ = [
    "ImageStrategy",
    "OFFICE_MIME_TYPES",
    "OfficeStrategy",
    "PdfStrategy",
    "canonical_mime",
    "office_type_name",
]
