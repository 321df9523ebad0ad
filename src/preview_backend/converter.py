"""Office-to-PDF converter contract.

The converter itself (LibreOffice or a remote service) lives outside this
package; the office strategy only needs something with this shape.
"""

from __future__ import annotations

from typing import Awaitable, Protocol, Union

from .models import ConversionResult


class OfficeConverter(Protocol):
    def convert_to_pdf(
        self, data: bytes, mime_type: str
    ) -> Union[ConversionResult, Awaitable[ConversionResult]]:
        """Convert an office document to PDF bytes.

        Implementations may be synchronous or ``async``.
        """
