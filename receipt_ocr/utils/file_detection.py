"""
Source document sniffing by magic bytes.

The invoker embeds each document as a ``data:`` URI, so it needs the real
MIME type regardless of the file extension (the splitter writes ``.pdf``
names for every page).
"""

from typing import Final, Optional

HEADER_BYTES: Final = 8

# signature -> MIME type accepted by the vision endpoint
SIGNATURES: Final[tuple[tuple[bytes, str], ...]] = (
    (b"%PDF", "application/pdf"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
)


def sniff_mime_type(data: bytes) -> Optional[str]:
    """
    MIME type of a document from its leading bytes.

    Returns:
        The MIME type, or None if the format is not supported

    Example:
        >>> sniff_mime_type(b"%PDF-1.4 ...")
        'application/pdf'
    """
    header = data[:HEADER_BYTES]
    for signature, mime_type in SIGNATURES:
        if header.startswith(signature):
            return mime_type
    return None
