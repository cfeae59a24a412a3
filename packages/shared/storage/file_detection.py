"""
Content type detection for stored blobs.

Detects content type by:
1. Content inspection (magic bytes / patterns)
2. File extension (fallback)
"""

import codecs
import mimetypes
import re

DEFAULT_CONTENT_TYPE = "application/octet-stream"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"

# Magic bytes checked at offset 0
MAGIC_SIGNATURES: list[tuple[bytes, str]] = [
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
    (b"\x00\x00\x01\x00", "image/vnd.microsoft.icon"),
    (b"%PDF-", "application/pdf"),
    (b"PK\x03\x04", "application/zip"),
    (b"\x1f\x8b", "application/gzip"),
]

# ISO base media brands (bytes 8..12 after "ftyp" at offset 4)
FTYP_BRANDS: dict[bytes, str] = {
    b"avif": "image/avif",
    b"avis": "image/avif",
    b"heic": "image/heic",
    b"heix": "image/heic",
    b"mif1": "image/heif",
    b"mp41": "video/mp4",
    b"mp42": "video/mp4",
    b"isom": "video/mp4",
}

SVG_PATTERN = re.compile(rb"<svg[\s>]", re.IGNORECASE)

_TOKEN = r"[A-Za-z0-9!#$&^_.+-]+"
MIME_PATTERN = re.compile(rf"^({_TOKEN})/({_TOKEN})$")


def detect_content_type_by_content(content: bytes, sample_size: int = 4096) -> str | None:
    """
    Detect content type by inspecting leading bytes.

    Args:
        content: Blob content bytes
        sample_size: How many bytes to inspect

    Returns:
        MIME type or None if unknown
    """
    sample = content[:sample_size]

    for magic, content_type in MAGIC_SIGNATURES:
        if sample.startswith(magic):
            return content_type

    # RIFF container: WebP is "RIFF....WEBP"
    if sample[:4] == b"RIFF" and sample[8:12] == b"WEBP":
        return "image/webp"

    if sample[4:8] == b"ftyp":
        brand = FTYP_BRANDS.get(sample[8:12])
        if brand:
            return brand

    # SVG is XML text; look for the root element near the start
    stripped = sample.lstrip()
    if stripped.startswith((b"<?xml", b"<svg", b"<!DOCTYPE svg", b"<!--")):
        if SVG_PATTERN.search(stripped):
            return "image/svg+xml"

    return None


def detect_content_type_by_extension(filename: str | None) -> str | None:
    """Guess the content type from a filename extension."""
    if not filename:
        return None

    content_type, _ = mimetypes.guess_type(filename, strict=False)
    return content_type


def detect_content_type(content: bytes, filename: str | None = None) -> str:
    """
    Detect content type using content and/or filename.

    Priority:
    1. Content inspection
    2. Extension (if recognized)
    3. UTF-8 text
    4. ``application/octet-stream``

    Args:
        content: Blob content
        filename: Name the blob is stored under

    Returns:
        A ``type/subtype`` MIME string, never None
    """
    content_type = detect_content_type_by_content(content)
    if content_type:
        return content_type

    content_type = detect_content_type_by_extension(filename)
    if content_type:
        return content_type

    if content:
        try:
            # A sample cut mid-character is still text
            decoder = codecs.getincrementaldecoder("utf-8")()
            decoder.decode(content[:4096], final=len(content) <= 4096)
        except UnicodeDecodeError:
            pass
        else:
            return TEXT_CONTENT_TYPE

    return DEFAULT_CONTENT_TYPE


def parse_mime(content_type: str | None) -> tuple[str, str] | None:
    """
    Split a MIME string into lowercase (type, subtype), ignoring parameters.

    Returns:
        Tuple of (type, subtype), or None if the value is malformed
    """
    if not content_type:
        return None

    essence = content_type.split(";", 1)[0].strip()
    match = MIME_PATTERN.match(essence)
    if not match:
        return None

    return match.group(1).lower(), match.group(2).lower()
