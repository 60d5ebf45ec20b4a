import struct
from enum import Enum
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from exceptions import UnreadableSourceError


class ImageFormat(str, Enum):
    PNG = "png"
    APNG = "apng"
    JPEG = "jpeg"
    WEBP = "webp"
    GIF = "gif"
    TIFF = "tiff"
    BMP = "bmp"
    PDF = "pdf"
    AVIF = "avif"
    HEIC = "heic"
    SVG = "svg"


MIME_TYPES = {
    ImageFormat.PNG: "image/png",
    ImageFormat.APNG: "image/apng",
    ImageFormat.JPEG: "image/jpeg",
    ImageFormat.WEBP: "image/webp",
    ImageFormat.GIF: "image/gif",
    ImageFormat.TIFF: "image/tiff",
    ImageFormat.BMP: "image/bmp",
    ImageFormat.PDF: "application/pdf",
    ImageFormat.AVIF: "image/avif",
    ImageFormat.HEIC: "image/heic",
    ImageFormat.SVG: "image/svg+xml",
}

EXTENSION_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".bmp": "image/bmp",
    ".pdf": "application/pdf",
    ".avif": "image/avif",
    ".heic": "image/heic",
}


def detect_format(data: bytes) -> ImageFormat:
    """Detect image format from magic bytes.

    Never trusts file extensions or Content-Type headers.

    Raises:
        UnreadableSourceError: If no known format matches.
    """
    if len(data) < 4:
        raise UnreadableSourceError("File too small to identify format")

    if data[:8] == b"\x89PNG\r\n\x1a\n":
        if is_apng(data):
            return ImageFormat.APNG
        return ImageFormat.PNG

    if data[:3] == b"\xff\xd8\xff":
        return ImageFormat.JPEG

    if data[:6] in (b"GIF87a", b"GIF89a"):
        return ImageFormat.GIF

    if data[:4] == b"RIFF" and len(data) >= 12 and data[8:12] == b"WEBP":
        return ImageFormat.WEBP

    if data[:2] == b"BM":
        return ImageFormat.BMP

    if data[:4] in (b"II\x2a\x00", b"MM\x00\x2a"):
        return ImageFormat.TIFF

    if data[:5] == b"%PDF-":
        return ImageFormat.PDF

    if len(data) >= 12 and data[4:8] == b"ftyp":
        brand = data[8:12]
        if brand in (b"avif", b"avis"):
            return ImageFormat.AVIF
        if brand in (b"heic", b"heix", b"mif1"):
            return ImageFormat.HEIC

    head = data.lstrip(b"\xef\xbb\xbf").lstrip()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in data[:1024]):
        return ImageFormat.SVG

    raise UnreadableSourceError(
        "Unrecognized file format",
        detected_bytes=data[:16].hex(),
    )


def is_apng(data: bytes) -> bool:
    """Check if PNG data contains an acTL chunk before the first IDAT."""
    if data[:8] != b"\x89PNG\r\n\x1a\n":
        return False

    offset = 8

    while offset + 8 <= len(data):
        chunk_length = struct.unpack(">I", data[offset : offset + 4])[0]
        chunk_type = data[offset + 4 : offset + 8]

        if chunk_type == b"acTL":
            return True

        if chunk_type == b"IDAT":
            return False

        # length(4) + type(4) + data + CRC(4)
        offset += 4 + 4 + chunk_length + 4

    return False


def is_animated_webp(data: bytes) -> bool:
    """Check the VP8X animation flag of an extended WebP header."""
    if data[:4] != b"RIFF" or data[8:12] != b"WEBP":
        return False
    if data[12:16] != b"VP8X" or len(data) < 21:
        return False
    return bool(data[20] & 0x02)


def sniff_animation(path: str | Path) -> bool:
    """Best-effort check whether a file holds more than one frame.

    Used when the active engine cannot count frames itself. Reads the
    header for APNG/WebP flags and lets Pillow count GIF and TIFF frames.
    """
    path = Path(path)
    try:
        with path.open("rb") as fh:
            header = fh.read(4096)
    except OSError:
        return False

    try:
        fmt = detect_format(header)
    except UnreadableSourceError:
        return False

    if fmt == ImageFormat.APNG:
        return True
    if fmt == ImageFormat.WEBP:
        return is_animated_webp(header)
    if fmt in (ImageFormat.GIF, ImageFormat.TIFF):
        try:
            with Image.open(path) as img:
                return getattr(img, "n_frames", 1) > 1
        except (UnidentifiedImageError, OSError):
            return fmt == ImageFormat.GIF
    return False
