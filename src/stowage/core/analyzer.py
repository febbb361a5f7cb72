"""Header-level file analysis.

Extracts cheap metadata (format, dimensions) from the first bytes of a
file. No decoding happens here; anything that cannot be read from the
header is simply left out of the result.
"""

from __future__ import annotations

import struct
from pathlib import PurePosixPath
from typing import Any

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

_PNG_COLOR_TYPES = {
    0: "grayscale",
    2: "rgb",
    3: "indexed",
    4: "grayscale_alpha",
    6: "rgba",
}

# SOF markers carrying frame dimensions (C4, C8 and CC are not frames)
_JPEG_SOF_MARKERS = {0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF}


def analyze(data: bytes, content_type: str, filename: str | None = None) -> dict[str, Any]:
    """Return metadata for file content of the given MIME type."""
    if content_type.startswith("image/"):
        return analyze_image(data, content_type)
    if content_type.startswith("video/"):
        return {"format": _format_from_type(content_type), "media_type": "video"}
    if content_type.startswith("audio/"):
        return {"format": _format_from_type(content_type), "media_type": "audio"}
    if content_type == "application/pdf":
        return _analyze_pdf(data)

    result: dict[str, Any] = {
        "format": _format_from_type(content_type),
        "content_type": content_type,
    }
    if filename:
        result["extension"] = PurePosixPath(filename).suffix
    return result


def analyze_image(data: bytes, content_type: str) -> dict[str, Any]:
    if content_type == "image/png":
        return _analyze_png(data)
    if content_type == "image/gif":
        return _analyze_gif(data)
    if content_type in ("image/jpeg", "image/jpg"):
        return _analyze_jpeg(data)
    if content_type == "image/webp":
        return _analyze_webp(data)
    return {"format": _format_from_type(content_type)}


def _format_from_type(content_type: str) -> str:
    subtype = content_type.split("/", 1)[-1]
    return subtype.split(";", 1)[0].split("+", 1)[0].upper()


def _analyze_png(data: bytes) -> dict[str, Any]:
    result: dict[str, Any] = {"format": "PNG"}
    # Signature, then the IHDR chunk: length(4) type(4) width(4) height(4) depth(1) color(1)
    if not data.startswith(PNG_SIGNATURE) or len(data) < 26 or data[12:16] != b"IHDR":
        return result
    width, height = struct.unpack(">II", data[16:24])
    result.update(
        width=width,
        height=height,
        bit_depth=data[24],
        color_type=_PNG_COLOR_TYPES.get(data[25], "unknown"),
    )
    return result


def _analyze_gif(data: bytes) -> dict[str, Any]:
    result: dict[str, Any] = {"format": "GIF"}
    version = data[:6]
    if version not in (b"GIF87a", b"GIF89a") or len(data) < 10:
        return result
    width, height = struct.unpack("<HH", data[6:10])
    result.update(
        version=version.decode("ascii"),
        width=width,
        height=height,
        # More than one graphic control extension means more than one frame
        animated=data.count(b"\x21\xf9\x04") > 1,
    )
    return result


def _analyze_jpeg(data: bytes) -> dict[str, Any]:
    result: dict[str, Any] = {"format": "JPEG"}
    if not data.startswith(b"\xff\xd8"):
        return result

    offset = 2
    while offset + 4 <= len(data):
        if data[offset] != 0xFF:
            break
        marker = data[offset + 1]
        if marker == 0xFF:
            offset += 1
            continue
        if marker in (0xD8, 0x01) or 0xD0 <= marker <= 0xD7:
            offset += 2
            continue
        (length,) = struct.unpack(">H", data[offset + 2 : offset + 4])
        if marker in _JPEG_SOF_MARKERS and offset + 9 <= len(data):
            height, width = struct.unpack(">HH", data[offset + 5 : offset + 9])
            components = data[offset + 9] if offset + 9 < len(data) else None
            result.update(width=width, height=height)
            if components is not None:
                result["colorspace"] = {1: "grayscale", 3: "ycbcr", 4: "cmyk"}.get(
                    components, "unknown"
                )
            return result
        if marker == 0xDA:
            break
        offset += 2 + length
    return result


def _analyze_webp(data: bytes) -> dict[str, Any]:
    result: dict[str, Any] = {"format": "WebP"}
    if len(data) < 30 or data[:4] != b"RIFF" or data[8:12] != b"WEBP":
        return result

    chunk = data[12:16]
    if chunk == b"VP8 ":
        width, height = struct.unpack("<HH", data[26:30])
        result.update(width=width & 0x3FFF, height=height & 0x3FFF)
    elif chunk == b"VP8L":
        bits = int.from_bytes(data[21:25], "little")
        result.update(width=(bits & 0x3FFF) + 1, height=((bits >> 14) & 0x3FFF) + 1)
    elif chunk == b"VP8X":
        result.update(
            width=int.from_bytes(data[24:27], "little") + 1,
            height=int.from_bytes(data[27:30], "little") + 1,
        )
    return result


def _analyze_pdf(data: bytes) -> dict[str, Any]:
    result: dict[str, Any] = {"format": "PDF"}
    if data.startswith(b"%PDF-"):
        header = data[5:16].split(b"\n", 1)[0].split(b"\r", 1)[0]
        result["version"] = header.decode("ascii", errors="ignore").strip()
        result["pages"] = data.count(b"/Type /Page") - data.count(b"/Type /Pages")
    return result
