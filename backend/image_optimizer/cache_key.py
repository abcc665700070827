"""
Cache Key Codec

Two encodings of a TransformRequest:
- wire: compact query string embedded in image URLs
      src=cat.png&op=r&w=100&h=100&q=75
      src=cat.png&op=b&w=25&h=25&sw=100&sh=100&s=15
- path: filesystem location of the generated artifact
      cache/image/<urlsafe-base64(wire)>/cat.png.webp

Both encodings are stable across restarts (URLs end up in browser caches).
"""

import base64
import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, quote, urlencode

from .errors import MalformedKeyError, PathTooLongError
from .models import Blur, Resize, TransformRequest, U32_MAX, U8_MAX

# Route the image component points at, and the on-disk directory (relative to root)
DEFAULT_ROUTE = "/cache/image"
CACHE_DIR = "cache/image"

# Filename limit on most filesystems (ext4, APFS, NTFS)
MAX_SEGMENT_BYTES = 255

# op tag -> (operation type, ((wire tag, field name, max value), ...))
_OPERATIONS: Dict[str, tuple] = {
    "r": (Resize, (
        ("w", "width", U32_MAX),
        ("h", "height", U32_MAX),
        ("q", "quality", 100),
    )),
    "b": (Blur, (
        ("w", "width", U32_MAX),
        ("h", "height", U32_MAX),
        ("sw", "svg_width", U32_MAX),
        ("sh", "svg_height", U32_MAX),
        ("s", "sigma", U8_MAX),
    )),
}
_TAG_BY_TYPE = {op_type: tag for tag, (op_type, _) in _OPERATIONS.items()}
_KNOWN_TAGS = {"src", "op"} | {
    wire for _, fields in _OPERATIONS.values() for wire, _, _ in fields
}

_DIGITS = re.compile(r"[0-9]+")

_MEDIA_TYPES = {
    "webp": "image/webp",
    "svg": "image/svg+xml",
}


# ============================================
# Wire encoding
# ============================================

def encode_wire(request: TransformRequest) -> str:
    """Encode a request as a query string (fixed field order)."""
    tag = _TAG_BY_TYPE[type(request.operation)]
    _, fields = _OPERATIONS[tag]

    pairs: List[Tuple[str, object]] = [("src", request.source), ("op", tag)]
    pairs.extend(
        (wire, getattr(request.operation, name))
        for wire, name, _ in fields
    )
    return urlencode(pairs, quote_via=quote, safe="/")


def decode_wire(value: str) -> TransformRequest:
    """
    Decode a wire key.

    Accepts either the bare query string or a full URL; only the part
    after the last '?' is parsed.

    Raises:
        MalformedKeyError: on missing, duplicated or invalid fields
    """
    query = value.rpartition("?")[2]

    fields: Dict[str, str] = {}
    for key, item in parse_qsl(query, keep_blank_values=True):
        if key not in _KNOWN_TAGS:
            continue
        if key in fields:
            raise MalformedKeyError(f"Duplicated field: {key}")
        fields[key] = item

    source = fields.get("src")
    if not source:
        raise MalformedKeyError("Missing field: src")

    tag = fields.get("op")
    if tag not in _OPERATIONS:
        raise MalformedKeyError(f"Unknown operation: {tag!r}")

    op_type, op_fields = _OPERATIONS[tag]
    kwargs = {
        name: _parse_int(fields, wire, upper)
        for wire, name, upper in op_fields
    }

    try:
        return TransformRequest(source=source, operation=op_type(**kwargs))
    except ValueError as e:
        raise MalformedKeyError(str(e)) from e


def to_url(request: TransformRequest, prefix: str = DEFAULT_ROUTE) -> str:
    """URL the image component embeds for this request."""
    return f"{prefix}?{encode_wire(request)}"


def _parse_int(fields: Dict[str, str], wire: str, upper: int) -> int:
    raw = fields.get(wire)
    if raw is None:
        raise MalformedKeyError(f"Missing field: {wire}")
    if not _DIGITS.fullmatch(raw):
        raise MalformedKeyError(f"Field {wire} is not an unsigned integer: {raw!r}")
    number = int(raw)
    if number > upper:
        raise MalformedKeyError(f"Field {wire} out of range: {number}")
    return number


# ============================================
# Path encoding
# ============================================

def extension(request: TransformRequest) -> str:
    return "svg" if request.is_blur else "webp"


def media_type(request: TransformRequest) -> str:
    return _MEDIA_TYPES[extension(request)]


def encode_path(request: TransformRequest) -> str:
    """
    Relative (POSIX) path of the artifact for `request`.

    Raises:
        PathTooLongError: if a segment would exceed MAX_SEGMENT_BYTES
    """
    key = base64.urlsafe_b64encode(encode_wire(request).encode("utf-8")).decode("ascii")
    source = "/".join(
        s for s in request.source.split("/") if s and s != "."
    )
    path = f"{CACHE_DIR}/{key}/{source}.{extension(request)}"

    for segment in path.split("/"):
        size = len(segment.encode("utf-8"))
        if size > MAX_SEGMENT_BYTES:
            raise PathTooLongError(
                f"Path segment is {size} bytes (max {MAX_SEGMENT_BYTES}) for {request.source}"
            )
    return path


def decode_path(path: str) -> Optional[TransformRequest]:
    """
    Recover the request from an artifact path.

    Best effort: returns the first segment that decodes to a valid
    wire key, or None.
    """
    for segment in str(path).replace("\\", "/").split("/"):
        if not segment:
            continue
        try:
            raw = base64.b64decode(segment.encode("ascii"), altchars=b"-_", validate=True)
            return decode_wire(raw.decode("utf-8"))
        except ValueError:
            # binascii.Error, UnicodeError and DecodeError are all ValueErrors
            continue
    return None
