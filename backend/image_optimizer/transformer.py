"""
Image Transformer

Pure functions turning source image bytes into cached artifacts:
- resize: aspect-preserving resize (bicubic), WebP at a given quality
- blur_placeholder: tiny nearest-neighbour raster, WebP, embedded as a
  data URI in an SVG that applies a gaussian blur filter

No file I/O happens here; the store reads sources and writes results.
"""

import base64
import logging
from io import BytesIO
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from .errors import ImageDecodeError, ImageEncodeError, InvalidDimensionsError
from .models import Blur, Operation, Resize

logger = logging.getLogger(__name__)

# Placeholders are tiny, so quality is fixed rather than configurable
PLACEHOLDER_QUALITY = 80

# WebP compression method (0-6)
WEBP_METHOD = 4

# Largest side a WebP image can have; checked before resizing
MAX_WEBP_DIMENSION = 16383

SVG_TEMPLATE = (
    '<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" '
    'width="100%" height="100%" viewBox="0 0 {svg_width} {svg_height}" preserveAspectRatio="none">\n'
    '    <filter id="a" filterUnits="userSpaceOnUse" color-interpolation-filters="sRGB">\n'
    '        <feGaussianBlur stdDeviation="{sigma}" edgeMode="duplicate"/>\n'
    '        <feComponentTransfer>\n'
    '            <feFuncA type="discrete" tableValues="1 1"/>\n'
    '        </feComponentTransfer>\n'
    '    </filter>\n'
    '    <image filter="url(#a)" x="0" y="0" height="100%" width="100%" href="{uri}"/>\n'
    '</svg>\n'
)


def resize(source: bytes, width: int, height: int, quality: int) -> bytes:
    """
    Resize an image to fit within width x height and encode as WebP.

    Args:
        source: Encoded source image (any format Pillow reads)
        width: Bounding box width
        height: Bounding box height
        quality: WebP quality (0-100)

    Returns:
        WebP bytes

    Raises:
        InvalidDimensionsError: width or height is 0, or the fitted size
            is larger than MAX_WEBP_DIMENSION on either side
        ImageDecodeError: source is not a readable image
        ImageEncodeError: WebP encoding failed
    """
    if width <= 0 or height <= 0:
        raise InvalidDimensionsError(f"Cannot resize to {width}x{height}")

    img = _open(source)
    target = _fit(img.size, width, height)
    logger.debug(f"[Transformer] Resize {img.size[0]}x{img.size[1]} -> {target[0]}x{target[1]}")
    img = img.resize(target, Image.Resampling.BICUBIC)
    return _encode_webp(img, quality)


def blur_placeholder(source: bytes, blur: Blur) -> str:
    """
    Build the SVG placeholder for an image.

    The raster is only blur.width x blur.height; the blur itself is done
    by the SVG filter so it stays smooth at any display size.

    Returns:
        SVG document text
    """
    if blur.width <= 0 or blur.height <= 0:
        raise InvalidDimensionsError(f"Cannot build a {blur.width}x{blur.height} placeholder")

    img = _open(source)
    img = img.resize(_fit(img.size, blur.width, blur.height), Image.Resampling.NEAREST)
    webp = _encode_webp(img, PLACEHOLDER_QUALITY)

    encoded = base64.b64encode(webp).decode("ascii")
    return SVG_TEMPLATE.format(
        svg_width=blur.svg_width,
        svg_height=blur.svg_height,
        sigma=blur.sigma,
        uri=f"data:image/webp;base64,{encoded}",
    )


def create_artifact(operation: Operation, source: bytes) -> bytes:
    """Run the transform for `operation` and return the bytes to store."""
    if isinstance(operation, Resize):
        return resize(source, operation.width, operation.height, operation.quality)
    return blur_placeholder(source, operation).encode("utf-8")


# ============================================
# Helpers
# ============================================

def _open(source: bytes) -> Image.Image:
    """Decode and normalize the source to RGB/RGBA."""
    try:
        img = Image.open(BytesIO(source))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(f"Failed to decode source image: {e}") from e

    if img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info):
        return img.convert("RGBA")
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def _fit(size: Tuple[int, int], width: int, height: int) -> Tuple[int, int]:
    """Largest size with the source aspect ratio that fits in width x height."""
    original_width, original_height = size
    ratio = min(width / original_width, height / original_height)
    target = (
        max(1, round(original_width * ratio)),
        max(1, round(original_height * ratio)),
    )
    if max(target) > MAX_WEBP_DIMENSION:
        raise InvalidDimensionsError(
            f"Output {target[0]}x{target[1]} exceeds the WebP limit of {MAX_WEBP_DIMENSION}px"
        )
    return target


def _encode_webp(img: Image.Image, quality: int) -> bytes:
    output = BytesIO()
    try:
        img.save(output, format="WEBP", quality=quality, method=WEBP_METHOD)
    except (OSError, ValueError, KeyError) as e:
        raise ImageEncodeError(f"WebP encoding failed: {e}") from e
    return output.getvalue()
