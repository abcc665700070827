"""
Image Optimizer test configuration

Fixtures:
- site_root: temporary site root containing a few source images
- store: DerivativeStore over site_root
"""

import pytest
import sys
from pathlib import Path

from PIL import Image

# Add the backend directory to the Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from image_optimizer.store import DerivativeStore


# ============================================
# Source images
# ============================================

def make_image(path: Path, size=(64, 48), mode="RGB", fmt="PNG") -> Path:
    """Write a gradient test image and return its path."""
    width, height = size
    img = Image.new(mode, size)
    pixels = img.load()
    for x in range(width):
        for y in range(height):
            r = x * 255 // max(1, width - 1)
            g = y * 255 // max(1, height - 1)
            if mode == "RGBA":
                pixels[x, y] = (r, g, 128, 255 if x < width // 2 else 64)
            else:
                pixels[x, y] = (r, g, 128)
    path.parent.mkdir(parents=True, exist_ok=True)
    img.save(path, format=fmt)
    return path


def png_bytes(size=(64, 48), mode="RGB") -> bytes:
    """Encoded PNG bytes of a gradient test image."""
    from io import BytesIO

    width, height = size
    img = Image.new(mode, size, (200, 100, 50) if mode == "RGB" else (200, 100, 50, 128))
    for x in range(width):
        img.putpixel((x, x * height // max(1, width)), (0, 0, 0) if mode == "RGB" else (0, 0, 0, 255))
    output = BytesIO()
    img.save(output, format="PNG")
    return output.getvalue()


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def site_root(tmp_path):
    """
    Site root with sources:
    - cat.png (64x48 RGB)
    - images/dog.png (40x80 RGBA)
    - broken.png (not an image)
    """
    make_image(tmp_path / "cat.png")
    make_image(tmp_path / "images" / "dog.png", size=(40, 80), mode="RGBA")
    (tmp_path / "broken.png").write_bytes(b"this is not a png")
    return tmp_path


@pytest.fixture
def store(site_root):
    """Store with parallelism 2 over site_root."""
    return DerivativeStore(str(site_root), parallelism=2)


# ============================================
# Helper Functions
# ============================================

def temp_files(root: Path):
    """Leftover temp files anywhere under root."""
    return [p for p in root.rglob("*.tmp")]
