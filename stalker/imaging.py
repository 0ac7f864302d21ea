"""Image preprocessing that turns leaderboard screenshots into clean black-on-white text."""

import io
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from PIL import Image, ImageFilter, ImageOps

from .config import IMAGE_PROCESSING


logger = logging.getLogger(__name__)

SHARPEN_KERNEL = (0, -1, 0, -1, 5, -1, 0, -1, 0)


@dataclass(frozen=True)
class ImageParams:
    """Tuning for the preprocessing chain."""
    white_threshold: int = 180
    contrast: float = 2.5
    gamma: float = 1.8
    median: int = 3
    blur: float = 0.3
    upscale: float = 4.0

    @classmethod
    def from_config(cls) -> "ImageParams":
        return cls(**IMAGE_PROCESSING)


def _clamp(value: float) -> int:
    return max(0, min(255, int(round(value))))


def preprocess(data: bytes, params: ImageParams) -> bytes:
    """Binarize a screenshot for OCR and return it as PNG bytes.

    The chain runs in a fixed order: grayscale, upscale, gamma, median,
    blur, normalize, invert, linear stretch, sharpen, 3x3 convolution and
    threshold. Light text on a dark game background comes out black on white.
    """
    with Image.open(io.BytesIO(data)) as source:
        image = ImageOps.grayscale(source)

    width = max(1, round(image.width * params.upscale))
    height = max(1, round(image.height * params.upscale))
    image = image.resize((width, height), Image.Resampling.LANCZOS)

    gamma_table = [_clamp(255 * (v / 255) ** (1 / params.gamma)) for v in range(256)]
    image = image.point(gamma_table)

    median_size = params.median if params.median % 2 == 1 else params.median + 1
    if median_size > 1:
        image = image.filter(ImageFilter.MedianFilter(size=median_size))

    if params.blur > 0:
        image = image.filter(ImageFilter.GaussianBlur(radius=params.blur))

    image = ImageOps.autocontrast(image)
    image = ImageOps.invert(image)
    image = image.point([_clamp(params.contrast * v - 100) for v in range(256)])
    image = image.filter(ImageFilter.UnsharpMask(radius=1, percent=200, threshold=2))
    image = image.filter(ImageFilter.Kernel((3, 3), SHARPEN_KERNEL, scale=1))
    image = image.point([255 if v >= params.white_threshold else 0 for v in range(256)])

    output = io.BytesIO()
    image.save(output, format="PNG")
    image.close()
    return output.getvalue()


def processed_filename(moment: Optional[datetime] = None) -> str:
    """Name for a saved debug image, e.g. '[STALKER][ 2025-10-07 18:02:11 ][].png'."""
    moment = moment or datetime.now()
    return f"[STALKER][ {moment.strftime('%Y-%m-%d %H:%M:%S')} ][].png"


def save_processed_image(data: bytes, directory: Path, max_files: int) -> Optional[Path]:
    """Keep a copy of a preprocessed image for debugging, capped at ``max_files``."""
    try:
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / processed_filename()
        path.write_bytes(data)
        logger.info(f"💾 Saved processed image: {path.name}")
    except OSError as e:
        logger.error(f"Failed to save processed image: {e}")
        return None

    cleanup_processed_images(directory, max_files)
    return path


def cleanup_processed_images(directory: Path, max_files: int) -> int:
    """Delete the least recently modified PNG files above the cap. Returns the number deleted."""
    try:
        files = [p for p in Path(directory).iterdir() if p.suffix == ".png" and p.is_file()]
    except OSError as e:
        logger.error(f"Failed to list processed images: {e}")
        return 0

    if len(files) <= max_files:
        return 0

    files.sort(key=lambda p: p.stat().st_mtime)
    removed = 0
    for path in files[:len(files) - max_files]:
        try:
            os.remove(path)
            removed += 1
        except FileNotFoundError:
            continue

    if removed:
        logger.info(f"🧹 Removed {removed} old processed images (limit: {max_files})")
    return removed
