"""
ChartPulse - Screenshot Cropping

Crops chart screenshots down to the chart area before they are sent to
the vision model. Rectangles that run past the image edge are clamped
with a warning; a rectangle whose origin is outside the image is an error.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from PIL import Image

from chartpulse.config import CROP_PRESETS
from chartpulse.exceptions import ConfigurationError, CropBoundsError
from chartpulse.logging import get_logger
from chartpulse.models import CropRect

logger = get_logger(__name__, component="cropping")


def crop_image(
    input_path: str | Path,
    rect: CropRect,
    output_path: str | Path | None = None,
) -> str:
    """
    Crop an image to ``rect`` and write it as PNG.

    Args:
        input_path: Source image
        rect: Crop rectangle in pixels
        output_path: Destination; defaults to overwriting the source

    Returns:
        Path of the written image
    """
    input_path = Path(input_path)
    output_path = Path(output_path) if output_path else input_path

    if not input_path.exists():
        raise FileNotFoundError(f"Input image not found: {input_path}")

    with Image.open(input_path) as img:
        img.load()
        width, height = img.size
        bounded = rect.clamp(width, height)
        if bounded is None:
            raise CropBoundsError(
                f"Crop origin ({rect.x},{rect.y}) lies outside "
                f"{input_path.name} ({width}x{height})"
            )
        if bounded != rect:
            logger.warning(
                "crop_clamped",
                image=input_path.name,
                requested=str(rect),
                applied=str(bounded),
                image_size=f"{width}x{height}",
            )
        cropped = img.crop(bounded.as_box())

    output_path.parent.mkdir(parents=True, exist_ok=True)
    cropped.save(output_path, format="PNG")

    logger.info(
        "image_cropped",
        source=input_path.name,
        target=output_path.name,
        area=str(bounded),
    )
    return str(output_path)


def parse_crop_rect(value: str) -> CropRect:
    """Parse "x,y,width,height" (e.g. "140,80,1200,700")."""
    parts = [p.strip() for p in value.split(",")]
    try:
        x, y, width, height = (int(p) for p in parts)
        return CropRect(x=x, y=y, width=width, height=height)
    except ValueError as e:
        raise ConfigurationError(
            f'Invalid crop configuration: "{value}". Expected format: "x,y,width,height"'
        ) from e


def get_crop_preset(name: str) -> CropRect:
    """Look up a named crop preset."""
    try:
        return CROP_PRESETS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown crop preset '{name}', expected one of {sorted(CROP_PRESETS)}"
        ) from None


@dataclass(frozen=True)
class CropTestReport:
    original_size: tuple[int, int]
    cropped_size: tuple[int, int]
    output_path: str

    @property
    def reduction_pct(self) -> float:
        original = self.original_size[0] * self.original_size[1]
        cropped = self.cropped_size[0] * self.cropped_size[1]
        if original == 0:
            return 0.0
        return round((original - cropped) / original * 100, 1)


def preview_crop(input_path: str | Path, rect: CropRect) -> CropTestReport:
    """Crop a copy of an existing image to preview a rectangle."""
    input_path = Path(input_path)
    if not input_path.exists():
        raise FileNotFoundError(f"Test image not found: {input_path}")

    with Image.open(input_path) as img:
        original_size = img.size

    output_path = input_path.with_name(f"{input_path.stem}-test-crop.png")
    cropped_path = crop_image(input_path, rect, output_path)

    with Image.open(cropped_path) as img:
        cropped_size = img.size

    report = CropTestReport(
        original_size=original_size,
        cropped_size=cropped_size,
        output_path=cropped_path,
    )
    logger.info(
        "crop_test_complete",
        original=f"{original_size[0]}x{original_size[1]}",
        cropped=f"{cropped_size[0]}x{cropped_size[1]}",
        reduction_pct=report.reduction_pct,
        output=cropped_path,
    )
    return report
