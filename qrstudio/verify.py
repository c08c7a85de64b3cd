"""Scan verification for rendered project QRs.

Decodes with OpenCV's QR detector and checks the payload against the
project's normalized URL. ``check_print_conditions`` re-scans under blur,
lighting and downscaling so a logo badge or label that hurts scannability
shows up before anything goes to print.
"""

import io
import time
from dataclasses import dataclass, field

import cv2
import numpy as np
from PIL import Image, ImageEnhance, ImageFilter

from qrstudio.logging import audit, get_logger, trace

log = get_logger("verify")

DECODER = "opencv"
BLUR_RADII = (1, 2)
BRIGHTNESS_FACTORS = (0.6, 1.4)
DOWNSCALE_PX = (320, 200)


@dataclass
class ScanResult:
    success: bool
    decoded: str | None = None
    time_ms: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict:
        return {"success": self.success, "decoded": self.decoded,
                "time_ms": round(self.time_ms, 1), "error": self.error}


@dataclass
class PrintCheckReport:
    original: ScanResult
    variants: dict[str, ScanResult] = field(default_factory=dict)

    @property
    def passed(self) -> int:
        return int(self.original.success) + sum(r.success for r in self.variants.values())

    @property
    def total(self) -> int:
        return 1 + len(self.variants)

    @property
    def ok(self) -> bool:
        return self.passed == self.total

    def summary(self) -> str:
        lines = [f"Scan check: {self.passed}/{self.total} passed",
                 f"  {'original':14s}: {'PASS' if self.original.success else 'FAIL'}"]
        for name, r in self.variants.items():
            lines.append(f"  {name:14s}: {'PASS' if r.success else 'FAIL'} ({r.time_ms:.1f}ms)")
        return "\n".join(lines)


def open_png(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data)).convert("RGB")


def scan(image: Image.Image, expected: str | None = None) -> ScanResult:
    """Decode one image; a payload other than ``expected`` counts as a failure."""
    start = time.perf_counter()
    gray = cv2.cvtColor(np.array(image.convert("RGB")), cv2.COLOR_RGB2GRAY)
    data, _points, _ = cv2.QRCodeDetector().detectAndDecode(gray)
    elapsed = (time.perf_counter() - start) * 1000

    if not data:
        return ScanResult(False, time_ms=elapsed, error="no QR code detected")
    if expected is not None and data != expected:
        return ScanResult(False, decoded=data, time_ms=elapsed,
                          error=f"payload mismatch: got {data!r}, expected {expected!r}")
    return ScanResult(True, decoded=data, time_ms=elapsed)


@trace
def verify(image: Image.Image, expected: str | None = None) -> ScanResult:
    result = scan(image, expected)
    audit("scan.verified", logger=log, decoder=DECODER, success=result.success,
          time_ms=round(result.time_ms, 1), error=result.error)
    return result


def _downscale(image: Image.Image, width: int) -> Image.Image:
    if image.width <= width:
        return image
    height = round(image.height * width / image.width)
    return image.resize((width, height), Image.LANCZOS)


@trace
def check_print_conditions(image: Image.Image, expected: str | None = None) -> PrintCheckReport:
    report = PrintCheckReport(original=scan(image, expected))
    for radius in BLUR_RADII:
        report.variants[f"blur {radius}"] = scan(image.filter(ImageFilter.GaussianBlur(radius=radius)), expected)
    for factor in BRIGHTNESS_FACTORS:
        report.variants[f"light x{factor}"] = scan(ImageEnhance.Brightness(image).enhance(factor), expected)
    for width in DOWNSCALE_PX:
        report.variants[f"{width}px"] = scan(_downscale(image, width), expected)

    audit("scan.print_check", logger=log, passed=report.passed, total=report.total)
    return report
