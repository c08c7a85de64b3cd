"""QR Encoder: normalized URL -> PNG raster or responsive SVG.

Error correction is pinned to H and the quiet zone to 4 modules whatever the
output size; only the pixel width changes between preview, download and
print masters.
"""

import io
import re
from enum import Enum
from urllib.parse import urlsplit

import qrcode
import qrcode.constants
from qrcode.image.svg import SvgPathImage
from PIL import Image

from qrstudio.errors import ValidationError
from qrstudio.logging import audit, get_logger, trace

log = get_logger("encoder")

ECC_LEVEL = qrcode.constants.ERROR_CORRECT_H  # 30%
QUIET_ZONE_MODULES = 4
DEFAULT_WIDTH_PX = 1024

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)
_SVG_ROOT_RE = re.compile(r"<svg\b[^>]*>")
_SVG_SIZE_ATTR_RE = re.compile(r"\s(?:width|height)=\"[^\"]*\"")


class OutputFormat(Enum):
    RASTER = "png"
    VECTOR = "svg"


def normalize_url(raw: str) -> str:
    """Trim and prefix ``https://`` when the input has no scheme.

    Raises ValidationError for empty input or a result with no host.
    """
    url = raw.strip() if isinstance(raw, str) else ""
    if not url:
        raise ValidationError("url is required")
    if not _SCHEME_RE.match(url):
        url = f"https://{url}"
    parts = urlsplit(url)
    if not parts.netloc or any(ch.isspace() for ch in url):
        raise ValidationError(f"invalid url: {_shorten(raw)}")
    return url


def _shorten(s: str, n: int = 60) -> str:
    return s if len(s) <= n else s[:n] + "..."


def _build(url: str) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        version=None,
        error_correction=ECC_LEVEL,
        box_size=1,
        border=QUIET_ZONE_MODULES,
    )
    qr.add_data(url)
    qr.make(fit=True)
    return qr


def grid_size(url: str) -> int:
    """Modules per side including the quiet zone, for an already-normalized URL."""
    return _build(url).modules_count + 2 * QUIET_ZONE_MODULES


@trace
def encode_png(url: str, width_px: int = DEFAULT_WIDTH_PX) -> bytes:
    """Render a square PNG exactly ``width_px`` wide.

    The module grid is drawn at the largest integer box size that fits and then
    scaled with nearest-neighbour, so module edges stay hard at any width.
    """
    url = normalize_url(url)
    qr = _build(url)
    modules = qr.modules_count + 2 * QUIET_ZONE_MODULES
    if width_px < modules:
        raise ValidationError(f"width {width_px}px is smaller than the {modules}-module grid")

    qr.box_size = max(1, width_px // modules)
    img = qr.make_image(fill_color="black", back_color="white").convert("RGB")
    if img.size != (width_px, width_px):
        img = img.resize((width_px, width_px), Image.NEAREST)

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    audit("qr.encoded", logger=log, fmt="png", url=url[:80], version=qr.version,
          modules=modules, width_px=width_px)
    return buf.getvalue()


def strip_fixed_size(svg: str) -> str:
    """Remove width/height from the root <svg> tag so it scales to its container."""
    m = _SVG_ROOT_RE.search(svg)
    if m is None:
        raise ValueError("not an SVG document")
    root = _SVG_SIZE_ATTR_RE.sub("", m.group(0))
    return svg[: m.start()] + root + svg[m.end():]


@trace
def encode_svg(url: str) -> str:
    """Render a responsive SVG (viewBox only, no fixed width/height)."""
    url = normalize_url(url)
    qr = _build(url)
    qr.box_size = 10  # 1 user unit per module in the viewBox
    img = qr.make_image(image_factory=SvgPathImage)
    buf = io.BytesIO()
    img.save(buf)
    svg = strip_fixed_size(buf.getvalue().decode("utf-8"))
    audit("qr.encoded", logger=log, fmt="svg", url=url[:80], version=qr.version,
          modules=qr.modules_count + 2 * QUIET_ZONE_MODULES)
    return svg


def encode(url: str, fmt: OutputFormat = OutputFormat.RASTER, width_px: int = DEFAULT_WIDTH_PX) -> bytes:
    """Single entry point: PNG bytes for RASTER, UTF-8 SVG bytes for VECTOR."""
    if fmt is OutputFormat.VECTOR:
        return encode_svg(url).encode("utf-8")
    return encode_png(url, width_px)


@trace
def get_module_matrix(url: str) -> list[list[bool]]:
    """Raw module matrix (True=dark) without quiet zone, for verification tools."""
    qr = qrcode.QRCode(error_correction=ECC_LEVEL, box_size=1, border=0)
    qr.add_data(normalize_url(url))
    qr.make(fit=True)
    return qr.modules
