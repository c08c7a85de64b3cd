"""Label Compositor: business name + tagline band under a shrunk QR.

Layout on a square canvas of side S:
    - QR scaled to 84% of S, horizontally centred, top-aligned
    - bottom band (16% of S) holds two centred lines at fixed offsets

PNG canvases get Pillow text; SVG canvases get escaped <text> elements.
"""

import io
import os
import re
from xml.sax.saxutils import escape

from PIL import Image, ImageDraw, ImageFont

from qrstudio.logging import audit, get_logger, trace

log = get_logger("label")

ELLIPSIS = "\u2026"
QR_SCALE = 0.84
NAME_CENTER = 0.30      # fraction of the band height
TAGLINE_CENTER = 0.74
NAME_FONT_RATIO = 0.30  # font size as fraction of band height
TAGLINE_FONT_RATIO = 0.20
SVG_CANVAS = 1024

INK = (15, 23, 42)
MUTED = (71, 85, 105)
FONT_FAMILY = "Helvetica, Arial, sans-serif"

_FONT_PATHS = {
    True: [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
        "/Library/Fonts/Arial Bold.ttf",
        "C:/Windows/Fonts/arialbd.ttf",
    ],
    False: [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
        "/Library/Fonts/Arial.ttf",
        "C:/Windows/Fonts/arial.ttf",
    ],
}

_VIEWBOX_RE = re.compile(r"viewBox=\"([^\"]+)\"")
_SVG_OPEN_RE = re.compile(r"<svg\b[^>]*>")


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def truncate(text: str | None, max_len: int) -> str:
    """Trim, then cut to ``max_len`` characters with a trailing ellipsis.

    Returns the trimmed text unchanged when it fits. Not locale-sensitive:
    lengths are counted in code points.
    """
    s = (text or "").strip()
    if max_len <= 0:
        return ""
    if len(s) <= max_len:
        return s
    return s[: max_len - 1] + ELLIPSIS


def escape_markup(text: str) -> str:
    """Neutralize &, <, >, quotes before embedding in SVG markup."""
    return escape(text, {'"': "&quot;", "'": "&apos;"})


def _load_font(size: int, bold: bool = False) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """First available sans-serif TTF; Pillow's built-in font as last resort."""
    for path in _FONT_PATHS[bold]:
        if os.path.isfile(path):
            try:
                return ImageFont.truetype(path, size)
            except OSError:
                continue
    try:
        return ImageFont.load_default(size=size)
    except TypeError:
        # Pillow < 10.1 has no sized default font
        return ImageFont.load_default()


def _band_layout(canvas_px: int) -> dict:
    qr_px = int(canvas_px * QR_SCALE)
    band_top = qr_px
    band_h = canvas_px - qr_px
    return {
        "qr_px": qr_px,
        "qr_left": (canvas_px - qr_px) // 2,
        "band_top": band_top,
        "band_h": band_h,
        "name_y": band_top + band_h * NAME_CENTER,
        "tagline_y": band_top + band_h * TAGLINE_CENTER,
        "name_size": max(8, int(band_h * NAME_FONT_RATIO)),
        "tagline_size": max(6, int(band_h * TAGLINE_FONT_RATIO)),
    }


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------

def _draw_centered(draw: ImageDraw.ImageDraw, text: str, cx: float, cy: float, font, fill):
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = cx - (right - left) / 2 - left
    y = cy - (bottom - top) / 2 - top
    draw.text((x, y), text, font=font, fill=fill)


@trace
def compose_label_png(qr_png: bytes, name: str, tagline: str | None, name_max: int, tagline_max: int) -> bytes:
    qr = Image.open(io.BytesIO(qr_png)).convert("RGB")
    size = qr.width
    lay = _band_layout(size)

    canvas = Image.new("RGB", (size, size), (255, 255, 255))
    canvas.paste(qr.resize((lay["qr_px"], lay["qr_px"]), Image.NEAREST), (lay["qr_left"], 0))

    draw = ImageDraw.Draw(canvas)
    name_text = truncate(name, name_max)
    tagline_text = truncate(tagline, tagline_max)
    if name_text:
        _draw_centered(draw, name_text, size / 2, lay["name_y"], _load_font(lay["name_size"], bold=True), INK)
    if tagline_text:
        _draw_centered(draw, tagline_text, size / 2, lay["tagline_y"], _load_font(lay["tagline_size"]), MUTED)

    buf = io.BytesIO()
    canvas.save(buf, format="PNG")
    audit("label.composed", logger=log, fmt="png", canvas_px=size,
          name_len=len(name_text), tagline_len=len(tagline_text))
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Vector
# ---------------------------------------------------------------------------

def _svg_body(svg: str) -> tuple[str, str]:
    """(viewBox, inner markup) of a standalone QR SVG document."""
    opening = _SVG_OPEN_RE.search(svg)
    end = svg.rfind("</svg>")
    if opening is None or end < opening.end():
        raise ValueError("not an SVG document")
    vb = _VIEWBOX_RE.search(opening.group(0))
    if vb is None:
        raise ValueError("QR SVG has no viewBox")
    return vb.group(1), svg[opening.end():end]


def _hex(rgb: tuple[int, int, int]) -> str:
    return "#%02x%02x%02x" % rgb


@trace
def compose_label_svg(qr_svg: str, name: str, tagline: str | None, name_max: int, tagline_max: int) -> str:
    view_box, inner = _svg_body(qr_svg)
    lay = _band_layout(SVG_CANVAS)
    name_text = escape_markup(truncate(name, name_max))
    tagline_text = escape_markup(truncate(tagline, tagline_max))

    parts = [
        f'<svg xmlns="http://www.w3.org/2000/svg" version="1.1" viewBox="0 0 {SVG_CANVAS} {SVG_CANVAS}">',
        f'<rect x="0" y="0" width="{SVG_CANVAS}" height="{SVG_CANVAS}" fill="#ffffff"/>',
        f'<svg x="{lay["qr_left"]}" y="0" width="{lay["qr_px"]}" height="{lay["qr_px"]}" viewBox="{view_box}">',
        inner,
        "</svg>",
    ]
    if name_text:
        parts.append(
            f'<text x="{SVG_CANVAS / 2:g}" y="{lay["name_y"]:.1f}" text-anchor="middle" dominant-baseline="middle" '
            f'font-family="{FONT_FAMILY}" font-weight="700" font-size="{lay["name_size"]}" '
            f'fill="{_hex(INK)}">{name_text}</text>'
        )
    if tagline_text:
        parts.append(
            f'<text x="{SVG_CANVAS / 2:g}" y="{lay["tagline_y"]:.1f}" text-anchor="middle" dominant-baseline="middle" '
            f'font-family="{FONT_FAMILY}" font-size="{lay["tagline_size"]}" '
            f'fill="{_hex(MUTED)}">{tagline_text}</text>'
        )
    parts.append("</svg>")
    audit("label.composed", logger=log, fmt="svg", canvas_px=SVG_CANVAS)
    return "".join(parts)


def compose_label(canvas_bytes: bytes, name: str, tagline: str | None, name_max: int, tagline_max: int) -> bytes:
    """Dispatch on the canvas type: SVG markup in, SVG out; PNG in, PNG out."""
    if canvas_bytes.lstrip()[:1] == b"<":
        return compose_label_svg(canvas_bytes.decode("utf-8"), name, tagline, name_max, tagline_max).encode("utf-8")
    return compose_label_png(canvas_bytes, name, tagline, name_max, tagline_max)
