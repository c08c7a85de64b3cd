"""Logo Compositor: rounded, size-capped logo badge over a QR raster.

The logo side is capped at ``canvas * max_logo_ratio`` so the occluded area
stays inside what error-correction level H can recover. An opaque white badge
is composited first, then the logo, so transparent logo edges never reveal
QR modules underneath.
"""

import io

from PIL import Image, ImageChops, ImageDraw, UnidentifiedImageError

from qrstudio.errors import UpstreamFetchError, ValidationError
from qrstudio.logging import audit, get_logger, trace

log = get_logger("logo")

BADGE_PADDING_RATIO = 0.012
MIN_BADGE_PADDING_PX = 8
LOGO_CORNER_RATIO = 0.18

ALLOWED_LOGO_TYPES = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
}


# ---------------------------------------------------------------------------
# Loading & normalization (shared with print layouts)
# ---------------------------------------------------------------------------

def load_logo(logo_bytes: bytes) -> Image.Image:
    """Decode logo bytes to RGBA. Undecodable bytes count as a failed fetch."""
    if not logo_bytes:
        raise UpstreamFetchError("empty logo payload")
    try:
        img = Image.open(io.BytesIO(logo_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise UpstreamFetchError(f"logo is not a decodable image: {e}") from e
    return img.convert("RGBA")


def _scale_preserving_aspect(original_size: tuple[int, int], target: int) -> tuple[int, int]:
    """Scale (w, h) so the larger dimension equals *target*, preserving aspect."""
    w, h = original_size
    aspect = w / h
    if aspect >= 1:
        return target, max(1, round(target / aspect))
    return max(1, round(target * aspect)), target


def fit_logo(logo: Image.Image, box_px: int) -> Image.Image:
    """Fit inside a ``box_px`` square, centred on a transparent letterbox."""
    new_w, new_h = _scale_preserving_aspect(logo.size, box_px)
    resized = logo.resize((new_w, new_h), Image.LANCZOS)
    canvas = Image.new("RGBA", (box_px, box_px), (255, 255, 255, 0))
    canvas.paste(resized, ((box_px - new_w) // 2, (box_px - new_h) // 2))
    return canvas


def rounded_mask(size: int, radius: int) -> Image.Image:
    """L-mode mask: 255 inside a rounded square, 0 outside."""
    mask = Image.new("L", (size, size), 0)
    ImageDraw.Draw(mask).rounded_rectangle([0, 0, size - 1, size - 1], radius=radius, fill=255)
    return mask


def round_corners(img: Image.Image, radius: int) -> Image.Image:
    out = img.copy()
    alpha = ImageChops.multiply(out.getchannel("A"), rounded_mask(out.width, radius))
    out.putalpha(alpha)
    return out


@trace
def logo_to_png(logo_bytes: bytes, target_px: int) -> bytes:
    """Normalize any supported logo to a ``target_px`` square transparent PNG."""
    fitted = fit_logo(load_logo(logo_bytes), target_px)
    buf = io.BytesIO()
    fitted.save(buf, format="PNG")
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Badge geometry & composite
# ---------------------------------------------------------------------------

def badge_geometry(canvas_px: int, max_area_ratio: float) -> dict:
    """Pixel geometry of the centred badge and logo box for a square canvas."""
    logo_px = int(canvas_px * max_area_ratio)
    if logo_px <= 0:
        raise ValidationError("template does not allow a logo")
    pad = max(MIN_BADGE_PADDING_PX, int(canvas_px * BADGE_PADDING_RATIO))
    badge_px = logo_px + 2 * pad
    left = (canvas_px - badge_px) // 2
    return {
        "logo_px": logo_px,
        "pad": pad,
        "badge_px": badge_px,
        "badge_box": (left, left, left + badge_px, left + badge_px),
        "logo_box": (left + pad, left + pad, left + pad + logo_px, left + pad + logo_px),
    }


@trace
def apply_logo_badge(qr_png: bytes, logo_bytes: bytes, max_area_ratio: float) -> bytes:
    """Composite badge then logo at the centre of the QR raster.

    Raises UpstreamFetchError when the logo bytes cannot be decoded.
    """
    canvas = Image.open(io.BytesIO(qr_png)).convert("RGBA")
    size = canvas.width
    geo = badge_geometry(size, max_area_ratio)

    logo = fit_logo(load_logo(logo_bytes), geo["logo_px"])
    logo = round_corners(logo, max(1, int(geo["logo_px"] * LOGO_CORNER_RATIO)))

    # Badge corner radius never exceeds the padding, so the logo box is fully opaque
    badge = Image.new("RGBA", (geo["badge_px"], geo["badge_px"]), (255, 255, 255, 0))
    ImageDraw.Draw(badge).rounded_rectangle(
        [0, 0, geo["badge_px"] - 1, geo["badge_px"] - 1],
        radius=geo["pad"], fill=(255, 255, 255, 255),
    )

    canvas.alpha_composite(badge, geo["badge_box"][:2])
    canvas.alpha_composite(logo, geo["logo_box"][:2])

    buf = io.BytesIO()
    canvas.convert("RGB").save(buf, format="PNG")
    audit("logo.badge_applied", logger=log, canvas_px=size, logo_px=geo["logo_px"],
          pad=geo["pad"], ratio=max_area_ratio)
    return buf.getvalue()
