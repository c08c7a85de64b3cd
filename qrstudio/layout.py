"""Print-Pack Layout Engine: one deterministic PDF per physical format.

Every format is laid out in two steps:

  1. pure geometry: ``*_geometry(profile)`` returns rectangles in points,
     with every QR, text and logo box inside the safe area;
  2. drawing: the canvas paints the background to the page edge (bleed),
     then places content into the precomputed boxes.

Physical sizes are millimetres everywhere and pass through ``mm_to_pt``
exactly once. The canvas runs in invariant mode, so identical inputs give
identical bytes.
"""

import io
from collections.abc import Iterable
from dataclasses import dataclass, field

from reportlab.lib.colors import Color, HexColor
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas as pdf_canvas

from qrstudio.encoder import normalize_url
from qrstudio.errors import FormatRenderError, UpstreamFetchError
from qrstudio.label import ELLIPSIS, truncate
from qrstudio.logging import audit, get_logger, trace, warn
from qrstudio.logo import logo_to_png
from qrstudio.models import Project
from qrstudio.printpack import PrintFormat, PrintPackSpec, Theme
from qrstudio.render import badged_qr_png
from qrstudio.templates import lookup

log = get_logger("layout")

RENDER_VERSION = 2
MAX_CONTACT_LINES = 6
STICKER_COLS = 3
STICKER_ROWS = 7
STICKER_BRAND_MAX = 23
STICKER_URL_MAX = 31
PDF_CONTENT_TYPE = "application/pdf"

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"


def mm_to_pt(value_mm: float) -> float:
    return value_mm * mm


# ---------------------------------------------------------------------------
# Geometry primitives
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Box:
    x: float
    y: float
    w: float
    h: float

    @property
    def right(self) -> float:
        return self.x + self.w

    @property
    def top(self) -> float:
        return self.y + self.h

    @property
    def cx(self) -> float:
        return self.x + self.w / 2

    @property
    def cy(self) -> float:
        return self.y + self.h / 2

    def inset(self, d: float) -> "Box":
        return Box(self.x + d, self.y + d, self.w - 2 * d, self.h - 2 * d)

    def contains(self, other: "Box", eps: float = 1e-6) -> bool:
        return (
            other.x >= self.x - eps
            and other.y >= self.y - eps
            and other.right <= self.right + eps
            and other.top <= self.top + eps
        )


@dataclass(frozen=True)
class FormatProfile:
    fmt: PrintFormat
    slug: str
    size_mm: tuple[float, float]
    safe_mm: float
    qr_px: int
    logo_px: int | None

    @property
    def page(self) -> Box:
        return Box(0, 0, mm_to_pt(self.size_mm[0]), mm_to_pt(self.size_mm[1]))

    @property
    def safe(self) -> Box:
        return self.page.inset(mm_to_pt(self.safe_mm))

    def filename(self, project_id: str) -> str:
        return f"printpack-v{RENDER_VERSION}-{self.slug}-{project_id}.pdf"


PROFILES: dict[PrintFormat, FormatProfile] = {
    PrintFormat.BUSINESS_CARD: FormatProfile(PrintFormat.BUSINESS_CARD, "business-card", (85, 55), 3, 2800, 520),
    PrintFormat.FLYER_A5: FormatProfile(PrintFormat.FLYER_A5, "flyer-a5", (148, 210), 8, 3600, 900),
    PrintFormat.FLYER_A4: FormatProfile(PrintFormat.FLYER_A4, "flyer-a4", (210, 297), 10, 3600, 900),
    PrintFormat.POSTER_A3: FormatProfile(PrintFormat.POSTER_A3, "poster-a3", (297, 420), 12, 4200, 1400),
    PrintFormat.STICKER_SHEET_A4: FormatProfile(PrintFormat.STICKER_SHEET_A4, "labels-a4", (210, 297), 6, 2200, None),
}


@dataclass(frozen=True)
class TypeScale:
    """Point sizes for the flyer/poster pattern."""

    brand: float
    subtitle: float
    body: float
    line_gap: float
    cta: float
    header_h: float
    logo: float
    pad: float
    qr_frac: float


FLYER_A5_SCALE = TypeScale(brand=22, subtitle=11, body=10, line_gap=14, cta=12, header_h=70, logo=44, pad=18, qr_frac=0.58)
FLYER_A4_SCALE = TypeScale(brand=28, subtitle=13, body=12, line_gap=17, cta=14, header_h=88, logo=56, pad=24, qr_frac=0.58)
POSTER_SCALE = TypeScale(brand=44, subtitle=18, body=16, line_gap=22, cta=22, header_h=150, logo=90, pad=36, qr_frac=0.62)

_SCALES = {
    PrintFormat.FLYER_A5: FLYER_A5_SCALE,
    PrintFormat.FLYER_A4: FLYER_A4_SCALE,
    PrintFormat.POSTER_A3: POSTER_SCALE,
}


@dataclass(frozen=True)
class Layout:
    page: Box
    safe: Box
    boxes: dict[str, Box]
    cells: list[dict[str, Box]] = field(default_factory=list)

    def content_boxes(self) -> Iterable[Box]:
        yield from self.boxes.values()
        for cell in self.cells:
            yield from cell.values()


# ---------------------------------------------------------------------------
# Pure geometry per format
# ---------------------------------------------------------------------------

CARD_PANEL_FRAC = 0.40
CARD_QR_MARGIN = 8.0
CARD_URL_BAND = 10.0
CARD_BRAND = 10.5
CARD_BODY = 7.2
CARD_LINE_GAP = 9.2
CARD_LOGO = 22.0


def card_geometry(profile: FormatProfile) -> Layout:
    """Info zone on the left, white QR zone on the right."""
    page, safe = profile.page, profile.safe
    panel_w = page.w * CARD_PANEL_FRAC
    panel = Box(safe.right - panel_w, safe.y, panel_w, safe.h)

    q = min(panel.w - 2 * CARD_QR_MARGIN, panel.h - 2 * CARD_QR_MARGIN - CARD_URL_BAND)
    qr = Box(panel.cx - q / 2, panel.y + CARD_URL_BAND + (panel.h - CARD_URL_BAND - q) / 2, q, q)
    url = Box(panel.x + CARD_QR_MARGIN, panel.y + 3, panel.w - 2 * CARD_QR_MARGIN, 6)

    info = Box(safe.x, safe.y, panel.x - safe.x - 6, safe.h)
    brand = Box(info.x, info.top - CARD_BRAND, info.w, CARD_BRAND)
    contact_h = MAX_CONTACT_LINES * CARD_LINE_GAP
    contact = Box(info.x, brand.y - 4 - contact_h, info.w, contact_h)
    logo = Box(info.x, info.y, CARD_LOGO, CARD_LOGO)

    return Layout(page, safe, {
        "panel": panel, "qr": qr, "url": url, "info": info,
        "brand": brand, "contact": contact, "logo": logo,
    })


def flyer_geometry(profile: FormatProfile, scale: TypeScale) -> Layout:
    """Header band, then a body panel with the QR between the call to action and contact lines."""
    page, safe = profile.page, profile.safe
    header = Box(safe.x, safe.top - scale.header_h, safe.w, scale.header_h)
    logo = Box(header.right - scale.pad / 2 - scale.logo, header.cy - scale.logo / 2, scale.logo, scale.logo)
    text_w = logo.x - header.x - scale.pad
    brand = Box(header.x + scale.pad / 2, header.cy + 2, text_w, scale.brand)
    subtitle = Box(brand.x, header.cy - 4 - scale.subtitle, text_w, scale.subtitle)

    gap = scale.pad / 2
    panel = Box(safe.x, safe.y, safe.w, header.y - gap - safe.y)
    contact_h = MAX_CONTACT_LINES * scale.line_gap
    contact = Box(panel.x + scale.pad, panel.y + scale.pad, panel.w - 2 * scale.pad, contact_h)
    cta = Box(panel.x + scale.pad, panel.top - scale.pad - scale.cta, panel.w - 2 * scale.pad, scale.cta)

    avail = cta.y - contact.top - 2 * scale.pad
    q = min(panel.w * scale.qr_frac, panel.h * scale.qr_frac, avail)
    qr = Box(panel.cx - q / 2, contact.top + scale.pad + (avail - q) / 2, q, q)

    return Layout(page, safe, {
        "header": header, "brand": brand, "subtitle": subtitle, "logo": logo,
        "panel": panel, "cta": cta, "qr": qr, "contact": contact,
    })


STICKER_HEADER = 22.0
STICKER_GAP = 8.0
STICKER_PAD = 6.0
STICKER_LABEL = 8.2
STICKER_URL = 6.6
STICKER_QR_FRAC = 0.66


def sticker_geometry(profile: FormatProfile) -> Layout:
    """A header badge and a fixed grid of identical cut cells."""
    page, safe = profile.page, profile.safe
    header = Box(safe.x, safe.top - STICKER_HEADER, min(safe.w, 180.0), STICKER_HEADER)
    grid = Box(safe.x, safe.y, safe.w, header.y - STICKER_GAP - safe.y)

    cell_w = (grid.w - (STICKER_COLS - 1) * STICKER_GAP) / STICKER_COLS
    cell_h = (grid.h - (STICKER_ROWS - 1) * STICKER_GAP) / STICKER_ROWS

    cells = []
    for row in range(STICKER_ROWS):
        for col in range(STICKER_COLS):
            x = grid.x + col * (cell_w + STICKER_GAP)
            y = grid.top - (row + 1) * cell_h - row * STICKER_GAP
            cell = Box(x, y, cell_w, cell_h)
            label = Box(x + STICKER_PAD, y + STICKER_PAD, cell_w - 2 * STICKER_PAD, STICKER_LABEL)
            url = Box(label.x, label.top + 2, label.w, STICKER_URL)
            avail = cell.top - STICKER_PAD - (url.top + 3)
            q = min(cell_w - 2 * STICKER_PAD, avail, min(cell_w, cell_h) * STICKER_QR_FRAC)
            qr = Box(cell.cx - q / 2, url.top + 3 + (avail - q) / 2, q, q)
            cells.append({"cell": cell, "qr": qr, "label": label, "url": url})

    return Layout(page, safe, {"header": header, "grid": grid}, cells)


def geometry(fmt: PrintFormat) -> Layout:
    profile = PROFILES[fmt]
    if fmt is PrintFormat.BUSINESS_CARD:
        return card_geometry(profile)
    if fmt is PrintFormat.STICKER_SHEET_A4:
        return sticker_geometry(profile)
    return flyer_geometry(profile, _SCALES[fmt])


# ---------------------------------------------------------------------------
# Text & palette
# ---------------------------------------------------------------------------

def contact_lines(spec: PrintPackSpec, project: Project) -> list[str]:
    """Ordered contact lines, each optional, capped at MAX_CONTACT_LINES."""
    person = " — ".join(p for p in (spec.person_name, spec.title) if p)
    candidates = (person, spec.phone, spec.email, spec.website or project.url, spec.address)
    return [line for line in candidates if line][:MAX_CONTACT_LINES]


def display_url(url: str) -> str:
    for prefix in ("https://", "http://"):
        if url.lower().startswith(prefix):
            url = url[len(prefix):]
            break
    return url.rstrip("/")


def subtitle_for(spec: PrintPackSpec, project: Project, url: str) -> str:
    """An explicit print title wins over the stored tagline; the URL is the last resort."""
    return spec.title or project.tagline or display_url(spec.website or url)


def pdf_safe(text: str) -> str:
    # Standard PDF fonts only cover WinAnsi
    return text.encode("cp1252", "replace").decode("cp1252")


def fit_text(text: str, font: str, size: float, max_width: float) -> str:
    """Trim ``text`` with an ellipsis until it fits ``max_width`` points."""
    text = pdf_safe(text)
    if stringWidth(text, font, size) <= max_width:
        return text
    while text and stringWidth(text + ELLIPSIS, font, size) > max_width:
        text = text[:-1].rstrip()
    return text + ELLIPSIS if text else ""


@dataclass(frozen=True)
class Palette:
    bg_top: Color
    bg_bottom: Color
    ink: Color
    muted: Color
    accent: Color
    panel: Color
    panel_ink: Color
    panel_muted: Color


PALETTES = {
    Theme.DARK: Palette(
        bg_top=HexColor("#0b1220"), bg_bottom=HexColor("#1e293b"),
        ink=HexColor("#ffffff"), muted=HexColor("#cbd5e1"), accent=HexColor("#3b82f6"),
        panel=HexColor("#ffffff"), panel_ink=HexColor("#0f172a"), panel_muted=HexColor("#475569"),
    ),
    Theme.LIGHT: Palette(
        bg_top=HexColor("#f8fafc"), bg_bottom=HexColor("#e2e8f0"),
        ink=HexColor("#0f172a"), muted=HexColor("#475569"), accent=HexColor("#2563eb"),
        panel=HexColor("#ffffff"), panel_ink=HexColor("#0f172a"), panel_muted=HexColor("#475569"),
    ),
}

GRADIENT_STEPS = 48


# ---------------------------------------------------------------------------
# Drawing
# ---------------------------------------------------------------------------

def _mix(a: Color, b: Color, t: float) -> Color:
    return Color(a.red + (b.red - a.red) * t, a.green + (b.green - a.green) * t, a.blue + (b.blue - a.blue) * t)


def _paint_background(c, page: Box, palette: Palette) -> None:
    """Vertical gradient in flat bands, edge to edge."""
    band = page.h / GRADIENT_STEPS
    for i in range(GRADIENT_STEPS):
        c.setFillColor(_mix(palette.bg_bottom, palette.bg_top, i / (GRADIENT_STEPS - 1)))
        c.rect(page.x, page.y + i * band, page.w, band + 0.5, stroke=0, fill=1)


def _text(c, text: str, box: Box, font: str, size: float, color: Color, align: str = "left") -> None:
    s = fit_text(text, font, size, box.w)
    if not s:
        return
    c.setFont(font, size)
    c.setFillColor(color)
    baseline = box.y + size * 0.22
    if align == "center":
        c.drawCentredString(box.cx, baseline, s)
    elif align == "right":
        c.drawRightString(box.right, baseline, s)
    else:
        c.drawString(box.x, baseline, s)


def _lines(c, lines: list[str], box: Box, font: str, size: float, gap: float, color: Color,
           align: str = "left") -> None:
    """Top-down lines inside ``box``."""
    for i, line in enumerate(lines):
        y = box.top - (i + 1) * gap
        _text(c, line, Box(box.x, y, box.w, size), font, size, color, align)


def _image(c, png: bytes, box: Box) -> None:
    c.drawImage(ImageReader(io.BytesIO(png)), box.x, box.y, width=box.w, height=box.h, mask="auto")


def _draw_card(c, layout: Layout, ctx: "_DrawContext") -> None:
    b, pal = layout.boxes, ctx.palette
    page = layout.page
    _paint_background(c, page, pal)
    c.setFillColor(pal.accent)
    c.rect(0, 0, mm_to_pt(1.2), page.h, stroke=0, fill=1)

    c.setFillColor(pal.panel)
    c.roundRect(b["panel"].x, b["panel"].y, b["panel"].w, b["panel"].h, 8, stroke=0, fill=1)
    _image(c, ctx.qr_png, b["qr"])
    _text(c, display_url(ctx.url), b["url"], FONT, 5.6, pal.panel_muted, align="center")

    _text(c, ctx.brand, b["brand"], FONT_BOLD, CARD_BRAND, pal.ink)
    _lines(c, ctx.contact, b["contact"], FONT, CARD_BODY, CARD_LINE_GAP, pal.muted)
    if ctx.logo_png:
        _image(c, ctx.logo_png, b["logo"])


def _draw_flyer(c, layout: Layout, ctx: "_DrawContext", scale: TypeScale) -> None:
    b, pal = layout.boxes, ctx.palette
    _paint_background(c, layout.page, pal)

    header = b["header"]
    c.setFillColor(pal.accent)
    c.roundRect(header.x, header.y, header.w, header.h, scale.pad / 2, stroke=0, fill=1)
    _text(c, ctx.brand, b["brand"], FONT_BOLD, scale.brand, HexColor("#ffffff"))
    _text(c, ctx.subtitle, b["subtitle"], FONT, scale.subtitle, HexColor("#e2e8f0"))
    if ctx.logo_png:
        logo = b["logo"]
        c.setFillColor(HexColor("#ffffff"))
        c.roundRect(logo.x, logo.y, logo.w, logo.h, logo.w * 0.18, stroke=0, fill=1)
        _image(c, ctx.logo_png, logo.inset(logo.w * 0.08))

    panel = b["panel"]
    c.setFillColor(pal.panel)
    c.roundRect(panel.x, panel.y, panel.w, panel.h, scale.pad / 2, stroke=0, fill=1)
    _text(c, "Scan to visit", b["cta"], FONT_BOLD, scale.cta, pal.accent, align="center")
    _image(c, ctx.qr_png, b["qr"])
    _lines(c, ctx.contact, b["contact"], FONT, scale.body, scale.line_gap, pal.panel_ink, align="center")


def _draw_stickers(c, layout: Layout, ctx: "_DrawContext") -> None:
    pal = PALETTES[Theme.LIGHT]
    _paint_background(c, layout.page, pal)

    header = layout.boxes["header"]
    c.setFillColor(pal.accent)
    c.roundRect(header.x, header.y, header.w, header.h, header.h / 2, stroke=0, fill=1)
    _text(c, ctx.brand, header.inset(6), FONT_BOLD, 9, HexColor("#ffffff"), align="center")

    label = truncate(ctx.brand, STICKER_BRAND_MAX)
    caption = truncate(display_url(ctx.url), STICKER_URL_MAX)
    qr = ImageReader(io.BytesIO(ctx.qr_png))
    c.setLineWidth(0.6)
    for cell in layout.cells:
        box = cell["cell"]
        c.setFillColor(pal.panel)
        c.setStrokeColor(pal.muted)
        c.setDash(3, 2)
        c.roundRect(box.x, box.y, box.w, box.h, 6, stroke=1, fill=1)
        c.setDash()
        q = cell["qr"]
        c.drawImage(qr, q.x, q.y, width=q.w, height=q.h, mask="auto")
        _text(c, caption, cell["url"], FONT, STICKER_URL, pal.panel_muted, align="center")
        _text(c, label, cell["label"], FONT_BOLD, STICKER_LABEL, pal.panel_ink, align="center")


# ---------------------------------------------------------------------------
# Render
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _DrawContext:
    url: str
    brand: str
    subtitle: str
    contact: list[str]
    qr_png: bytes
    logo_png: bytes | None
    palette: Palette


@dataclass(frozen=True)
class RenderedFile:
    fmt: PrintFormat
    filename: str
    data: bytes
    content_type: str = PDF_CONTENT_TYPE

    @property
    def key(self) -> str:
        return self.fmt.value


@dataclass
class RenderBatch:
    files: dict[str, RenderedFile] = field(default_factory=dict)
    failures: dict[str, FormatRenderError] = field(default_factory=dict)


def _normalized_logo(logo_bytes: bytes | None, target_px: int | None, fmt: PrintFormat) -> bytes | None:
    if not logo_bytes or not target_px:
        return None
    try:
        return logo_to_png(logo_bytes, target_px)
    except UpstreamFetchError as e:
        warn("logo.omitted", logger=log, fmt=fmt.value, reason=e.message)
        return None


def _draw(fmt: PrintFormat, project: Project, spec: PrintPackSpec, logo_bytes: bytes | None) -> bytes:
    profile = PROFILES[fmt]
    template = lookup(project.template_id, project.template_version)
    url = normalize_url(project.url)
    layout = geometry(fmt)
    ctx = _DrawContext(
        url=url,
        brand=spec.brand_name or project.business_name,
        subtitle=subtitle_for(spec, project, url),
        contact=contact_lines(spec, project),
        qr_png=badged_qr_png(url, template, profile.qr_px, logo_bytes),
        logo_png=_normalized_logo(logo_bytes, profile.logo_px, fmt),
        palette=PALETTES[spec.theme],
    )

    buf = io.BytesIO()
    c = pdf_canvas.Canvas(buf, pagesize=(layout.page.w, layout.page.h), invariant=1, pageCompression=1)
    c.setTitle(f"{ctx.brand} {profile.slug}")
    c.setAuthor("QR Studio")
    c.setCreator(f"qrstudio print-pack v{RENDER_VERSION}")

    if fmt is PrintFormat.BUSINESS_CARD:
        _draw_card(c, layout, ctx)
    elif fmt is PrintFormat.STICKER_SHEET_A4:
        _draw_stickers(c, layout, ctx)
    else:
        _draw_flyer(c, layout, ctx, _SCALES[fmt])

    c.showPage()
    c.save()
    return buf.getvalue()


@trace
def render_format(fmt: PrintFormat, project: Project, spec: PrintPackSpec,
                  logo_bytes: bytes | None = None) -> RenderedFile:
    """Render one format. Any failure is wrapped in FormatRenderError."""
    profile = PROFILES[fmt]
    try:
        data = _draw(fmt, project, spec, logo_bytes)
    except FormatRenderError:
        raise
    except Exception as e:
        raise FormatRenderError(fmt.value, f"rendering {fmt.value} failed: {e}") from e
    audit("layout.rendered", logger=log, fmt=fmt.value, project=project.id, bytes=len(data))
    return RenderedFile(fmt, profile.filename(project.id), data)


@trace
def render(project: Project, spec: PrintPackSpec, logo_bytes: bytes | None = None,
           formats: Iterable[PrintFormat] | None = None) -> RenderBatch:
    """Render each requested format independently; one failure never stops the rest."""
    batch = RenderBatch()
    for fmt in formats if formats is not None else spec.formats:
        try:
            batch.files[fmt.value] = render_format(fmt, project, spec, logo_bytes)
        except FormatRenderError as e:
            log.error("format %s failed: %s", fmt.value, e.message)
            batch.failures[fmt.value] = e
    return batch
