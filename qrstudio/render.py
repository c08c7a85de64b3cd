"""Project QR rendering: encoder + logo badge + label band, per template.

The template decides which layers apply. A logo that cannot be fetched or
decoded is dropped with a warning; the QR is still delivered.
"""

from qrstudio.encoder import encode_png, encode_svg, normalize_url
from qrstudio.errors import UpstreamFetchError
from qrstudio.fetch import LogoFetcher
from qrstudio.label import compose_label_png, compose_label_svg
from qrstudio.logging import audit, get_logger, trace, warn
from qrstudio.logo import apply_logo_badge
from qrstudio.models import Project
from qrstudio.settings import StudioSettings
from qrstudio.templates import TemplateDefinition, lookup

log = get_logger("render")


def badged_qr_png(url: str, template: TemplateDefinition, width_px: int, logo_bytes: bytes | None) -> bytes:
    """QR raster with the logo badge when the template allows one and bytes are usable."""
    png = encode_png(url, width_px)
    if not (template.allow_logo and logo_bytes):
        return png
    try:
        return apply_logo_badge(png, logo_bytes, template.max_logo_ratio)
    except UpstreamFetchError as e:
        warn("logo.omitted", logger=log, reason=e.message, width_px=width_px)
        return png


def project_png(project: Project, width_px: int, logo_bytes: bytes | None = None) -> bytes:
    template = lookup(project.template_id, project.template_version)
    png = badged_qr_png(normalize_url(project.url), template, width_px, logo_bytes)
    if template.allow_text:
        png = compose_label_png(png, project.business_name, project.tagline,
                                template.name_max, template.tagline_max)
    return png


def project_svg(project: Project) -> str:
    """Vector QR; the label template also gets its text band. Logos stay raster-only."""
    template = lookup(project.template_id, project.template_version)
    svg = encode_svg(normalize_url(project.url))
    if template.allow_text:
        svg = compose_label_svg(svg, project.business_name, project.tagline,
                                template.name_max, template.tagline_max)
    return svg


class QrRenderer:
    """Preview and download rasters for stored projects."""

    def __init__(self, settings: StudioSettings, logos: LogoFetcher):
        self.settings = settings
        self.logos = logos

    def _logo_for(self, project: Project) -> bytes | None:
        template = lookup(project.template_id, project.template_version)
        if not template.allow_logo:
            return None
        return self.logos.fetch_or_none(project.logo_path)

    @trace
    def png(self, project: Project, width_px: int | None = None) -> bytes:
        width_px = width_px or self.settings.download_width_px
        data = project_png(project, width_px, self._logo_for(project))
        audit("render.png", logger=log, project=project.id, template=project.template_id,
              width_px=width_px, bytes=len(data))
        return data

    def preview(self, project: Project) -> bytes:
        return self.png(project, self.settings.preview_width_px)

    @trace
    def svg(self, project: Project) -> str:
        data = project_svg(project)
        audit("render.svg", logger=log, project=project.id, template=project.template_id)
        return data
