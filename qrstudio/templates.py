"""Template Registry: the three locked visual templates, version 1.

Raw template ids are only compared here. Everything downstream works with
``TemplateVariant`` and the immutable ``TemplateDefinition``.
"""

from dataclasses import dataclass
from enum import Enum

from qrstudio.errors import TemplateNotFound

TEMPLATE_VERSION = 1


class TemplateVariant(Enum):
    CLEAN = "T1"      # QR + optional logo badge
    LABEL = "T2"      # QR + optional logo badge + name/tagline band
    SCAN_MAX = "T3"   # QR only, nothing over the modules


@dataclass(frozen=True)
class TemplateDefinition:
    variant: TemplateVariant
    version: int
    allow_logo: bool
    allow_text: bool
    max_logo_ratio: float
    name_max: int
    tagline_max: int

    @property
    def id(self) -> str:
        return self.variant.value


_REGISTRY: dict[tuple[TemplateVariant, int], TemplateDefinition] = {
    (TemplateVariant.CLEAN, 1): TemplateDefinition(
        variant=TemplateVariant.CLEAN, version=1,
        allow_logo=True, allow_text=False, max_logo_ratio=0.22,
        name_max=0, tagline_max=0,
    ),
    (TemplateVariant.LABEL, 1): TemplateDefinition(
        variant=TemplateVariant.LABEL, version=1,
        allow_logo=True, allow_text=True, max_logo_ratio=0.22,
        name_max=28, tagline_max=42,
    ),
    (TemplateVariant.SCAN_MAX, 1): TemplateDefinition(
        variant=TemplateVariant.SCAN_MAX, version=1,
        allow_logo=False, allow_text=False, max_logo_ratio=0.0,
        name_max=0, tagline_max=0,
    ),
}


def lookup(template_id: str, version: int) -> TemplateDefinition:
    """Resolve a stored (id, version) pair; unknown pairs raise TemplateNotFound."""
    try:
        variant = TemplateVariant(str(template_id).strip().upper())
    except ValueError:
        raise TemplateNotFound(template_id, version) from None
    # bool is an int subclass; True must not resolve to version 1
    if isinstance(version, bool) or not isinstance(version, int):
        raise TemplateNotFound(template_id, version)
    definition = _REGISTRY.get((variant, version))
    if definition is None:
        raise TemplateNotFound(template_id, version)
    return definition


def all_templates() -> list[TemplateDefinition]:
    return list(_REGISTRY.values())
