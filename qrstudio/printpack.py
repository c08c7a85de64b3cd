"""PrintPackSpec: normalized snapshot of one print run, and its content hash.

Normalization makes semantically equal requests byte-equal before hashing:
strings are trimmed, blanks become absent, project fields fill the gaps,
formats are deduplicated and put in catalogue order.
"""

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from qrstudio.errors import ValidationError
from qrstudio.models import Project

HASH_LENGTH = 32
ACCENT = "blue"


class PrintFormat(Enum):
    BUSINESS_CARD = "business_card"
    FLYER_A5 = "flyer_a5"
    FLYER_A4 = "flyer_a4"
    POSTER_A3 = "poster_a3"
    STICKER_SHEET_A4 = "sticker_sheet_a4"


FORMAT_ORDER = {fmt: i for i, fmt in enumerate(PrintFormat)}
DEFAULT_FORMATS = (PrintFormat.BUSINESS_CARD,)


class Theme(Enum):
    DARK = "dark"
    LIGHT = "light"


_TEXT_FIELDS = ("brand_name", "person_name", "title", "phone", "email", "website", "address")


@dataclass(frozen=True)
class PrintPackSpec:
    project_id: str
    formats: tuple[PrintFormat, ...]
    brand_name: str | None = None
    person_name: str | None = None
    title: str | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None
    address: str | None = None
    theme: Theme = Theme.DARK
    accent: str = ACCENT

    def to_dict(self) -> dict:
        """JSON-ready form; absent fields are omitted, not null."""
        out: dict = {
            "project_id": self.project_id,
            "formats": [f.value for f in self.formats],
            "theme": self.theme.value,
            "accent": self.accent,
        }
        for name in _TEXT_FIELDS:
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        return out

    @classmethod
    def from_dict(cls, data: Mapping) -> "PrintPackSpec":
        """Rebuild a spec persisted by ``to_dict`` (manifest rows)."""
        return cls(
            project_id=data["project_id"],
            formats=tuple(PrintFormat(f) for f in data["formats"]),
            theme=Theme(data.get("theme", Theme.DARK.value)),
            accent=data.get("accent", ACCENT),
            **{name: data.get(name) for name in _TEXT_FIELDS},
        )


def _clean(value) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"expected text, got {type(value).__name__}")
    s = value.strip()
    return s or None


def _parse_formats(raw) -> tuple[PrintFormat, ...]:
    if raw is None:
        raw = []
    if isinstance(raw, str):
        raw = [raw]
    seen: set[PrintFormat] = set()
    for item in raw:
        if not item:
            continue
        key = item.value if isinstance(item, PrintFormat) else str(item).strip()
        try:
            seen.add(PrintFormat(key))
        except ValueError:
            raise ValidationError(f"unknown print format: {key!r}") from None
    return tuple(sorted(seen, key=FORMAT_ORDER.__getitem__)) or DEFAULT_FORMATS


def normalize_spec(raw: Mapping | None, project: Project) -> PrintPackSpec:
    """Fill defaults from the project and canonicalize every field."""
    raw = dict(raw or {})
    requested_project = _clean(raw.get("project_id"))
    if requested_project is not None and requested_project != project.id:
        raise ValidationError("spec project_id does not match the project")

    fields = {name: _clean(raw.get(name)) for name in _TEXT_FIELDS}
    fields["brand_name"] = fields["brand_name"] or _clean(project.business_name)
    fields["website"] = fields["website"] or _clean(project.url)

    return PrintPackSpec(
        project_id=project.id,
        formats=_parse_formats(raw.get("formats")),
        theme=Theme.LIGHT if raw.get("theme") == Theme.LIGHT.value else Theme.DARK,
        accent=ACCENT,
        **fields,
    )


def canonical_json(value) -> str:
    """Key-sorted, whitespace-free JSON; equal values always give equal text."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


# Project fields drawn into the PDFs; all of them are hashed.
RENDERED_PROJECT_FIELDS = ("business_name", "tagline", "url", "template_id", "template_version", "logo_path")


def generation_hash(project: Project, spec: PrintPackSpec) -> str:
    payload = {
        "project_id": project.id,
        "project": {name: getattr(project, name) for name in RENDERED_PROJECT_FIELDS},
        "spec": spec.to_dict(),
    }
    digest = hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
    return digest[:HASH_LENGTH]
