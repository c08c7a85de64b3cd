from dataclasses import replace

import pytest

from qrstudio.errors import ValidationError
from qrstudio.printpack import (
    HASH_LENGTH,
    PrintFormat,
    PrintPackSpec,
    Theme,
    canonical_json,
    generation_hash,
    normalize_spec,
)


def test_defaults_come_from_project(project):
    spec = normalize_spec({}, project)
    assert spec.project_id == project.id
    assert spec.formats == (PrintFormat.BUSINESS_CARD,)
    assert spec.brand_name == "Acme Bakery"
    assert spec.website == "https://acme.example/menu"
    assert spec.theme is Theme.DARK
    assert spec.accent == "blue"


def test_blank_fields_become_absent(project):
    spec = normalize_spec({"person_name": "   ", "phone": "", "email": " a@b.c "}, project)
    assert spec.person_name is None
    assert spec.phone is None
    assert spec.email == "a@b.c"
    data = spec.to_dict()
    assert "person_name" not in data and "phone" not in data
    assert data["email"] == "a@b.c"


def test_formats_deduplicated_and_ordered(project):
    spec = normalize_spec({"formats": ["poster_a3", "business_card", "poster_a3", " flyer_a5 "]}, project)
    assert spec.formats == (PrintFormat.BUSINESS_CARD, PrintFormat.FLYER_A5, PrintFormat.POSTER_A3)


def test_empty_format_list_defaults_to_card(project):
    assert normalize_spec({"formats": []}, project).formats == (PrintFormat.BUSINESS_CARD,)


def test_unknown_format_rejected(project):
    with pytest.raises(ValidationError):
        normalize_spec({"formats": ["billboard"]}, project)


def test_mismatched_project_rejected(project):
    with pytest.raises(ValidationError):
        normalize_spec({"project_id": "someone-else"}, project)


def test_non_text_field_rejected(project):
    with pytest.raises(ValidationError):
        normalize_spec({"phone": 12345}, project)


def test_theme_only_light_or_dark(project):
    assert normalize_spec({"theme": "light"}, project).theme is Theme.LIGHT
    assert normalize_spec({"theme": "neon"}, project).theme is Theme.DARK


def test_accent_is_fixed(project):
    assert normalize_spec({"accent": "pink"}, project).accent == "blue"


def test_equivalent_requests_hash_identically(project):
    a = normalize_spec({"formats": ["flyer_a4", "business_card"], "phone": " 555 "}, project)
    b = normalize_spec({"formats": ["business_card", "flyer_a4", "flyer_a4"], "phone": "555",
                        "email": "", "project_id": project.id}, project)
    assert generation_hash(project, a) == generation_hash(project, b)


def test_hash_changes_with_content_and_template_version(project):
    base = normalize_spec({}, project)
    light = normalize_spec({"theme": "light"}, project)
    h = generation_hash(project, base)
    assert len(h) == HASH_LENGTH
    assert h != generation_hash(project, light)
    assert h != generation_hash(replace(project, template_version=2), base)


@pytest.mark.parametrize("changes", [
    {"tagline": "Now open late"},
    {"template_id": "T3"},
    {"logo_path": "logos/u-1/p-1-0123456789ab.png"},
    {"logo_path": None},
])
def test_hash_follows_rendered_project_fields(project, changes):
    spec = normalize_spec({"website": "https://acme.example", "brand_name": "Acme"}, project)
    edited = replace(project, **changes)
    assert normalize_spec({"website": "https://acme.example", "brand_name": "Acme"}, edited) == spec
    assert generation_hash(edited, spec) != generation_hash(project, spec)


def test_canonical_json_is_key_sorted_and_compact():
    assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'


def test_spec_round_trips_through_manifest_dict(project):
    spec = normalize_spec({"formats": ["sticker_sheet_a4"], "title": "Owner"}, project)
    assert PrintPackSpec.from_dict(spec.to_dict()) == spec
