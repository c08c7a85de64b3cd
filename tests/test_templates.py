import pytest

from qrstudio.errors import TemplateNotFound, ValidationError
from qrstudio.templates import TEMPLATE_VERSION, TemplateVariant, all_templates, lookup


def test_registry_has_one_entry_per_variant():
    ids = sorted(t.id for t in all_templates())
    assert ids == ["T1", "T2", "T3"]
    assert all(t.version == TEMPLATE_VERSION for t in all_templates())


def test_template_capabilities():
    clean, label, scan_max = lookup("T1", 1), lookup("T2", 1), lookup("T3", 1)
    assert clean.allow_logo and not clean.allow_text
    assert label.allow_logo and label.allow_text
    assert label.name_max == 28 and label.tagline_max == 42
    assert not scan_max.allow_logo and not scan_max.allow_text
    assert scan_max.max_logo_ratio == 0.0


def test_lookup_is_lenient_about_case_and_whitespace():
    assert lookup(" t2 ", 1).variant is TemplateVariant.LABEL


@pytest.mark.parametrize("template_id,version", [
    ("T4", 1),
    ("", 1),
    ("T1", 2),
    ("T1", True),
    ("T1", "1"),
])
def test_unknown_pairs_are_hard_errors(template_id, version):
    with pytest.raises(TemplateNotFound):
        lookup(template_id, version)


def test_template_not_found_is_a_validation_error():
    with pytest.raises(ValidationError):
        lookup("nope", 1)
