from dataclasses import replace

import pytest

from qrstudio import layout
from qrstudio.errors import FormatRenderError
from qrstudio.layout import (
    MAX_CONTACT_LINES,
    PROFILES,
    contact_lines,
    fit_text,
    geometry,
    mm_to_pt,
    render,
    render_format,
    subtitle_for,
)
from qrstudio.printpack import PrintFormat, normalize_spec


def test_mm_to_pt():
    assert mm_to_pt(25.4) == pytest.approx(72.0)


def test_page_sizes_follow_physical_formats():
    card = PROFILES[PrintFormat.BUSINESS_CARD].page
    assert (card.w, card.h) == pytest.approx((mm_to_pt(85), mm_to_pt(55)))
    a3 = PROFILES[PrintFormat.POSTER_A3].page
    assert (a3.w, a3.h) == pytest.approx((mm_to_pt(297), mm_to_pt(420)))


def test_qr_master_resolution_grows_with_format():
    px = [PROFILES[f].qr_px for f in (PrintFormat.BUSINESS_CARD, PrintFormat.FLYER_A4, PrintFormat.POSTER_A3)]
    assert px == [2800, 3600, 4200]
    assert PROFILES[PrintFormat.STICKER_SHEET_A4].logo_px is None


@pytest.mark.parametrize("fmt", list(PrintFormat))
def test_content_stays_inside_safe_area(fmt):
    lay = geometry(fmt)
    assert lay.page.contains(lay.safe)
    for box in lay.content_boxes():
        assert box.w > 0 and box.h > 0
        assert lay.safe.contains(box), (fmt, box)


@pytest.mark.parametrize("fmt", [PrintFormat.FLYER_A5, PrintFormat.FLYER_A4, PrintFormat.POSTER_A3])
def test_flyer_qr_sits_between_cta_and_contact(fmt):
    b = geometry(fmt).boxes
    assert b["qr"].y >= b["contact"].top
    assert b["qr"].top <= b["cta"].y
    assert b["qr"].w == pytest.approx(b["qr"].h)


def test_sticker_sheet_is_three_by_seven():
    lay = geometry(PrintFormat.STICKER_SHEET_A4)
    assert len(lay.cells) == 21
    for cell in lay.cells:
        assert cell["cell"].contains(cell["qr"])
        assert cell["qr"].y >= cell["url"].top


def test_contact_lines_order_and_fallback(project):
    spec = normalize_spec({"person_name": "Ana", "title": "Owner", "phone": "555-0100",
                           "email": "ana@acme.example", "website": "", "address": "1 Main St"}, project)
    lines = contact_lines(spec, project)
    assert lines == ["Ana — Owner", "555-0100", "ana@acme.example", "https://acme.example/menu", "1 Main St"]
    assert len(lines) <= MAX_CONTACT_LINES


def test_contact_lines_person_without_title(project):
    spec = normalize_spec({"person_name": "Ana"}, project)
    assert contact_lines(spec, project)[0] == "Ana"


def test_fit_text_truncates_with_ellipsis():
    out = fit_text("A" * 200, "Helvetica", 10, 60)
    assert out.endswith("…")
    assert len(out) < 200
    assert fit_text("Short", "Helvetica", 10, 60) == "Short"


def test_render_card_is_a_deterministic_pdf(project, logo_png):
    spec = normalize_spec({"person_name": "Ana"}, project)
    first = render_format(PrintFormat.BUSINESS_CARD, project, spec, logo_png)
    second = render_format(PrintFormat.BUSINESS_CARD, project, spec, logo_png)
    assert first.data.startswith(b"%PDF")
    assert first.data == second.data
    assert first.filename == f"printpack-v2-business-card-{project.id}.pdf"
    assert first.content_type == "application/pdf"


def test_unreadable_logo_degrades_to_no_logo(project):
    spec = normalize_spec({}, project)
    rendered = render_format(PrintFormat.BUSINESS_CARD, project, spec, b"not an image")
    assert rendered.data.startswith(b"%PDF")


def test_sticker_sheet_renders(project):
    spec = normalize_spec({"formats": ["sticker_sheet_a4"], "theme": "light"}, project)
    rendered = render_format(PrintFormat.STICKER_SHEET_A4, project, spec)
    assert rendered.filename == f"printpack-v2-labels-a4-{project.id}.pdf"


def test_one_failing_format_does_not_stop_the_rest(project, monkeypatch):
    spec = normalize_spec({"formats": ["business_card", "flyer_a5"]}, project)
    real_draw = layout._draw

    def flaky(fmt, *args):
        if fmt is PrintFormat.FLYER_A5:
            raise RuntimeError("boom")
        return real_draw(fmt, *args)

    monkeypatch.setattr(layout, "_draw", flaky)
    batch = render(project, spec)
    assert list(batch.files) == ["business_card"]
    assert isinstance(batch.failures["flyer_a5"], FormatRenderError)
    assert "boom" in batch.failures["flyer_a5"].message


def test_print_title_wins_over_tagline(project):
    titled = normalize_spec({"title": "Head Baker"}, project)
    assert subtitle_for(titled, project, project.url) == "Head Baker"
    assert subtitle_for(normalize_spec({}, project), project, project.url) == "Fresh bread daily"
    bare = replace(project, tagline=None)
    assert subtitle_for(normalize_spec({}, bare), bare, bare.url) == "acme.example/menu"
