import io

from PIL import Image

from qrstudio.encoder import encode_png, encode_svg
from qrstudio.label import (
    ELLIPSIS,
    QR_SCALE,
    compose_label,
    compose_label_png,
    compose_label_svg,
    escape_markup,
    truncate,
)


def test_truncate_long_name_to_exact_length():
    out = truncate("x" * 90, 80)
    assert len(out) == 80
    assert out == "x" * 79 + ELLIPSIS


def test_truncate_trims_and_keeps_short_text():
    assert truncate("  Acme  ", 28) == "Acme"
    assert truncate("Acme", 4) == "Acme"
    assert truncate(None, 10) == ""
    assert truncate("Acme", 0) == ""


def test_truncate_is_stable_for_repeated_calls():
    once = truncate("A very long bakery name that keeps going", 20)
    assert truncate(once, 20) == once


def test_escape_markup():
    assert escape_markup("<b>Tom & \"Jerry's\"</b>") == "&lt;b&gt;Tom &amp; &quot;Jerry&apos;s&quot;&lt;/b&gt;"


def test_png_label_keeps_canvas_size_and_shrinks_qr():
    qr = encode_png("example.com", 1000)
    out = Image.open(io.BytesIO(compose_label_png(qr, "Acme Bakery", "Fresh bread", 28, 42))).convert("RGB")
    assert out.size == (1000, 1000)
    qr_px = int(1000 * QR_SCALE)
    # right margin beside the shrunk QR stays white
    assert out.getpixel((1000 - 2, qr_px // 2)) == (255, 255, 255)
    # some ink lands in the text band
    band = out.crop((0, qr_px, 1000, 1000)).convert("L")
    assert band.getextrema()[0] < 128


def test_svg_label_escapes_text():
    svg = compose_label_svg(encode_svg("example.com"), "Tom & Jerry <Cafe>", "Best \"coffee\"", 28, 42)
    assert "Tom &amp; Jerry &lt;Cafe&gt;" in svg
    assert "&quot;coffee&quot;" in svg
    assert "<Cafe>" not in svg
    assert svg.count("<text") == 2


def test_svg_label_omits_empty_tagline():
    svg = compose_label_svg(encode_svg("example.com"), "Acme", None, 28, 42)
    assert svg.count("<text") == 1


def test_compose_label_dispatches_on_canvas_type():
    png = compose_label(encode_png("example.com", 512), "Acme", None, 28, 42)
    assert png[:4] == b"\x89PNG"
    svg = compose_label(encode_svg("example.com").encode("utf-8"), "Acme", None, 28, 42)
    assert svg.lstrip().startswith(b"<svg")
