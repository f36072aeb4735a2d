from io import BytesIO

import pytest
from PIL import Image

from qrhub import qr_utils

PAYLOAD = "http://testserver/r/promo1"


def decode(png: bytes) -> Image.Image:
    img = Image.open(BytesIO(png))
    img.load()
    return img.convert("RGB")


def test_plain_render_is_png_and_deterministic():
    first = qr_utils.render(PAYLOAD)
    assert first.startswith(b"\x89PNG")
    assert qr_utils.render(PAYLOAD) == first


@pytest.mark.parametrize("logo", [b"not an image at all", b"\x89PNG\r\n\x1a\ntruncated", b"GIF89a\x00\x00"])
def test_corrupt_logo_falls_back_to_plain_render(logo):
    assert qr_utils.render(PAYLOAD, logo) == qr_utils.render(PAYLOAD)


def test_empty_logo_is_treated_as_no_logo():
    assert qr_utils.render(PAYLOAD, b"") == qr_utils.render(PAYLOAD)


def test_logo_is_centred_on_padded_plate(make_png):
    plain = decode(qr_utils.render(PAYLOAD))
    composed = decode(qr_utils.render(PAYLOAD, make_png("red")))

    assert composed.size == plain.size
    width, height = composed.size
    size = int(min(width, height) * qr_utils.LOGO_RATIO)
    x, y = (width - size) // 2, (height - size) // 2

    assert composed.getpixel((width // 2, height // 2)) == (255, 0, 0)
    # Padding plate just outside the logo
    assert composed.getpixel((x - qr_utils.LOGO_PADDING, y - qr_utils.LOGO_PADDING)) == (255, 255, 255)
    # Corners (finder patterns) untouched
    assert composed.getpixel((15, 15)) == plain.getpixel((15, 15))


def test_non_square_jpeg_logo_is_accepted():
    buf = BytesIO()
    Image.new("RGB", (120, 40), "blue").save(buf, format="JPEG")
    composed = decode(qr_utils.render(PAYLOAD, buf.getvalue()))
    width, height = composed.size
    r, g, b = composed.getpixel((width // 2, height // 2))
    assert b > 200 and r < 50 and g < 50


def test_data_url():
    assert qr_utils.to_data_url(b"\x89PNG").startswith("data:image/png;base64,")
