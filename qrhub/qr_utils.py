import base64
import logging
from io import BytesIO

import qrcode
from PIL import Image, ImageDraw
from qrcode.constants import ERROR_CORRECT_H

logger = logging.getLogger("qrhub.qr")

LOGO_RATIO = 0.25
LOGO_PADDING = 4
BORDER_OFFSET = 2
BORDER_WIDTH = 2
LIGHT = "white"
DARK = "black"


def generate_qr_png(data: str) -> bytes:
    # H tolerates ~30% obscured modules, which is the room the logo uses
    qr = qrcode.QRCode(
        version=None, box_size=10, border=1,
        error_correction=ERROR_CORRECT_H
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color=DARK, back_color=LIGHT)

    buf = BytesIO()
    img.save(buf)
    return buf.getvalue()


def overlay_logo(qr_png: bytes, logo: bytes) -> bytes:
    """Paste ``logo`` in the centre of ``qr_png`` on a padded light plate."""
    code = Image.open(BytesIO(qr_png)).convert("RGBA")
    mark = Image.open(BytesIO(logo))
    mark.load()
    mark = mark.convert("RGBA")

    width, height = code.size
    size = int(min(width, height) * LOGO_RATIO)
    x = (width - size) // 2
    y = (height - size) // 2

    ImageDraw.Draw(code).rectangle(
        (x - LOGO_PADDING, y - LOGO_PADDING, x + size + LOGO_PADDING - 1, y + size + LOGO_PADDING - 1),
        fill=LIGHT,
    )
    # Verbatim: scaled to fit, no mask or crop beyond the logo's own alpha
    mark = mark.resize((size, size))
    code.alpha_composite(mark, (x, y))
    ImageDraw.Draw(code).rectangle(
        (x - BORDER_OFFSET, y - BORDER_OFFSET, x + size + BORDER_OFFSET - 1, y + size + BORDER_OFFSET - 1),
        outline=LIGHT,
        width=BORDER_WIDTH,
    )

    buf = BytesIO()
    code.convert("RGB").save(buf, format="PNG")
    return buf.getvalue()


def render(payload: str, logo: bytes | None = None) -> bytes:
    """Render ``payload`` as a PNG QR code, with ``logo`` composited if given.

    A logo that cannot be decoded or composited never fails the render: the
    plain code for ``payload`` is returned instead.
    """
    plain = generate_qr_png(payload)
    if not logo:
        return plain
    try:
        return overlay_logo(plain, logo)
    except Exception:
        logger.warning("Logo compositing failed, using plain QR for %s", payload, exc_info=True)
        return plain


def to_data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode()
