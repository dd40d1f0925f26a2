"""QR codes for referral share links."""

import io

import qrcode

from redamigos.logging_config import get_logger

logger = get_logger(__name__)

# Campaign colors
QR_COLOR = (0, 104, 71)
WHITE = (255, 255, 255)


def make_qr_png(data: str, box_size: int = 10, border: int = 2) -> bytes:
    """Render ``data`` as a PNG QR code.

    High error correction keeps printed codes readable when partly damaged.

    Returns:
        PNG bytes
    """
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)

    image = qr.make_image(fill_color=QR_COLOR, back_color=WHITE).convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    logger.debug("qr_rendered", size=image.width)
    return buffer.getvalue()
