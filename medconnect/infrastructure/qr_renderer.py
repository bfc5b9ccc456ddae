import base64
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_M

QR_TARGET_WIDTH = 256
QR_BORDER = 2


def render_qr_data_url(data: str, width: int = QR_TARGET_WIDTH) -> str:
    """Render ``data`` as a PNG QR code and return it as a data URL.

    The box size is picked so the image is as close to ``width`` pixels as
    whole modules allow.
    """
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, border=QR_BORDER)
    qr.add_data(data)
    qr.make(fit=True)

    modules = qr.modules_count + 2 * QR_BORDER
    qr.box_size = max(1, width // modules)
    image = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")
