import base64
from io import BytesIO

import qrcode
from PIL import Image as PILImage

from ..config import settings


def unit_url(unit_id) -> str:
    return f"{settings.public_base_url.rstrip('/')}/dashboard/inventory/unit/{unit_id}"


def generate_qr_code_image(data: str, size: int = 300) -> BytesIO:
    """Generate QR code image as BytesIO"""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    img = img.resize((size, size), PILImage.Resampling.LANCZOS)

    buffer = BytesIO()
    img.save(buffer, format="PNG")
    buffer.seek(0)
    return buffer


def qr_data_url(data: str, size: int = 300) -> str:
    encoded = base64.b64encode(generate_qr_code_image(data, size).getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
