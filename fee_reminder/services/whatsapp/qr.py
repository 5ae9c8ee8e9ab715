"""Render WhatsApp pairing codes as PNG data URLs for the dashboard."""

import base64
import io

import qrcode


def pairing_code_to_data_url(code: str) -> str:
    image = qrcode.make(code)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
