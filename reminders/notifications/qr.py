"""
Booking QR codes for confirmation emails.

The QR code carries a small JSON payload that counter staff scan to pull up
the appointment. It is embedded in the email HTML as a base64 PNG data URI.
"""

import base64
import io
import json

import qrcode


def build_confirmation_payload(
    booking_reference: str,
    appointment_id: int,
    user_id: int,
    service_name: str,
    department_name: str,
    date_time: str,
) -> dict:
    """Machine-readable payload encoded into the booking QR code."""
    return {
        "bookingReference": booking_reference,
        "appointmentId": appointment_id,
        "userId": user_id,
        "service": service_name,
        "department": department_name,
        "dateTime": date_time,
    }


def render_qr_data_uri(payload: dict) -> str:
    """
    Render a payload as a QR code PNG and return it as a data: URI.

    Raises whatever qrcode/Pillow raise on failure; callers decide how to
    degrade.
    """
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.ERROR_CORRECT_M,
        box_size=6,
        border=4,
    )
    qr.add_data(json.dumps(payload, separators=(",", ":")))
    qr.make(fit=True)

    image = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")

    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def qr_image_tag(data_uri: str, booking_reference: str) -> str:
    """HTML <img> block for the rendered QR code."""
    return (
        '<p style="text-align: center;">'
        f'<img src="{data_uri}" alt="Booking QR code {booking_reference}" '
        'width="180" height="180">'
        "</p>"
    )
