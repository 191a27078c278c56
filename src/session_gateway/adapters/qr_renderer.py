"""QR code rendering for challenge payloads."""

import io
from dataclasses import dataclass
from typing import Protocol

import qrcode
import qrcode.constants


class ChallengeRenderer(Protocol):
    """Interface for turning a scan payload into image bytes."""

    def render(self, payload: str) -> bytes:
        """Return PNG bytes for the payload."""


@dataclass
class QrCodePngRenderer:
    """Render challenge payloads as PNG QR codes."""

    box_size: int = 10
    border: int = 4

    def render(self, payload: str) -> bytes:
        """Render the payload with error correction suited to phone cameras."""
        qr = qrcode.QRCode(
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(payload)
        qr.make(fit=True)
        image = qr.make_image(fill_color="black", back_color="white")
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()
