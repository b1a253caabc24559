"""
QR rendering for payment URIs.

Two interchangeable renderers: ``NativeQRRenderer`` draws the PNG locally with
qrcode + Pillow, ``RemoteQRRenderer`` returns a URL on an image service. The
renderer is chosen once, from configuration, when the client starts.
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from io import BytesIO
from urllib.parse import urlencode

import qrcode
import qrcode.constants
from qrcode.main import QRCode

from paywatch.core.config import Config
from paywatch.core.exceptions import ConfigurationError


class QRRenderer(ABC):
    """Turns a payment URI into something an ``<img src>`` accepts."""

    @abstractmethod
    def render(self, payload: str) -> str:
        ...


class NativeQRRenderer(QRRenderer):
    """PNG data URL rendered in-process."""

    def __init__(self, box_size: int = 8, border: int = 4) -> None:
        self.box_size = box_size
        self.border = border

    def render(self, payload: str) -> str:
        qr = QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(payload)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buffered = BytesIO()
        img.save(buffered, format="PNG")
        return "data:image/png;base64," + base64.b64encode(buffered.getvalue()).decode()


class RemoteQRRenderer(QRRenderer):
    """URL of an external QR image service."""

    def __init__(self, service_url: str, size: int = 200) -> None:
        self.service_url = service_url
        self.size = size

    def render(self, payload: str) -> str:
        query = urlencode({"size": f"{self.size}x{self.size}", "data": payload})
        separator = "&" if "?" in self.service_url else "?"
        return f"{self.service_url}{separator}{query}"


def create_qr_renderer(config: Config) -> QRRenderer:
    if config.qr_renderer == "native":
        return NativeQRRenderer()
    if config.qr_renderer == "remote":
        return RemoteQRRenderer(config.qr_service_url)
    raise ConfigurationError(f"Unknown QR renderer: {config.qr_renderer}")
