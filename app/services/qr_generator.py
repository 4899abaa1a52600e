import base64
import io
import json
import logging
from datetime import datetime
from typing import Optional

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from app.core.config import settings
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

QR_PAYLOAD_VERSION = "1.0"
QR_PAYLOAD_TYPE = "singleclin_qr"


class QRCodeGenerator:
    """토큰을 담은 QR 코드 PNG 이미지 생성"""

    def build_payload(self, token: str, generated_at: Optional[datetime] = None) -> str:
        """QR 코드에 넣을 JSON 페이로드"""
        return json.dumps({
            "token": token,
            "version": QR_PAYLOAD_VERSION,
            "type": QR_PAYLOAD_TYPE,
            "generatedAt": (generated_at or utcnow()).isoformat(),
        }, separators=(",", ":"))

    def generate_png(self, token: str, size: int = 300) -> bytes:
        if not token or not token.strip():
            raise ValueError("Token cannot be empty")
        if size < settings.QR_MIN_SIZE or size > settings.QR_MAX_SIZE:
            raise ValueError(f"Size must be between {settings.QR_MIN_SIZE} and {settings.QR_MAX_SIZE} pixels")

        qr = qrcode.QRCode(
            version=None,
            error_correction=ERROR_CORRECT_M,
            box_size=10,
            border=4,
        )
        qr.add_data(self.build_payload(token))
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")
        # 요청 크기에 맞춰 리사이즈 (PIL 이미지)
        img = img.get_image().resize((size, size))

        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()

    def generate_data_url(self, token: str, size: int = 300) -> str:
        """QR 코드를 data URL(base64 PNG)로 반환"""
        png = self.generate_png(token, size)
        logger.debug(f"Generated QR Code Data URL with size {size}px")
        return "data:image/png;base64," + base64.b64encode(png).decode("utf-8")

# 서비스 인스턴스
qr_code_generator = QRCodeGenerator()
