"""QR code generation and scan analytics."""

import base64
import logging
import secrets
from collections import Counter
from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Any, Dict, Optional

import qrcode
import qrcode.image.svg
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.base import as_utc
from app.models.qr_code import DEFAULT_CUSTOMIZATION, QRCode, QRScan

logger = logging.getLogger(__name__)

ERROR_CORRECTION = {
    "L": ERROR_CORRECT_L,
    "M": ERROR_CORRECT_M,
    "Q": ERROR_CORRECT_Q,
    "H": ERROR_CORRECT_H,
}

TYPE_PATHS = {
    "branch": "menu",
    "table": "menu",
    "category": "menu/category",
    "custom": "menu",
}

TABLET_MARKERS = ("ipad", "tablet", "kindle", "playbook")
MOBILE_MARKERS = ("mobi", "iphone", "android", "blackberry", "opera mini", "windows phone")


def generate_token() -> str:
    return secrets.token_urlsafe(12)


def default_url(qr_type: str, token: str, target_id: Optional[str] = None) -> str:
    """Public menu URL a code resolves to."""
    base = settings.public_base_url.rstrip("/")
    path = TYPE_PATHS.get(qr_type, "menu")
    if qr_type == "category" and target_id:
        path = f"{path}/{target_id}"
    return f"{base}/{path}?qr={token}"


def detect_device_type(user_agent: Optional[str]) -> str:
    ua = (user_agent or "").lower()
    # Android tablets omit "mobile" from the UA
    if any(m in ua for m in TABLET_MARKERS) or ("android" in ua and "mobile" not in ua):
        return "tablet"
    if any(m in ua for m in MOBILE_MARKERS):
        return "mobile"
    return "desktop"


def _build(qr_code: QRCode) -> qrcode.QRCode:
    custom = {**DEFAULT_CUSTOMIZATION, **(qr_code.customization or {})}
    qr = qrcode.QRCode(
        version=1,
        error_correction=ERROR_CORRECTION.get(custom["error_correction"], ERROR_CORRECT_M),
        box_size=10,
        border=4,
    )
    qr.add_data(qr_code.url)
    qr.make(fit=True)
    return qr


def render_png(qr_code: QRCode) -> bytes:
    custom = {**DEFAULT_CUSTOMIZATION, **(qr_code.customization or {})}
    img = _build(qr_code).make_image(
        fill_color=custom["foreground_color"],
        back_color=custom["background_color"],
    )
    size = int(custom["size"])
    img = img.resize((size, size))

    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def render_svg(qr_code: QRCode) -> bytes:
    img = _build(qr_code).make_image(image_factory=qrcode.image.svg.SvgPathImage)
    buffer = BytesIO()
    img.save(buffer)
    return buffer.getvalue()


def render_data_url(qr_code: QRCode) -> str:
    return "data:image/png;base64," + base64.b64encode(render_png(qr_code)).decode("ascii")


def serialize_qr_code(qr_code: QRCode) -> Dict[str, Any]:
    return {
        "id": qr_code.id,
        "name": qr_code.name,
        "type": qr_code.type,
        "target_id": qr_code.target_id,
        "table_number": qr_code.table_number,
        "url": qr_code.url,
        "token": qr_code.token,
        "description": qr_code.description,
        "customization": {**DEFAULT_CUSTOMIZATION, **(qr_code.customization or {})},
        "is_active": qr_code.is_active,
        "total_scans": qr_code.total_scans,
        "last_scanned_at": qr_code.last_scanned_at.isoformat() if qr_code.last_scanned_at else None,
        "created_by": qr_code.created_by,
        "created_at": qr_code.created_at.isoformat() if qr_code.created_at else None,
        "updated_at": qr_code.updated_at.isoformat() if qr_code.updated_at else None,
    }


class QRCodeService:
    def __init__(self, db: Session):
        self.db = db

    def record_scan(
        self,
        token: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        referrer: Optional[str] = None,
    ) -> Optional[QRCode]:
        """Log a scan of an active code; None when the token is unknown or inactive."""
        qr_code = self.db.query(QRCode).filter(QRCode.token == token).first()
        if qr_code is None or not qr_code.is_active:
            return None

        now = datetime.now(timezone.utc)
        self.db.add(QRScan(
            qr_code_id=qr_code.id,
            scanned_at=now,
            user_agent=(user_agent or "")[:500] or None,
            ip_address=ip_address,
            device_type=detect_device_type(user_agent),
            referrer=(referrer or "")[:500] or None,
        ))
        qr_code.total_scans = (qr_code.total_scans or 0) + 1
        qr_code.last_scanned_at = now
        logger.info(f"QR code {qr_code.id} scanned ({qr_code.total_scans} total)")
        return qr_code

    def analytics(self, qr_code: QRCode, days: int = 30) -> Dict[str, Any]:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        scans = (
            self.db.query(QRScan)
            .filter(QRScan.qr_code_id == qr_code.id, QRScan.scanned_at >= since)
            .all()
        )

        by_day: Counter = Counter()
        by_device: Counter = Counter()
        by_hour: Counter = Counter()
        for scan in scans:
            ts = as_utc(scan.scanned_at)
            by_day[ts.date().isoformat()] += 1
            by_device[scan.device_type or "desktop"] += 1
            by_hour[ts.hour] += 1

        return {
            "qr_code_id": qr_code.id,
            "days": days,
            "total_scans": qr_code.total_scans,
            "period_scans": len(scans),
            "scans_by_day": [{"date": d, "scans": by_day[d]} for d in sorted(by_day)],
            "device_types": dict(by_device),
            "scans_by_hour": [{"hour": h, "scans": by_hour.get(h, 0)} for h in range(24)],
            "last_scanned_at": qr_code.last_scanned_at.isoformat() if qr_code.last_scanned_at else None,
        }
