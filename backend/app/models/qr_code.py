"""QR code and scan tracking models."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.db.base import Base

QR_TYPES = ("branch", "table", "category", "custom")

DEFAULT_CUSTOMIZATION = {
    "foreground_color": "#000000",
    "background_color": "#ffffff",
    "size": 300,
    "error_correction": "M",
    "include_logo": False,
}


def _utcnow():
    return datetime.now(timezone.utc)


class QRCode(Base):
    """Printable QR code pointing at the public menu."""
    __tablename__ = "qr_codes"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    type = Column(String(20), nullable=False, default="table")  # branch, table, category, custom
    target_id = Column(String(50), nullable=True)
    table_number = Column(String(20), nullable=True)
    url = Column(String(500), nullable=False)
    token = Column(String(64), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    customization = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_CUSTOMIZATION))
    is_active = Column(Boolean, default=True, nullable=False)
    total_scans = Column(Integer, default=0, nullable=False)
    last_scanned_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    scans = relationship("QRScan", back_populates="qr_code", cascade="all, delete-orphan")


class QRScan(Base):
    """A single scan of a QR code."""
    __tablename__ = "qr_scans"

    id = Column(Integer, primary_key=True, index=True)
    qr_code_id = Column(Integer, ForeignKey("qr_codes.id", ondelete="CASCADE"), nullable=False, index=True)
    scanned_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    user_agent = Column(String(500), nullable=True)
    ip_address = Column(String(50), nullable=True)
    device_type = Column(String(20), nullable=True)  # mobile, tablet, desktop
    referrer = Column(String(500), nullable=True)

    qr_code = relationship("QRCode", back_populates="scans")
