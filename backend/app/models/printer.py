"""Receipt printer and print job models."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.db.base import Base

PRINTER_DEPARTMENTS = ("kitchen", "barista", "shisha", "general")
CONNECTION_TYPES = ("USB", "LAN", "WiFi", "Bluetooth")
JOB_STATUSES = ("pending", "printing", "completed", "failed", "cancelled")
JOB_PRIORITIES = ("low", "normal", "high", "urgent")

DEFAULT_PRINTER_SETTINGS = {
    "copies": 1,
    "print_customer_copy": False,
    "print_internal_copy": True,
    "include_logo": False,
    "include_qr_code": False,
    "font_size": "medium",
    "paper_cut": True,
    "buzzer": False,
}


def _utcnow():
    return datetime.now(timezone.utc)


class Printer(Base):
    """Thermal printer assigned to a department."""
    __tablename__ = "printers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    department = Column(String(20), nullable=False, default="general", index=True)
    connection_type = Column(String(20), nullable=False)  # USB, LAN, WiFi, Bluetooth
    ip_address = Column(String(45), nullable=True)
    port = Column(Integer, nullable=False, default=9100)
    usb_path = Column(String(200), nullable=True)  # CUPS queue name for USB printers
    bluetooth_address = Column(String(20), nullable=True)
    paper_width = Column(Integer, nullable=False, default=80)  # mm: 58 or 80

    is_active = Column(Boolean, default=True, nullable=False)
    is_online = Column(Boolean, default=False, nullable=False)
    last_test_at = Column(DateTime(timezone=True), nullable=True)
    last_print_at = Column(DateTime(timezone=True), nullable=True)
    last_order_printed = Column(String(20), nullable=True)
    print_count = Column(Integer, default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)

    settings = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_PRINTER_SETTINGS))

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    jobs = relationship("PrintJob", back_populates="printer", cascade="all, delete-orphan")

    def accepts_department(self, department: str) -> bool:
        """General printers take every department's items."""
        return self.department == "general" or self.department == department


class PrintJob(Base):
    """A ticket queued for (or sent to) a printer."""
    __tablename__ = "print_jobs"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(50), nullable=False, unique=True, index=True)
    printer_id = Column(Integer, ForeignKey("printers.id", ondelete="CASCADE"), nullable=False, index=True)
    printer_name = Column(String(100), nullable=False)
    department = Column(String(20), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    order_number = Column(String(20), nullable=True)
    job_type = Column(String(20), nullable=False, default="order")  # order, test, reprint
    status = Column(String(20), nullable=False, default="pending", index=True)
    priority = Column(String(10), nullable=False, default="normal")
    ticket_data = Column(JSON, nullable=True)
    print_settings = Column(JSON, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    printer = relationship("Printer", back_populates="jobs")

    def start(self) -> None:
        self.status = "printing"
        self.attempts = (self.attempts or 0) + 1
        self.started_at = _utcnow()
        self.error_message = None

    def complete(self) -> None:
        self.status = "completed"
        self.completed_at = _utcnow()

    def fail(self, message: str) -> None:
        self.status = "failed"
        self.error_message = message
        self.completed_at = _utcnow()

    def cancel(self) -> bool:
        """Cancel a job that has not finished; returns False otherwise."""
        if self.status not in ("pending", "printing"):
            return False
        self.status = "cancelled"
        self.completed_at = _utcnow()
        return True

    @property
    def can_retry(self) -> bool:
        return self.status == "failed" and (self.attempts or 0) < (self.max_attempts or 0)
