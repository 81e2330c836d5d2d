"""Printer and print job schemas."""

import ipaddress
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.sanitize import sanitize_text
from app.models.printer import CONNECTION_TYPES, JOB_PRIORITIES, PRINTER_DEPARTMENTS


def check_connection_fields(
    connection_type: str,
    ip_address: Optional[str],
    usb_path: Optional[str],
    bluetooth_address: Optional[str],
) -> None:
    """Each connection type needs its own address field."""
    if connection_type in ("LAN", "WiFi") and not ip_address:
        raise ValueError(f"ip_address is required for {connection_type} printers")
    if connection_type == "USB" and not usb_path:
        raise ValueError("usb_path is required for USB printers")
    if connection_type == "Bluetooth" and not bluetooth_address:
        raise ValueError("bluetooth_address is required for Bluetooth printers")


class PrinterSettings(BaseModel):
    copies: int = Field(1, ge=1, le=5)
    print_customer_copy: bool = False
    print_internal_copy: bool = True
    include_logo: bool = False
    include_qr_code: bool = False
    font_size: Literal["small", "medium", "large"] = "medium"
    paper_cut: bool = True
    buzzer: bool = False


class PrinterSettingsPatch(BaseModel):
    copies: Optional[int] = Field(None, ge=1, le=5)
    print_customer_copy: Optional[bool] = None
    print_internal_copy: Optional[bool] = None
    include_logo: Optional[bool] = None
    include_qr_code: Optional[bool] = None
    font_size: Optional[Literal["small", "medium", "large"]] = None
    paper_cut: Optional[bool] = None
    buzzer: Optional[bool] = None


class PrinterBase(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    department: Optional[str] = None
    connection_type: Optional[str] = None
    ip_address: Optional[str] = Field(None, max_length=45)
    port: Optional[int] = Field(None, ge=1, le=65535)
    usb_path: Optional[str] = Field(None, max_length=200)
    bluetooth_address: Optional[str] = Field(None, max_length=20)
    paper_width: Optional[Literal[58, 80]] = None
    is_active: Optional[bool] = None

    @field_validator("name", "usb_path", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v

    @field_validator("department")
    @classmethod
    def _department(cls, v):
        if v is not None and v not in PRINTER_DEPARTMENTS:
            raise ValueError(f"department must be one of: {', '.join(PRINTER_DEPARTMENTS)}")
        return v

    @field_validator("connection_type")
    @classmethod
    def _connection_type(cls, v):
        if v is not None and v not in CONNECTION_TYPES:
            raise ValueError(f"connection_type must be one of: {', '.join(CONNECTION_TYPES)}")
        return v

    @field_validator("ip_address")
    @classmethod
    def _ip(cls, v):
        if v:
            try:
                ipaddress.ip_address(v)
            except ValueError:
                raise ValueError(f"Invalid IP address '{v}'")
        return v


class PrinterCreate(PrinterBase):
    name: str = Field(..., min_length=1, max_length=100)
    department: str = "general"
    connection_type: str
    port: int = Field(9100, ge=1, le=65535)
    paper_width: Literal[58, 80] = 80
    is_active: bool = True
    settings: PrinterSettings = PrinterSettings()

    @model_validator(mode="after")
    def _check_connection(self):
        check_connection_fields(self.connection_type, self.ip_address, self.usb_path, self.bluetooth_address)
        return self


class PrinterUpdate(PrinterBase):
    settings: Optional[PrinterSettingsPatch] = None


class PrintJobCreate(BaseModel):
    printer_id: int = Field(..., gt=0)
    order_id: int = Field(..., gt=0)
    priority: str = "normal"
    print_settings: Optional[PrinterSettingsPatch] = None

    @field_validator("priority")
    @classmethod
    def _priority(cls, v):
        if v not in JOB_PRIORITIES:
            raise ValueError(f"priority must be one of: {', '.join(JOB_PRIORITIES)}")
        return v
