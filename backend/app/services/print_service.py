"""ESC/POS Ticket Printing Service.

Builds department tickets for thermal printers (58 mm and 80 mm paper) and
sends them over the printer's connection:
- LAN / WiFi: raw TCP to ip:port (port 9100 by default)
- USB: the system print queue (``lp -d <queue> -o raw``)
- Bluetooth: not supported server-side, jobs fail with a clear error

Print jobs keep their own lifecycle (pending -> printing -> completed /
failed / cancelled) and may be retried until ``max_attempts``.
"""

import asyncio
import logging
import secrets
import socket
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.order import Order
from app.models.printer import DEFAULT_PRINTER_SETTINGS, PrintJob, Printer

logger = logging.getLogger(__name__)


# ============================================================================
# ESC/POS Command Constants
# ============================================================================

class ESC:
    """ESC/POS command bytes."""
    # Printer control
    INIT = b'\x1b\x40'  # Initialize printer
    CUT_PARTIAL = b'\x1d\x56\x01'  # Partial cut
    FEED_LINES = b'\x1b\x64'  # Feed n lines
    BUZZER = b'\x1b\x42'  # Beep n times, t x 50ms

    # Text formatting
    BOLD_ON = b'\x1b\x45\x01'
    BOLD_OFF = b'\x1b\x45\x00'
    UNDERLINE_ON = b'\x1b\x2d\x01'
    UNDERLINE_OFF = b'\x1b\x2d\x00'
    DOUBLE_SIZE_ON = b'\x1b\x21\x30'
    NORMAL_SIZE = b'\x1b\x21\x00'

    # Character size (GS !) and font selection (ESC M)
    FONT_A = b'\x1b\x4d\x00'
    FONT_B = b'\x1b\x4d\x01'
    CHAR_SIZE_NORMAL = b'\x1d\x21\x00'
    CHAR_SIZE_DOUBLE_HEIGHT = b'\x1d\x21\x01'

    # Text alignment
    ALIGN_LEFT = b'\x1b\x61\x00'
    ALIGN_CENTER = b'\x1b\x61\x01'
    ALIGN_RIGHT = b'\x1b\x61\x02'

    CHARSET_PC850 = b'\x1b\x74\x02'  # Multilingual


FONT_SIZE_COMMANDS = {
    "small": ESC.FONT_B + ESC.CHAR_SIZE_NORMAL,
    "medium": ESC.FONT_A + ESC.CHAR_SIZE_NORMAL,
    "large": ESC.FONT_A + ESC.CHAR_SIZE_DOUBLE_HEIGHT,
}

CHARS_PER_LINE = {58: 32, 80: 48}

JOB_ACTIONS = ("reprint", "cancel", "retry")


class PrintJobError(Exception):
    """A ticket could not be created or delivered."""


@dataclass
class ReceiptLine:
    """A line on a ticket."""
    text: str = ""
    bold: bool = False
    double_size: bool = False
    underline: bool = False
    align: str = "left"  # left, center, right


def _base36(number: int) -> str:
    alphabet = string.digits + string.ascii_lowercase
    out = ""
    while True:
        number, rem = divmod(number, 36)
        out = alphabet[rem] + out
        if number == 0:
            return out


def generate_job_id() -> str:
    """'job_' + base-36 millisecond timestamp + '_' + random suffix."""
    alphabet = string.digits + string.ascii_lowercase
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"job_{_base36(int(time.time() * 1000))}_{suffix}"


def merged_settings(printer: Printer, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    merged = dict(DEFAULT_PRINTER_SETTINGS)
    merged.update(printer.settings or {})
    merged.update(overrides or {})
    return merged


def build_ticket_data(order: Order, department: str) -> Dict[str, Any]:
    """Snapshot of the order lines a printer's department should receive."""
    items = [
        i for i in order.items
        if department == "general" or i.department == department
    ]
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "order_date": order.order_date.isoformat() if order.order_date else None,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "table_number": order.table_number,
        "department": department,
        "notes": order.notes,
        "items": [
            {
                "name": i.name,
                "quantity": i.quantity,
                "unit_price": float(i.unit_price),
                "total_price": float(i.total_price),
                "customizations": i.customizations or [],
                "notes": i.notes,
            }
            for i in items
        ],
        "subtotal": float(order.subtotal),
        "discount_amount": float(order.discount_amount),
        "tax_rate": float(order.tax_rate),
        "tax_amount": float(order.tax_amount),
        "total_amount": float(order.total_amount),
    }


class TicketFormatter:
    """Renders tickets as ESC/POS byte streams."""

    def __init__(self, paper_width: int = 80, print_settings: Optional[Dict[str, Any]] = None):
        self.chars_per_line = CHARS_PER_LINE.get(paper_width, 48)
        self.settings = {**DEFAULT_PRINTER_SETTINGS, **(print_settings or {})}

    def _build_line(self, line: ReceiptLine) -> bytes:
        data = BytesIO()

        if line.align == "center":
            data.write(ESC.ALIGN_CENTER)
        elif line.align == "right":
            data.write(ESC.ALIGN_RIGHT)
        else:
            data.write(ESC.ALIGN_LEFT)

        if line.bold:
            data.write(ESC.BOLD_ON)
        if line.underline:
            data.write(ESC.UNDERLINE_ON)
        if line.double_size:
            data.write(ESC.DOUBLE_SIZE_ON)

        try:
            text_bytes = line.text.encode('cp850')
        except UnicodeEncodeError:
            text_bytes = line.text.encode('utf-8', errors='replace')
        data.write(text_bytes)
        data.write(b'\n')

        if line.bold:
            data.write(ESC.BOLD_OFF)
        if line.underline:
            data.write(ESC.UNDERLINE_OFF)
        if line.double_size:
            data.write(ESC.NORMAL_SIZE)

        return data.getvalue()

    def _format_columns(self, left: str, right: str) -> str:
        max_left = self.chars_per_line - len(right) - 1
        if len(left) > max_left:
            left = left[:max_left - 2] + ".."
        spaces = self.chars_per_line - len(left) - len(right)
        return f"{left}{' ' * spaces}{right}"

    def _build_divider(self, char: str = "-") -> bytes:
        return (char * self.chars_per_line + "\n").encode('cp850')

    def _start(self, data: BytesIO) -> None:
        data.write(ESC.INIT)
        data.write(ESC.CHARSET_PC850)
        data.write(FONT_SIZE_COMMANDS.get(self.settings.get("font_size"), FONT_SIZE_COMMANDS["medium"]))

    def _finish(self, data: BytesIO) -> None:
        if self.settings.get("buzzer"):
            data.write(ESC.BUZZER + b'\x03\x03')
        data.write(ESC.FEED_LINES + b'\x04')
        if self.settings.get("paper_cut", True):
            data.write(ESC.CUT_PARTIAL)

    def build_order_ticket(self, ticket: Dict[str, Any], restaurant_name: str = "") -> bytes:
        """Department ticket for an order snapshot (see ``build_ticket_data``)."""
        data = BytesIO()
        self._start(data)

        data.write(self._build_line(ReceiptLine(
            text=restaurant_name or settings.restaurant_name,
            bold=True,
            double_size=True,
            align="center",
        )))

        department = ticket.get("department") or "general"
        if department != "general":
            data.write(self._build_line(ReceiptLine(
                text=f"*** {department.upper()} ***",
                bold=True,
                align="center",
            )))
        data.write(self._build_divider("="))

        data.write(self._build_line(ReceiptLine(
            text=f"Order {ticket.get('order_number', '')}",
            bold=True,
            double_size=True,
            align="center",
        )))
        if ticket.get("order_date"):
            stamp = datetime.fromisoformat(ticket["order_date"])
            data.write(self._build_line(ReceiptLine(text=stamp.strftime("%Y-%m-%d %H:%M"), align="center")))
        if ticket.get("customer_name"):
            data.write(self._build_line(ReceiptLine(text=f"Customer: {ticket['customer_name']}")))
        if ticket.get("customer_phone"):
            data.write(self._build_line(ReceiptLine(text=f"Phone: {ticket['customer_phone']}")))
        if ticket.get("table_number"):
            data.write(self._build_line(ReceiptLine(text=f"Table: {ticket['table_number']}", bold=True)))
        data.write(self._build_divider("-"))

        for item in ticket.get("items", []):
            line = self._format_columns(
                f"{item['quantity']}x {item['name']}",
                f"{item.get('total_price', 0):.2f}",
            )
            data.write(self._build_line(ReceiptLine(text=line, bold=True)))
            for mod in item.get("customizations") or []:
                data.write(self._build_line(ReceiptLine(text=f"  + {mod}")))
            if item.get("notes"):
                data.write(self._build_line(ReceiptLine(text=f"  >> {item['notes']}", underline=True)))

        data.write(self._build_divider("-"))
        if department == "general":
            data.write(self._build_line(ReceiptLine(
                text=self._format_columns("Subtotal:", f"{ticket.get('subtotal', 0):.2f}")
            )))
            if ticket.get("discount_amount"):
                data.write(self._build_line(ReceiptLine(
                    text=self._format_columns("Discount:", f"-{ticket['discount_amount']:.2f}")
                )))
            if ticket.get("tax_amount"):
                data.write(self._build_line(ReceiptLine(
                    text=self._format_columns(f"Tax ({ticket.get('tax_rate', 0):.0f}%):", f"{ticket['tax_amount']:.2f}")
                )))
            data.write(self._build_line(ReceiptLine(
                text=self._format_columns("TOTAL:", f"{ticket.get('total_amount', 0):.2f}"),
                bold=True,
            )))
            data.write(self._build_divider("="))

        if ticket.get("notes"):
            data.write(self._build_line(ReceiptLine(text=f"NOTE: {ticket['notes']}", bold=True, underline=True)))

        data.write(self._build_line(ReceiptLine(text="Thank you!", align="center")))
        self._finish(data)
        return data.getvalue()

    def build_test_page(self, printer_name: str) -> bytes:
        data = BytesIO()
        self._start(data)
        data.write(self._build_line(ReceiptLine(
            text="*** PRINTER TEST ***",
            bold=True,
            double_size=True,
            align="center",
        )))
        data.write(self._build_line(ReceiptLine(text=f"Printer: {printer_name}", align="center")))
        data.write(self._build_line(ReceiptLine(
            text=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
            align="center",
        )))
        data.write(self._build_divider("-"))
        data.write(self._build_line(ReceiptLine(text=self._format_columns("Left", "Right"))))
        data.write(self._build_line(ReceiptLine(text="Bold text", bold=True)))
        data.write(self._build_line(ReceiptLine(text="Underlined", underline=True)))
        data.write(self._build_divider("="))
        self._finish(data)
        return data.getvalue()


# ============================================================================
# Transport
# ============================================================================

def _send_tcp(host: str, port: int, payload: bytes, timeout: float) -> None:
    with socket.create_connection((host, port), timeout=timeout) as sock:
        sock.sendall(payload)


async def _run_command(args: List[str], stdin: Optional[bytes] = None) -> Tuple[int, bytes]:
    """Run a CUPS command, killing it when it outlives the printer timeout.

    Returns the exit code and stderr.
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        _, stderr = await asyncio.wait_for(process.communicate(stdin), timeout=settings.printer_timeout_seconds)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    return process.returncode, stderr


async def send_to_printer(printer: Printer, payload: bytes) -> None:
    """Deliver raw bytes to a printer.

    Raises:
        PrintJobError: on any connection or spooler failure.
    """
    if printer.connection_type in ("LAN", "WiFi"):
        if not printer.ip_address:
            raise PrintJobError(f"Printer '{printer.name}' has no IP address")
        try:
            await asyncio.to_thread(
                _send_tcp, printer.ip_address, printer.port, payload, settings.printer_timeout_seconds
            )
        except OSError as e:
            raise PrintJobError(f"Could not reach {printer.ip_address}:{printer.port}: {e}") from e
        return

    if printer.connection_type == "USB":
        if not printer.usb_path:
            raise PrintJobError(f"Printer '{printer.name}' has no USB queue configured")
        try:
            returncode, stderr = await _run_command(["lp", "-d", printer.usb_path, "-o", "raw", "-"], payload)
        except (OSError, asyncio.TimeoutError) as e:
            raise PrintJobError(f"USB print failed: {str(e) or 'timed out'}") from e
        if returncode != 0:
            raise PrintJobError(f"lp command failed: {stderr.decode(errors='replace').strip()}")
        return

    if printer.connection_type == "Bluetooth":
        raise PrintJobError("Bluetooth printers are not supported by the server; print from a paired device")

    raise PrintJobError(f"Unknown connection type '{printer.connection_type}'")


async def check_connection(printer: Printer) -> Dict[str, Any]:
    """Check a printer is reachable without printing anything."""
    if printer.connection_type in ("LAN", "WiFi"):
        try:
            await asyncio.to_thread(
                _send_tcp, printer.ip_address, printer.port, b"", settings.printer_timeout_seconds
            )
            return {"success": True, "message": f"Connected to {printer.ip_address}:{printer.port}"}
        except OSError as e:
            return {"success": False, "message": f"Connection failed: {e}"}
    if printer.connection_type == "USB":
        try:
            returncode, _ = await _run_command(["lpstat", "-p", printer.usb_path or ""])
        except (OSError, asyncio.TimeoutError) as e:
            return {"success": False, "message": f"Print queue unavailable: {str(e) or 'timed out'}"}
        if returncode == 0:
            return {"success": True, "message": f"Print queue '{printer.usb_path}' is available"}
        return {"success": False, "message": f"Print queue '{printer.usb_path}' not found"}
    return {"success": False, "message": f"{printer.connection_type} printers cannot be tested from the server"}


# ============================================================================
# Print jobs
# ============================================================================

def serialize_print_job(job: PrintJob) -> Dict[str, Any]:
    return {
        "id": job.id,
        "job_id": job.job_id,
        "printer_id": job.printer_id,
        "printer_name": job.printer_name,
        "department": job.department,
        "order_id": job.order_id,
        "order_number": job.order_number,
        "job_type": job.job_type,
        "status": job.status,
        "priority": job.priority,
        "ticket_data": job.ticket_data or {},
        "print_settings": job.print_settings or {},
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "can_retry": job.can_retry,
        "error_message": job.error_message,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
        "created_by": job.created_by,
        "created_at": job.created_at.isoformat() if job.created_at else None,
    }


class PrintJobService:
    """Creates, renders and delivers print jobs."""

    def __init__(self, db: Session, user_id: Optional[int] = None):
        self.db = db
        self.user_id = user_id

    def create_job(
        self,
        printer: Printer,
        order: Order,
        job_type: str = "order",
        priority: str = "normal",
        print_settings: Optional[Dict[str, Any]] = None,
    ) -> PrintJob:
        if not printer.is_active:
            raise PrintJobError(f"Printer '{printer.name}' is not active")
        ticket = build_ticket_data(order, printer.department)
        if not ticket["items"]:
            raise PrintJobError(f"Order {order.order_number} has no items for the {printer.department} printer")

        job = PrintJob(
            job_id=generate_job_id(),
            printer_id=printer.id,
            printer_name=printer.name,
            department=printer.department,
            order_id=order.id,
            order_number=order.order_number,
            job_type=job_type,
            status="pending",
            priority=priority,
            ticket_data=ticket,
            print_settings=print_settings or {},
            attempts=0,
            max_attempts=3,
            created_by=self.user_id,
        )
        self.db.add(job)
        self.db.flush()
        return job

    def create_jobs_for_order(self, order: Order) -> List[PrintJob]:
        """One job per active printer whose department has items on the order."""
        jobs = []
        departments = set(order.departments)
        printers = self.db.query(Printer).filter(Printer.is_active.is_(True)).order_by(Printer.id).all()
        for printer in printers:
            if printer.department != "general" and printer.department not in departments:
                continue
            jobs.append(self.create_job(printer, order))
        return jobs

    def render(self, job: PrintJob) -> bytes:
        printer = job.printer
        formatter = TicketFormatter(printer.paper_width, merged_settings(printer, job.print_settings))
        return formatter.build_order_ticket(job.ticket_data or {})

    async def process(self, job: PrintJob) -> PrintJob:
        """Send a job to its printer, recording the outcome on job and printer."""
        printer = job.printer
        job.start()
        try:
            payload = self.render(job)
            copies = int(merged_settings(printer, job.print_settings).get("copies", 1) or 1)
        except Exception as e:
            # Bad ticket data is the job's fault, the printer stays as it was
            job.fail(f"Could not render ticket: {e}")
            logger.error(f"Print job {job.job_id} could not be rendered: {e}", exc_info=True)
            return job

        try:
            for _ in range(copies):
                await send_to_printer(printer, payload)
        except PrintJobError as e:
            job.fail(str(e))
            printer.error_count = (printer.error_count or 0) + 1
            printer.last_error = str(e)
            printer.is_online = False
            logger.warning(f"Print job {job.job_id} failed on '{printer.name}': {e}")
            return job

        job.complete()
        printer.is_online = True
        printer.print_count = (printer.print_count or 0) + 1
        printer.last_print_at = datetime.now(timezone.utc)
        printer.last_order_printed = job.order_number
        logger.info(f"Print job {job.job_id} printed on '{printer.name}'")
        return job

    async def perform_action(self, job: PrintJob, action: str) -> PrintJob:
        """Apply reprint / cancel / retry; returns the affected (or new) job.

        Raises:
            ValueError: unknown action.
            PrintJobError: action not allowed for the job's status.
        """
        if action not in JOB_ACTIONS:
            raise ValueError("Invalid action")

        if action == "cancel":
            if not job.cancel():
                raise PrintJobError("Action not allowed for current job status")
            return job

        if action == "retry":
            if not job.can_retry:
                raise PrintJobError("Action not allowed for current job status")
            return await self.process(job)

        if job.status not in ("completed", "failed"):
            raise PrintJobError("Action not allowed for current job status")
        reprint = PrintJob(
            job_id=generate_job_id(),
            printer_id=job.printer_id,
            printer_name=job.printer_name,
            department=job.department,
            order_id=job.order_id,
            order_number=job.order_number,
            job_type="reprint",
            status="pending",
            priority=job.priority,
            ticket_data=job.ticket_data,
            print_settings=job.print_settings,
            attempts=0,
            max_attempts=job.max_attempts,
            created_by=self.user_id,
        )
        self.db.add(reprint)
        self.db.flush()
        return await self.process(reprint)

    async def test_printer(self, printer: Printer, test_type: str = "connection") -> Dict[str, Any]:
        """Connection check or a printed test page."""
        printer.last_test_at = datetime.now(timezone.utc)
        if test_type == "print":
            payload = TicketFormatter(printer.paper_width, merged_settings(printer)).build_test_page(printer.name)
            try:
                await send_to_printer(printer, payload)
                result = {"success": True, "message": "Test page sent"}
            except PrintJobError as e:
                result = {"success": False, "message": str(e)}
        else:
            result = await check_connection(printer)

        printer.is_online = result["success"]
        if not result["success"]:
            printer.error_count = (printer.error_count or 0) + 1
            printer.last_error = result["message"]
        return result
