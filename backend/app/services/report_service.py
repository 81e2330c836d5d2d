"""Sales, inventory and tax reporting with CSV / Excel / PDF export."""

import csv
import io
import logging
from collections import defaultdict
from datetime import datetime, time as dt_time, timedelta, timezone
from decimal import Decimal
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.base import as_utc
from app.models.inventory import Material, MaterialStatus, StockMovement
from app.models.notification import Notification
from app.models.order import Order, OrderItem, OrderStatus
from app.services.settings_service import get_tax_settings

logger = logging.getLogger(__name__)

SALES_REPORT_TYPES = ("summary", "daily", "menu-items", "departments", "hourly")
EXPORT_FORMATS = ("csv", "xlsx", "pdf")

EXPORT_MEDIA_TYPES = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pdf": "application/pdf",
}

OPEN_STATUSES = (
    OrderStatus.PENDING.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.PREPARING.value,
    OrderStatus.READY.value,
)

# Orders counted in tax reports
TAXED_STATUSES = (
    OrderStatus.CONFIRMED.value,
    OrderStatus.PREPARING.value,
    OrderStatus.READY.value,
    OrderStatus.DELIVERED.value,
)

TAX_PERIODS = ("day", "week", "month", "year", "custom")
MAX_TAX_PERIOD_DAYS = 366


def _round(value) -> float:
    return round(float(value or 0), 2)


def tax_period_bounds(
    period: str,
    now: datetime,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """[start, end) of the calendar period containing ``now``; weeks start on Sunday.

    ``custom`` uses the given bounds, at most MAX_TAX_PERIOD_DAYS apart.
    """
    today = datetime.combine(as_utc(now).date(), dt_time.min, tzinfo=timezone.utc)
    if period == "day":
        return today, today + timedelta(days=1)
    if period == "week":
        first = today - timedelta(days=(today.weekday() + 1) % 7)
        return first, first + timedelta(days=7)
    if period == "month":
        first = today.replace(day=1)
        return first, first + relativedelta(months=1)
    if period == "year":
        first = today.replace(month=1, day=1)
        return first, first + relativedelta(years=1)
    if period == "custom":
        if start is None or end is None:
            raise ValueError("A custom tax period needs both from and to")
        if start >= end:
            raise ValueError("from must be before to")
        if end - start > timedelta(days=MAX_TAX_PERIOD_DAYS):
            raise ValueError(f"A custom tax period can span at most {MAX_TAX_PERIOD_DAYS} days")
        return start, end
    raise ValueError(f"Invalid period '{period}'. Valid periods: {', '.join(TAX_PERIODS)}")


class ReportService:
    """Aggregations over orders and the stock ledger."""

    def __init__(self, db: Session):
        self.db = db

    def _orders_query(self, start: Optional[datetime], end: Optional[datetime], department: Optional[str] = None):
        query = self.db.query(Order)
        if start:
            query = query.filter(Order.order_date >= start)
        if end:
            query = query.filter(Order.order_date < end)
        if department:
            query = query.filter(Order.items.any(OrderItem.department == department))
        return query

    def _items_query(self, start: Optional[datetime], end: Optional[datetime], department: Optional[str] = None):
        query = (
            self.db.query(OrderItem)
            .join(Order, OrderItem.order_id == Order.id)
            .filter(Order.status != OrderStatus.CANCELLED.value)
        )
        if start:
            query = query.filter(Order.order_date >= start)
        if end:
            query = query.filter(Order.order_date < end)
        if department:
            query = query.filter(OrderItem.department == department)
        return query

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def sales_summary(self, start=None, end=None, department=None) -> Dict[str, Any]:
        orders = self._orders_query(start, end, department).all()
        counts: Dict[str, int] = defaultdict(int)
        revenue = Decimal("0")
        discount = Decimal("0")
        tax = Decimal("0")
        for order in orders:
            counts[order.status] += 1
            if order.status == OrderStatus.CANCELLED.value:
                continue
            revenue += order.total_amount
            discount += order.discount_amount
            tax += order.tax_amount

        total_orders = len(orders)
        billable = total_orders - counts[OrderStatus.CANCELLED.value]
        delivered = counts[OrderStatus.DELIVERED.value]
        return {
            "total_orders": total_orders,
            "total_revenue": _round(revenue),
            "total_discount": _round(discount),
            "total_tax": _round(tax),
            "average_order_value": _round(revenue / billable) if billable else 0.0,
            "delivered_orders": delivered,
            "cancelled_orders": counts[OrderStatus.CANCELLED.value],
            "pending_orders": sum(counts[s] for s in OPEN_STATUSES),
            "completion_rate": round(delivered / total_orders * 100, 2) if total_orders else 0.0,
            "status_breakdown": dict(counts),
        }

    def sales_daily(self, start=None, end=None, department=None) -> List[Dict[str, Any]]:
        orders = (
            self._orders_query(start, end, department)
            .filter(Order.status != OrderStatus.CANCELLED.value)
            .all()
        )
        days: Dict[str, Dict[str, Any]] = {}
        for order in orders:
            key = as_utc(order.order_date).date().isoformat()
            day = days.setdefault(key, {"date": key, "orders": 0, "revenue": Decimal("0")})
            day["orders"] += 1
            day["revenue"] += order.total_amount

        rows = []
        for key in sorted(days):
            day = days[key]
            rows.append({
                "date": key,
                "orders": day["orders"],
                "revenue": _round(day["revenue"]),
                "average_order_value": _round(day["revenue"] / day["orders"]),
            })
        return rows

    def sales_hourly(self, start=None, end=None, department=None) -> List[Dict[str, Any]]:
        orders = (
            self._orders_query(start, end, department)
            .filter(Order.status != OrderStatus.CANCELLED.value)
            .all()
        )
        hours = {h: {"hour": h, "orders": 0, "revenue": Decimal("0")} for h in range(24)}
        for order in orders:
            bucket = hours[as_utc(order.order_date).hour]
            bucket["orders"] += 1
            bucket["revenue"] += order.total_amount
        return [
            {"hour": h, "orders": b["orders"], "revenue": _round(b["revenue"])}
            for h, b in hours.items()
        ]

    def sales_menu_items(self, start=None, end=None, department=None) -> List[Dict[str, Any]]:
        rows = (
            self._items_query(start, end, department)
            .with_entities(
                OrderItem.menu_item_id,
                OrderItem.name,
                func.sum(OrderItem.quantity).label("quantity"),
                func.sum(OrderItem.total_price).label("revenue"),
                func.count(func.distinct(OrderItem.order_id)).label("order_count"),
            )
            .group_by(OrderItem.menu_item_id, OrderItem.name)
            .all()
        )
        result = [
            {
                "menu_item_id": r.menu_item_id,
                "name": r.name,
                "quantity_sold": int(r.quantity or 0),
                "revenue": _round(r.revenue),
                "order_count": r.order_count,
            }
            for r in rows
        ]
        result.sort(key=lambda r: r["revenue"], reverse=True)
        return result

    def sales_departments(self, start=None, end=None, department=None) -> List[Dict[str, Any]]:
        rows = (
            self._items_query(start, end, department)
            .with_entities(
                OrderItem.department,
                func.count(OrderItem.id).label("items"),
                func.sum(OrderItem.quantity).label("quantity"),
                func.sum(OrderItem.total_price).label("revenue"),
                func.count(func.distinct(OrderItem.order_id)).label("order_count"),
            )
            .group_by(OrderItem.department)
            .all()
        )
        result = [
            {
                "department": r.department,
                "items": r.items,
                "quantity": int(r.quantity or 0),
                "revenue": _round(r.revenue),
                "order_count": r.order_count,
            }
            for r in rows
        ]
        result.sort(key=lambda r: r["revenue"], reverse=True)
        return result

    def sales_report(self, report_type: str, start=None, end=None, department=None):
        handlers = {
            "summary": self.sales_summary,
            "daily": self.sales_daily,
            "menu-items": self.sales_menu_items,
            "departments": self.sales_departments,
            "hourly": self.sales_hourly,
        }
        if report_type not in handlers:
            raise ValueError(
                f"Invalid report type '{report_type}'. Valid types: {', '.join(SALES_REPORT_TYPES)}"
            )
        return handlers[report_type](start, end, department)

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def inventory_report(self, start=None, end=None) -> Dict[str, Any]:
        materials = self.db.query(Material).filter(Material.is_active.is_(True)).all()
        by_status: Dict[str, int] = defaultdict(int)
        by_category: Dict[str, Dict[str, Any]] = {}
        valuation = Decimal("0")
        for m in materials:
            value = (m.current_quantity or Decimal("0")) * (m.cost_per_unit or Decimal("0"))
            valuation += value
            by_status[m.status] += 1
            cat = by_category.setdefault(m.category, {"category": m.category, "count": 0, "value": Decimal("0")})
            cat["count"] += 1
            cat["value"] += value

        movements = self.db.query(
            StockMovement.reason,
            func.count(StockMovement.id).label("count"),
            func.sum(StockMovement.qty_delta).label("quantity"),
        )
        if start:
            movements = movements.filter(StockMovement.ts >= start)
        if end:
            movements = movements.filter(StockMovement.ts < end)
        usage = [
            {"reason": r.reason, "movements": r.count, "net_quantity": float(r.quantity or 0)}
            for r in movements.group_by(StockMovement.reason).all()
        ]

        return {
            "total_materials": len(materials),
            "stock_value": _round(valuation),
            "status_counts": {
                s.value: by_status.get(s.value, 0) for s in MaterialStatus
            },
            "categories": [
                {"category": c["category"], "count": c["count"], "value": _round(c["value"])}
                for c in sorted(by_category.values(), key=lambda c: c["category"])
            ],
            "movements_by_reason": usage,
        }

    # ------------------------------------------------------------------
    # Tax
    # ------------------------------------------------------------------

    def tax_report(self, period: str = "month", start=None, end=None, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Tax collected and sales over a calendar period, with a per-day breakdown.

        Uses the tax each order was priced with, so later rate changes do not
        rewrite history. Pending and cancelled orders are left out.
        """
        tax_settings = get_tax_settings(self.db)
        if not tax_settings.enable_tax_handling:
            return {"message": "Tax handling is disabled", "reports": []}

        start, end = tax_period_bounds(period, now or datetime.now(timezone.utc), start, end)
        orders = (
            self._orders_query(start, end)
            .filter(Order.status.in_(TAXED_STATUSES))
            .all()
        )

        days: Dict[str, Dict[str, Any]] = {}
        day = start
        while day < end:
            key = day.date().isoformat()
            days[key] = {"date": key, "orders": 0, "sales": Decimal("0"), "tax": Decimal("0")}
            day += timedelta(days=1)

        sales = Decimal("0")
        tax = Decimal("0")
        for order in orders:
            sales += order.total_amount
            tax += order.tax_amount
            bucket = days.get(as_utc(order.order_date).date().isoformat())
            if bucket is not None:
                bucket["orders"] += 1
                bucket["sales"] += order.total_amount
                bucket["tax"] += order.tax_amount

        net = sales - tax
        return {
            "period": {"type": period, "start": start.isoformat(), "end": end.isoformat()},
            "tax_settings": {
                "tax_type": tax_settings.tax_type,
                "vat_rate": float(tax_settings.vat_rate),
                "compliance_mode": tax_settings.compliance_mode,
                "tax_number": tax_settings.tax_number,
            },
            "summary": {
                "total_orders": len(orders),
                "total_sales": _round(sales),
                "taxable_sales": _round(net),
                "total_tax_collected": _round(tax),
                "average_order_value": _round(sales / len(orders)) if orders else 0.0,
            },
            "breakdown": {
                "tax_rate": f"{float(tax_settings.vat_rate):g}%",
                "tax_amount": _round(tax),
                "net_amount": _round(net),
                "gross_amount": _round(sales),
            },
            "daily_breakdown": [
                {"date": d["date"], "orders": d["orders"], "sales": _round(d["sales"]), "tax": _round(d["tax"])}
                for d in days.values()
            ],
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }

    def dashboard(self) -> Dict[str, Any]:
        today = datetime.combine(datetime.now(timezone.utc).date(), dt_time.min, tzinfo=timezone.utc)
        tomorrow = today + timedelta(days=1)
        todays = self._orders_query(today, tomorrow).all()
        revenue = sum(
            (o.total_amount for o in todays if o.status != OrderStatus.CANCELLED.value),
            Decimal("0"),
        )
        pending = self.db.query(func.count(Order.id)).filter(Order.status.in_(OPEN_STATUSES)).scalar()
        low_stock = (
            self.db.query(func.count(Material.id))
            .filter(
                Material.is_active.is_(True),
                Material.status.in_([MaterialStatus.LOW_STOCK.value, MaterialStatus.OUT_OF_STOCK.value]),
            )
            .scalar()
        )
        unread = (
            self.db.query(func.count(Notification.id))
            .filter(Notification.read.is_(False), Notification.dismissed.is_(False))
            .scalar()
        )
        return {
            "today_orders": len(todays),
            "today_revenue": _round(revenue),
            "pending_orders": pending or 0,
            "low_stock_count": low_stock or 0,
            "unread_notifications": unread or 0,
            "restaurant_name": settings.restaurant_name,
        }


# ============================================================================
# Export helpers
# ============================================================================

def report_table(report_type: str, data) -> Tuple[List[str], List[list]]:
    """Flatten a sales report into headers and rows."""
    if report_type == "summary":
        headers = ["Metric", "Value"]
        rows = [[k.replace("_", " ").title(), v] for k, v in data.items() if not isinstance(v, dict)]
        return headers, rows
    if not data:
        return ["No data"], []
    headers = list(data[0].keys())
    return headers, [[row.get(h) for h in headers] for row in data]


def create_csv_export(data: list, headers: list) -> BytesIO:
    """Create CSV file from data."""
    output = BytesIO()
    output.write(b"\xef\xbb\xbf")
    text_output = io.StringIO()
    writer = csv.writer(text_output, delimiter=",", quotechar='"', quoting=csv.QUOTE_MINIMAL)
    writer.writerow(headers)
    for row in data:
        writer.writerow(row)
    output.write(text_output.getvalue().encode("utf-8"))
    output.seek(0)
    return output


def create_excel_export(data: list, headers: list, sheet_name: str = "Report") -> BytesIO:
    """Create Excel file from data."""
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_name[:31]
    for col_idx, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col_idx, value=header)
        cell.font = Font(bold=True, color="FFFFFF")
        cell.fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
        cell.alignment = Alignment(horizontal="center", vertical="center")
    for row_idx, row_data in enumerate(data, 2):
        for col_idx, value in enumerate(row_data, 1):
            ws.cell(row=row_idx, column=col_idx, value=value)
    for column in ws.columns:
        width = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
        ws.column_dimensions[column[0].column_letter].width = min(width + 2, 50)
    output = BytesIO()
    wb.save(output)
    output.seek(0)
    return output


def create_pdf_export(data: list, headers: list, title: str = "Report") -> BytesIO:
    """Create PDF file from data."""
    output = BytesIO()
    pagesize = landscape(A4) if len(headers) > 5 else A4
    doc = SimpleDocTemplate(output, pagesize=pagesize)
    elements = []
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("ReportTitle", parent=styles["Heading1"], fontSize=20, spaceAfter=20, alignment=1)
    elements.append(Paragraph(title, title_style))
    elements.append(Paragraph(
        datetime.now(timezone.utc).strftime("Generated %Y-%m-%d %H:%M UTC"), styles["Normal"]
    ))
    elements.append(Spacer(1, 0.3 * inch))

    table_data = [headers] + [["" if v is None else str(v) for v in row] for row in data]
    usable_width = pagesize[0] - 2 * inch
    table = Table(table_data, colWidths=[usable_width / len(headers)] * len(headers), repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#366092")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f2f2f2")]),
    ]))
    elements.append(table)
    doc.build(elements)
    output.seek(0)
    return output


def export_report(report_type: str, data, fmt: str) -> Tuple[BytesIO, str, str]:
    """Render a sales report; returns (buffer, media type, filename)."""
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Invalid export format '{fmt}'. Valid formats: {', '.join(EXPORT_FORMATS)}")
    headers, rows = report_table(report_type, data)
    title = f"Sales Report - {report_type.replace('-', ' ').title()}"
    if fmt == "xlsx":
        output = create_excel_export(rows, headers, report_type)
    elif fmt == "pdf":
        output = create_pdf_export(rows, headers, title)
    else:
        output = create_csv_export(rows, headers)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    filename = f"sales_{report_type}_{stamp}.{fmt}"
    logger.info(f"Exported {report_type} sales report as {fmt} ({len(rows)} rows)")
    return output, EXPORT_MEDIA_TYPES[fmt], filename
