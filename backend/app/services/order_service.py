"""Order Service - Placement, pricing and the order lifecycle.

Flow when an order is placed:
1. Validate lines against the catalog (name, price, department, prep time)
2. Price the cart: subtotal, promotion or manual discount, tax
3. Insert the order and consume its recipe ingredients atomically
4. Count the promotion use and notify every department involved

Status changes follow ORDER_TRANSITIONS; cancelling restores inventory and
delivering marks every department served.
"""

import logging
import secrets
import time
from datetime import datetime, time as dt_time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Tuple

from dateutil import parser as date_parser
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.sanitize import like_pattern
from app.models.menu import MenuItem
from app.models.notification import NotificationPriority, NotificationType
from app.models.order import (
    DEPARTMENT_STATUS_RANK,
    ORDER_TRANSITIONS,
    DepartmentStatus,
    Order,
    OrderItem,
    OrderStatus,
)
from app.services.inventory_service import InventoryService
from app.services.modifier_service import ModifierSelectionError, price_selections
from app.services.notification_service import NotificationService
from app.services.promotion_service import PromotionService
from app.services.settings_service import get_tax_settings
from app.services.websocket_service import Channel, EventType, department_channel, queue_event

logger = logging.getLogger(__name__)

MONEY = Decimal("0.01")
TOTAL_TOLERANCE = Decimal("0.01")
DEPARTMENTS = ("kitchen", "barista", "shisha")


class OrderValidationError(ValueError):
    """The order request breaks a business rule."""


class InvalidStatusTransition(ValueError):
    """The requested status change is not allowed."""


def money(value) -> Decimal:
    value = value if isinstance(value, Decimal) else Decimal(str(value))
    return value.quantize(MONEY, rounding=ROUND_HALF_UP)


def generate_order_number(db: Session, attempts: int = 10) -> str:
    """'#' + last 6 digits of the millisecond clock + 2 random digits, unique."""
    for _ in range(attempts):
        millis = str(int(time.time() * 1000))[-6:]
        candidate = f"#{millis}{secrets.randbelow(100):02d}"
        if not db.query(Order.id).filter(Order.order_number == candidate).first():
            return candidate
    raise RuntimeError("Could not generate a unique order number")


def parse_date_range(
    date_from: Optional[str],
    date_to: Optional[str],
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Parse filter bounds; a date-only ``to`` runs through the end of that day.

    Returns (start, end_exclusive).
    """
    start = end = None
    try:
        if date_from:
            start = date_parser.isoparse(date_from)
            if start.tzinfo is None:
                start = start.replace(tzinfo=timezone.utc)
        if date_to:
            end = date_parser.isoparse(date_to)
            if end.tzinfo is None:
                end = end.replace(tzinfo=timezone.utc)
            if len(date_to) <= 10 or end.time() == dt_time(0, 0):
                end = end.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
            else:
                end = end + timedelta(microseconds=1)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Invalid date: {e}") from e
    return start, end


def serialize_order_item(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "menu_item_id": item.menu_item_id,
        "name": item.name,
        "name_en": item.name_en,
        "quantity": item.quantity,
        "unit_price": float(item.unit_price),
        "total_price": float(item.total_price),
        "customizations": item.customizations or [],
        "notes": item.notes,
        "department": item.department,
        "department_status": item.department_status,
        "estimated_prep_time": item.estimated_prep_time,
    }


def serialize_order(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "items": [serialize_order_item(i) for i in order.items],
        "subtotal": float(order.subtotal),
        "discount_amount": float(order.discount_amount),
        "tax_rate": float(order.tax_rate),
        "tax_amount": float(order.tax_amount),
        "include_tax_in_price": order.include_tax_in_price,
        "total_amount": float(order.total_amount),
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "customer_address": order.customer_address,
        "table_number": order.table_number,
        "source": order.source,
        "notes": order.notes,
        "whatsapp_message_id": order.whatsapp_message_id,
        "promotion_code": order.promotion_code,
        "status": order.status,
        "department_statuses": order.department_statuses or {},
        "assigned_to": order.assigned_to or {},
        "order_date": order.order_date.isoformat() if order.order_date else None,
        "delivery_date": order.delivery_date.isoformat() if order.delivery_date else None,
        "inventory_consumed": order.inventory_consumed,
        "inventory_restored": order.inventory_restored,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "updated_at": order.updated_at.isoformat() if order.updated_at else None,
    }


class OrderService:
    """Order placement and lifecycle."""

    def __init__(self, db: Session, user_id: Optional[int] = None):
        self.db = db
        self.user_id = user_id
        self.inventory = InventoryService(db, user_id=user_id)
        self.notifications = NotificationService(db)
        self.promotions = PromotionService(db)

    # ===== PLACEMENT =====

    def _build_lines(self, items: List[Dict[str, Any]]) -> List[OrderItem]:
        lines = []
        for raw in items:
            quantity = int(raw.get("quantity") or 0)
            if quantity < 1:
                raise OrderValidationError("Item quantity must be at least 1")

            menu_item_id = raw.get("menu_item_id")
            if menu_item_id is not None:
                menu_item = self.db.get(MenuItem, menu_item_id)
                if menu_item is None:
                    raise OrderValidationError(f"Menu item {menu_item_id} not found")
                if not menu_item.is_orderable:
                    raise OrderValidationError(f"'{menu_item.name}' is not available")
                try:
                    surcharge, labels = price_selections(menu_item, raw.get("modifiers"))
                except ModifierSelectionError as e:
                    raise OrderValidationError(str(e)) from e
                unit_price = money(menu_item.effective_price + surcharge)
                name, name_en = menu_item.name, menu_item.name_en
                department = menu_item.effective_department
                prep_time = menu_item.preparation_time
            else:
                if raw.get("modifiers"):
                    raise OrderValidationError("Modifiers can only be chosen for menu items")
                labels = []
                if not raw.get("name") or raw.get("unit_price") is None:
                    raise OrderValidationError("Items without a menu item need a name and unit_price")
                unit_price = money(raw["unit_price"])
                if unit_price < 0:
                    raise OrderValidationError("unit_price cannot be negative")
                name, name_en = raw["name"], raw.get("name_en")
                department = raw.get("department") or "kitchen"
                if department not in DEPARTMENTS:
                    raise OrderValidationError(f"Invalid department '{department}'")
                prep_time = raw.get("estimated_prep_time")

            lines.append(OrderItem(
                menu_item_id=menu_item_id,
                name=name,
                name_en=name_en,
                quantity=quantity,
                unit_price=unit_price,
                total_price=money(unit_price * quantity),
                customizations=labels + (raw.get("customizations") or []),
                notes=raw.get("notes"),
                department=department,
                department_status=DepartmentStatus.PENDING.value,
                estimated_prep_time=prep_time,
            ))
        return lines

    def price_order(
        self,
        lines: List[OrderItem],
        discount_amount=None,
        promotion_code: Optional[str] = None,
        tax_info: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Subtotal, discount, tax and total for a set of lines."""
        subtotal = money(sum((line.total_price for line in lines), Decimal("0")))

        promotion = None
        if promotion_code:
            cart = [
                {"menu_item_id": l.menu_item_id, "quantity": l.quantity, "unit_price": l.unit_price}
                for l in lines
            ]
            result = self.promotions.validate(promotion_code, subtotal, cart)
            discount = money(result["discount_amount"])
            promotion = self.promotions.get_by_code(promotion_code)
        else:
            discount = money(discount_amount or 0)
            if discount < 0:
                raise OrderValidationError("discount_amount cannot be negative")
        discount = min(discount, subtotal)

        tax_settings = get_tax_settings(self.db)
        if tax_info and tax_info.get("rate") is not None:
            rate = Decimal(str(tax_info["rate"]))
            inclusive = tax_info.get("include_tax_in_price", tax_settings.include_tax_in_price)
        elif tax_settings.enable_tax_handling:
            rate = Decimal(str(tax_settings.vat_rate))
            inclusive = tax_settings.include_tax_in_price
        else:
            rate = Decimal("0")
            inclusive = True

        if rate < 0 or rate > 100:
            raise OrderValidationError("Tax rate must be between 0 and 100")

        taxable = subtotal - discount
        if inclusive:
            tax = money(taxable - taxable / (1 + rate / Decimal("100")))
            total = taxable
        else:
            tax = money(taxable * rate / Decimal("100"))
            total = taxable + tax

        return {
            "subtotal": subtotal,
            "discount_amount": discount,
            "tax_rate": rate,
            "tax_amount": tax,
            "include_tax_in_price": bool(inclusive),
            "total_amount": money(total),
            "promotion": promotion,
        }

    def create_order(self, data: Dict[str, Any]) -> Order:
        """Place an order and consume its inventory.

        The caller commits; on any exception the caller rolls back so no
        order and no stock change survive.
        """
        items = data.get("items") or []
        if not items:
            raise OrderValidationError("Order items are required")
        if not (data.get("customer_name") or "").strip():
            raise OrderValidationError("Customer information is required")

        lines = self._build_lines(items)
        pricing = self.price_order(
            lines,
            discount_amount=data.get("discount_amount"),
            promotion_code=data.get("promotion_code"),
            tax_info=data.get("tax_info"),
        )

        total = pricing["total_amount"]
        client_total = data.get("total_amount")
        if client_total is not None:
            client_total = money(client_total)
            if abs(client_total - total) <= TOTAL_TOLERANCE:
                total = client_total
            else:
                logger.warning(
                    f"Client total {client_total} differs from computed {total}, using computed total"
                )
        if total <= 0:
            raise OrderValidationError("Order total must be greater than 0")

        order = Order(
            order_number=generate_order_number(self.db),
            subtotal=pricing["subtotal"],
            discount_amount=pricing["discount_amount"],
            tax_rate=pricing["tax_rate"],
            tax_amount=pricing["tax_amount"],
            include_tax_in_price=pricing["include_tax_in_price"],
            total_amount=total,
            customer_name=data["customer_name"].strip(),
            customer_phone=data.get("customer_phone"),
            customer_address=data.get("customer_address"),
            table_number=data.get("table_number"),
            source=data.get("source") or "website_whatsapp",
            notes=data.get("notes"),
            whatsapp_message_id=data.get("whatsapp_message_id"),
            promotion_code=pricing["promotion"].code if pricing["promotion"] else None,
            status=OrderStatus.PENDING.value,
            assigned_to={},
        )
        order.items = lines
        order.department_statuses = {dept: DepartmentStatus.PENDING.value for dept in order.departments}
        self.db.add(order)
        self.db.flush()

        self.inventory.consume_for_order(order)

        if pricing["promotion"] is not None:
            self.promotions.redeem(pricing["promotion"])

        self._announce_new_order(order)
        logger.info(f"Order {order.order_number} placed: {len(lines)} lines, total {total}")
        return order

    def _announce_new_order(self, order: Order) -> None:
        summary = {
            "id": order.id,
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "table_number": order.table_number,
            "total_amount": float(order.total_amount),
            "departments": order.departments,
        }
        channels = [Channel.ORDERS.value] + [
            department_channel(dept) for dept in order.departments if department_channel(dept)
        ]
        queue_event(self.db, EventType.NEW_ORDER.value, summary, channels)

        for dept in order.departments:
            dept_items = [i for i in order.items if i.department == dept]
            self.notifications.create(
                type=NotificationType.ORDER.value,
                title=f"New order {order.order_number}",
                message=", ".join(f"{i.quantity}x {i.name}" for i in dept_items),
                priority=NotificationPriority.HIGH.value,
                data={"order_id": order.id, "order_number": order.order_number},
                department=dept,
                action_required=True,
                target_roles=[dept, "admin", "manager"],
            )

    # ===== LIFECYCLE =====

    def update_status(self, order: Order, new_status: str) -> Order:
        """Move an order through its lifecycle.

        Raises:
            InvalidStatusTransition: unknown status or disallowed move.
        """
        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise InvalidStatusTransition(f"Invalid status '{new_status}'")

        current = OrderStatus(order.status)
        if target == current:
            return order
        if target not in ORDER_TRANSITIONS[current]:
            raise InvalidStatusTransition(
                f"Cannot change order status from {current.value} to {target.value}"
            )

        order.status = target.value
        if target == OrderStatus.DELIVERED:
            for item in order.items:
                item.department_status = DepartmentStatus.SERVED.value
            order.department_statuses = {dept: DepartmentStatus.SERVED.value for dept in order.departments}
            if order.delivery_date is None:
                order.delivery_date = datetime.now(timezone.utc)
        elif target == OrderStatus.CANCELLED:
            self.inventory.restore_for_order(order)

        self._announce_update(order)
        logger.info(f"Order {order.order_number} status {current.value} -> {target.value}")
        return order

    def update_department_status(
        self,
        order: Order,
        department: str,
        status: str,
        item_id: Optional[int] = None,
        assigned_to: Optional[str] = None,
    ) -> Order:
        """Advance one department's items and derive the order status from them."""
        if order.is_terminal:
            raise InvalidStatusTransition(f"Order is already {order.status}")
        if department not in DEPARTMENTS:
            raise OrderValidationError(f"Invalid department '{department}'")
        if status not in DEPARTMENT_STATUS_RANK:
            raise OrderValidationError(f"Invalid department status '{status}'")

        items = [
            i for i in order.items
            if i.department == department and (item_id is None or i.id == item_id)
        ]
        if not items:
            raise OrderValidationError(f"No {department} items on this order")
        for item in items:
            item.department_status = status

        dept_items = [i for i in order.items if i.department == department]
        least = min(dept_items, key=lambda i: DEPARTMENT_STATUS_RANK[i.department_status])
        order.department_statuses = {**(order.department_statuses or {}), department: least.department_status}

        if assigned_to:
            order.assigned_to = {**(order.assigned_to or {}), department: assigned_to}

        if status == DepartmentStatus.IN_PROGRESS.value and order.status == OrderStatus.CONFIRMED.value:
            order.status = OrderStatus.PREPARING.value

        ready_rank = DEPARTMENT_STATUS_RANK[DepartmentStatus.READY.value]
        all_ready = all(
            DEPARTMENT_STATUS_RANK.get(order.department_statuses.get(dept, "pending"), 0) >= ready_rank
            for dept in order.departments
        )
        if all_ready and order.status in (OrderStatus.CONFIRMED.value, OrderStatus.PREPARING.value):
            order.status = OrderStatus.READY.value

        self._announce_update(order, department=department)
        return order

    def _announce_update(self, order: Order, department: Optional[str] = None) -> None:
        data = {
            "id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "department_statuses": order.department_statuses or {},
        }
        channels = [Channel.ORDERS.value]
        for dept in ([department] if department else order.departments):
            if department_channel(dept):
                channels.append(department_channel(dept))
        queue_event(self.db, EventType.ORDER_UPDATE.value, data, channels)

    # ===== QUERIES =====

    def query_orders(
        self,
        status: Optional[str] = None,
        department: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        search: Optional[str] = None,
    ):
        query = self.db.query(Order)
        if status:
            query = query.filter(Order.status == status)
        if department:
            query = query.filter(Order.items.any(OrderItem.department == department))
        start, end = parse_date_range(date_from, date_to)
        if start:
            query = query.filter(Order.order_date >= start)
        if end:
            query = query.filter(Order.order_date < end)
        if search:
            pattern = like_pattern(search)
            query = query.filter(or_(
                Order.customer_name.ilike(pattern, escape="\\"),
                Order.customer_phone.ilike(pattern, escape="\\"),
                Order.order_number.ilike(pattern, escape="\\"),
            ))
        return query.order_by(Order.order_date.desc(), Order.id.desc())

    def department_queue(self, department: str) -> List[Order]:
        """Active orders with items for a department, oldest first."""
        active = (
            OrderStatus.PENDING.value,
            OrderStatus.CONFIRMED.value,
            OrderStatus.PREPARING.value,
            OrderStatus.READY.value,
        )
        return (
            self.db.query(Order)
            .filter(Order.status.in_(active), Order.items.any(OrderItem.department == department))
            .order_by(Order.order_date.asc(), Order.id.asc())
            .all()
        )
