"""Inventory Service - Material stock levels, the movement ledger and order consumption.

Every quantity change goes through ``apply_movement`` which:
1. Rejects changes that would drive stock below zero
2. Writes a StockMovement ledger row
3. Recomputes the material's derived status
4. Reacts to status transitions:
   - low stock / out of stock notifications (one open alert per kind)
   - disabling menu items whose required ingredient ran out
   - re-enabling them once every required ingredient is back

Order consumption aggregates every recipe line of every order line first,
validates the totals, then deducts inside a savepoint so an order either
consumes all of its ingredients or none of them.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.base import as_utc
from app.models.inventory import Material, MaterialStatus, MovementReason, StockMovement
from app.models.menu import MenuItem, MenuItemIngredient, MenuItemStatus
from app.models.notification import NotificationPriority, NotificationType
from app.models.order import Order
from app.services.notification_service import NotificationService
from app.services.units import UnitConversionError, are_compatible, convert, normalize_unit
from app.services.websocket_service import Channel, EventType, queue_event

logger = logging.getLogger(__name__)

QTY_PLACES = Decimal("0.001")
COST_PLACES = Decimal("0.0001")

# Movement reasons counted as consumption in usage statistics
USAGE_REASONS = (
    MovementReason.ORDER.value,
    MovementReason.MANUAL.value,
    MovementReason.WASTE.value,
)

STOCK_OPERATIONS = ("set", "add", "subtract")


class InsufficientStockError(Exception):
    """Raised when there's not enough stock for a deduction."""

    def __init__(self, material_name: str, material_id: int, available: Decimal, needed: Decimal, unit: str):
        self.material_name = material_name
        self.material_id = material_id
        self.available = available
        self.needed = needed
        self.unit = unit
        super().__init__(
            f"Insufficient stock for '{material_name}': need {needed} {unit}, have {available} {unit}"
        )


class InvalidStockOperation(ValueError):
    """Raised for an unknown stock operation or a negative quantity."""


def to_qty(value) -> Decimal:
    value = value if isinstance(value, Decimal) else Decimal(str(value))
    return value.quantize(QTY_PLACES)


def serialize_movement(m: StockMovement) -> Dict[str, Any]:
    return {
        "id": m.id,
        "material_id": m.material_id,
        "material_name": m.material.name if m.material else None,
        "qty_delta": float(m.qty_delta),
        "quantity": float(abs(m.qty_delta)),
        "unit": m.unit,
        "reason": m.reason,
        "usage_type": m.reason,
        "department": m.department,
        "ref_type": m.ref_type,
        "ref_id": m.ref_id,
        "notes": m.notes,
        "created_by": m.created_by,
        "ts": m.ts.isoformat() if m.ts else None,
    }


class InventoryService:
    """Stock changes, alerts and recipe-driven consumption."""

    def __init__(self, db: Session, user_id: Optional[int] = None):
        self.db = db
        self.user_id = user_id
        self.notifications = NotificationService(db)

    # ===== LEDGER =====

    def apply_movement(
        self,
        material: Material,
        qty_delta,
        reason: str,
        department: Optional[str] = None,
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> StockMovement:
        """Change a material's quantity and record it in the ledger.

        Raises:
            InsufficientStockError: when the change would leave negative stock.
        """
        delta = to_qty(qty_delta)
        current = to_qty(material.current_quantity or 0)
        new_qty = current + delta
        if new_qty < 0:
            raise InsufficientStockError(material.name, material.id, current, -delta, material.unit)

        old_status = material.status
        material.current_quantity = new_qty
        material.refresh_status()

        movement = StockMovement(
            material_id=material.id,
            qty_delta=delta,
            unit=material.unit,
            reason=reason,
            department=department,
            ref_type=ref_type,
            ref_id=ref_id,
            notes=notes,
            created_by=self.user_id,
        )
        self.db.add(movement)

        if reason == MovementReason.RESTOCK.value:
            material.last_restocked = datetime.now(timezone.utc)

        self.handle_status_change(material, old_status)
        return movement

    def handle_status_change(self, material: Material, old_status: Optional[str]) -> None:
        """React to a change of a material's derived status."""
        new_status = material.status
        if new_status == old_status:
            return

        logger.info(f"Material '{material.name}' status {old_status} -> {new_status}")

        if new_status == MaterialStatus.LOW_STOCK.value:
            self.notifications.create_inventory_alert(
                alert="low_stock",
                material_id=material.id,
                title=f"Inventory low stock: {material.name}",
                message=(
                    f"{material.name} is running low "
                    f"({float(material.current_quantity)} {material.unit} left)"
                ),
                priority=NotificationPriority.HIGH.value,
                data={"current_quantity": float(material.current_quantity), "unit": material.unit},
            )
            queue_event(self.db, EventType.LOW_STOCK.value, self._stock_event(material), [Channel.NOTIFICATIONS.value])
        elif new_status == MaterialStatus.OUT_OF_STOCK.value:
            self.notifications.create_inventory_alert(
                alert="out_of_stock",
                material_id=material.id,
                title=f"Inventory out of stock: {material.name}",
                message=f"{material.name} is out of stock",
                priority=NotificationPriority.URGENT.value,
                data={"current_quantity": float(material.current_quantity), "unit": material.unit},
            )
            queue_event(self.db, EventType.OUT_OF_STOCK.value, self._stock_event(material), [Channel.NOTIFICATIONS.value])
            self.disable_menu_items_for(material)
        else:
            self.notifications.resolve_inventory_alerts(material.id)

        if old_status == MaterialStatus.OUT_OF_STOCK.value and new_status != MaterialStatus.OUT_OF_STOCK.value:
            self.enable_menu_items_for(material)

    @staticmethod
    def _stock_event(material: Material) -> Dict[str, Any]:
        return {
            "material_id": material.id,
            "name": material.name,
            "current_quantity": float(material.current_quantity),
            "unit": material.unit,
            "status": material.status,
        }

    # ===== MENU AVAILABILITY =====

    def _items_using(self, material: Material) -> List[MenuItem]:
        return (
            self.db.query(MenuItem)
            .join(MenuItemIngredient, MenuItemIngredient.menu_item_id == MenuItem.id)
            .filter(
                MenuItemIngredient.material_id == material.id,
                MenuItemIngredient.required.is_(True),
            )
            .distinct()
            .all()
        )

    def disable_menu_items_for(self, material: Material) -> List[MenuItem]:
        disabled = []
        for item in self._items_using(material):
            if item.status != MenuItemStatus.ACTIVE.value:
                continue
            item.status = MenuItemStatus.OUT_OF_STOCK.value
            disabled.append(item)
            self.notifications.create(
                type=NotificationType.INVENTORY.value,
                title=f"Menu item disabled: {item.name}",
                message=f"{item.name} is unavailable because {material.name} is out of stock",
                priority=NotificationPriority.HIGH.value,
                data={"menu_item_id": item.id, "material_id": material.id, "action": "disabled"},
                department=item.effective_department,
                target_roles=["admin", "manager"],
            )
            logger.warning(f"Menu item '{item.name}' disabled: '{material.name}' out of stock")
        return disabled

    def enable_menu_items_for(self, material: Material) -> List[MenuItem]:
        enabled = []
        for item in self._items_using(material):
            if item.status != MenuItemStatus.OUT_OF_STOCK.value:
                continue
            if not self.required_ingredients_in_stock(item):
                continue
            item.status = MenuItemStatus.ACTIVE.value
            enabled.append(item)
            self.notifications.create(
                type=NotificationType.INVENTORY.value,
                title=f"Menu item enabled: {item.name}",
                message=f"{item.name} is available again",
                priority=NotificationPriority.LOW.value,
                data={"menu_item_id": item.id, "material_id": material.id, "action": "enabled"},
                department=item.effective_department,
                target_roles=["admin", "manager"],
            )
            logger.info(f"Menu item '{item.name}' re-enabled")
        return enabled

    @staticmethod
    def required_ingredients_in_stock(item: MenuItem) -> bool:
        return all(
            ing.material is not None and (ing.material.current_quantity or 0) > 0
            for ing in item.ingredients
            if ing.required
        )

    def evaluate_menu_item(self, item: MenuItem) -> str:
        """Set an item's availability from its recipe; inactive items are left alone."""
        if item.status == MenuItemStatus.INACTIVE.value:
            return item.status
        if self.required_ingredients_in_stock(item):
            item.status = MenuItemStatus.ACTIVE.value
        else:
            item.status = MenuItemStatus.OUT_OF_STOCK.value
        return item.status

    # ===== ORDER CONSUMPTION (ATOMIC) =====

    def _order_requirements(self, order: Order) -> List[Dict[str, Any]]:
        """Recipe needs of every order line, converted to material units."""
        needs = []
        for line in order.items:
            if not line.menu_item_id:
                continue
            menu_item = self.db.get(MenuItem, line.menu_item_id)
            if menu_item is None:
                logger.warning(f"Menu item {line.menu_item_id} not found for order {order.order_number}")
                continue
            for ing in menu_item.ingredients:
                material = ing.material
                total = Decimal(str(ing.portion)) * Decimal(line.quantity)
                needs.append({
                    "material": material,
                    "quantity": to_qty(convert(total, ing.unit, material.unit, material.name)),
                    "required": ing.required,
                    "department": line.department,
                    "menu_item": menu_item.name,
                    "line_quantity": line.quantity,
                })
        return needs

    def check_order_stock(self, order: Order) -> List[Dict[str, Any]]:
        """Shortages of required ingredients for an order (empty when it can be made)."""
        totals: Dict[int, Decimal] = defaultdict(Decimal)
        materials: Dict[int, Material] = {}
        for need in self._order_requirements(order):
            if not need["required"]:
                continue
            material = need["material"]
            totals[material.id] += need["quantity"]
            materials[material.id] = material

        shortages = []
        for material_id, needed in totals.items():
            material = materials[material_id]
            available = to_qty(material.current_quantity or 0)
            if available < needed:
                shortages.append({
                    "material_id": material_id,
                    "material_name": material.name,
                    "available": available,
                    "needed": needed,
                    "unit": material.unit,
                })
        return shortages

    def consume_for_order(self, order: Order) -> List[StockMovement]:
        """Deduct every recipe ingredient of an order, all or nothing.

        Raises:
            InsufficientStockError: when any required ingredient is short;
                nothing is deducted in that case.
            UnitConversionError: when a recipe unit cannot be converted.
        """
        if order.inventory_consumed:
            return []

        needs = self._order_requirements(order)
        shortages = self.check_order_stock(order)
        if shortages:
            first = shortages[0]
            raise InsufficientStockError(
                first["material_name"], first["material_id"], first["available"], first["needed"], first["unit"]
            )

        # Aggregate per material and department so each gets one ledger row
        grouped: Dict[Tuple[int, Optional[str], bool], Decimal] = defaultdict(Decimal)
        materials: Dict[int, Material] = {}
        for need in needs:
            material = need["material"]
            materials[material.id] = material
            grouped[(material.id, need["department"], need["required"])] += need["quantity"]

        movements = []
        savepoint = self.db.begin_nested()
        try:
            # Required ingredients first so optional ones only take what is left
            for (material_id, department, required), qty in sorted(grouped.items(), key=lambda kv: not kv[0][2]):
                material = materials[material_id]
                if not required and to_qty(material.current_quantity or 0) < qty:
                    logger.info(f"Skipping optional '{material.name}' for order {order.order_number}: not enough stock")
                    continue
                movements.append(self.apply_movement(
                    material,
                    -qty,
                    MovementReason.ORDER.value,
                    department=department,
                    ref_type="order",
                    ref_id=order.id,
                    notes=f"Order {order.order_number}",
                ))
            order.inventory_consumed = True
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            raise

        logger.info(f"Consumed inventory for order {order.order_number}: {len(movements)} movements")
        return movements

    def restore_for_order(self, order: Order) -> List[StockMovement]:
        """Reverse an order's consumption with refund movements, at most once."""
        if not order.inventory_consumed or order.inventory_restored:
            return []

        consumed = (
            self.db.query(StockMovement)
            .filter(
                StockMovement.ref_type == "order",
                StockMovement.ref_id == order.id,
                StockMovement.reason == MovementReason.ORDER.value,
            )
            .all()
        )
        refunds = []
        for movement in consumed:
            material = movement.material
            # The ledger row keeps the unit it was written in
            returned = convert(-movement.qty_delta, movement.unit, material.unit, material.name)
            refunds.append(self.apply_movement(
                material,
                returned,
                MovementReason.REFUND.value,
                department=movement.department,
                ref_type="order",
                ref_id=order.id,
                notes=f"Cancelled order {order.order_number}",
            ))
        order.inventory_restored = True
        logger.info(f"Restored inventory for order {order.order_number}: {len(refunds)} movements")
        return refunds

    # ===== MANUAL STOCK CHANGES =====

    def update_stock(
        self,
        material: Material,
        operation: str,
        quantity,
        reason: Optional[str] = None,
    ) -> Optional[StockMovement]:
        """Apply a set/add/subtract operation; returns the movement (None when unchanged)."""
        if operation not in STOCK_OPERATIONS:
            raise InvalidStockOperation(f"Invalid operation '{operation}'. Use one of: {', '.join(STOCK_OPERATIONS)}")
        quantity = to_qty(quantity)
        if quantity < 0:
            raise InvalidStockOperation("Quantity cannot be negative")

        current = to_qty(material.current_quantity or 0)
        if operation == "set":
            delta = quantity - current
        elif operation == "add":
            delta = quantity
        else:
            delta = -quantity

        if delta == 0:
            return None

        movement_reason = MovementReason.RESTOCK.value if delta > 0 else MovementReason.ADJUSTMENT.value
        movement = self.apply_movement(material, delta, movement_reason, notes=reason)

        if delta > 0:
            self.notifications.create(
                type=NotificationType.INVENTORY.value,
                title=f"Inventory restocked: {material.name}",
                message=f"{material.name} restocked by {float(delta)} {material.unit}",
                priority=NotificationPriority.LOW.value,
                data={"material_id": material.id, "alert": "restock", "quantity_added": float(delta)},
                department="admin",
                target_roles=["admin", "manager"],
            )
        return movement

    def bulk_update(self, updates: List[Dict[str, Any]]) -> int:
        """Apply several stock operations; any failure undoes all of them.

        Raises:
            LookupError: for an unknown material id.
        """
        savepoint = self.db.begin_nested()
        try:
            for update in updates:
                material = self.db.get(Material, update["id"])
                if material is None:
                    raise LookupError(f"Material {update['id']} not found")
                self.update_stock(material, update["operation"], update["quantity"], update.get("reason"))
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            raise
        return len(updates)

    def record_usage(
        self,
        material: Material,
        quantity,
        unit: Optional[str] = None,
        usage_type: str = MovementReason.MANUAL.value,
        department: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> StockMovement:
        """Record manual usage or waste, converting into the material's unit."""
        qty = Decimal(str(quantity))
        if unit and normalize_unit(unit) != normalize_unit(material.unit):
            qty = convert(qty, unit, material.unit, material.name)
        return self.apply_movement(
            material,
            -to_qty(qty),
            usage_type,
            department=department,
            ref_type="manual",
            notes=notes,
        )

    def set_quantity_from_edit(self, material: Material, new_quantity, notes: Optional[str] = None):
        """A quantity changed through the material form is logged as an adjustment."""
        delta = to_qty(new_quantity) - to_qty(material.current_quantity or 0)
        if delta == 0:
            return None
        return self.apply_movement(
            material, delta, MovementReason.ADJUSTMENT.value, notes=notes or "Edited quantity"
        )

    def change_unit(self, material: Material, new_unit: str) -> None:
        """Switch a material to another unit of the same kind, rescaling its stock.

        Quantity and limits are converted into the new unit and the unit
        cost is scaled the other way, so the stock value is unchanged.

        Raises:
            UnitConversionError: when the new unit belongs to another
                category than the current unit or a recipe line using it.
        """
        old_unit = material.unit
        if normalize_unit(new_unit) == normalize_unit(old_unit):
            material.unit = normalize_unit(new_unit)
            return

        recipe_units = {
            unit for (unit,) in self.db.query(MenuItemIngredient.unit)
            .filter(MenuItemIngredient.material_id == material.id)
            .distinct()
        }
        for unit in sorted(recipe_units):
            if not are_compatible(unit, new_unit):
                raise UnitConversionError(unit, new_unit, material.name)

        material.current_quantity = to_qty(convert(material.current_quantity or 0, old_unit, new_unit, material.name))
        material.min_limit = to_qty(convert(material.min_limit or 0, old_unit, new_unit, material.name))
        material.alert_limit = to_qty(convert(material.alert_limit or 0, old_unit, new_unit, material.name))
        per_new_unit = convert(1, new_unit, old_unit, material.name)
        material.cost_per_unit = (Decimal(str(material.cost_per_unit or 0)) * per_new_unit).quantize(COST_PLACES)
        material.unit = normalize_unit(new_unit)
        logger.info(f"Material '{material.name}' unit changed from {old_unit} to {material.unit}")

    def recheck_status(self, material: Material) -> None:
        """Re-derive status after threshold edits."""
        old_status = material.status
        material.refresh_status()
        self.handle_status_change(material, old_status)

    # ===== QUERIES =====

    def usage_stats(self, material: Material, days: int = 30) -> Dict[str, Any]:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        total, count = (
            self.db.query(func.coalesce(func.sum(-StockMovement.qty_delta), 0), func.count(StockMovement.id))
            .filter(
                StockMovement.material_id == material.id,
                StockMovement.reason.in_(USAGE_REASONS),
                StockMovement.ts >= since,
            )
            .one()
        )
        total_used = float(total or 0)
        return {
            "period_days": days,
            "total_used": round(total_used, 3),
            "average_daily_usage": round(total_used / days, 3) if days else 0.0,
            "usage_count": int(count or 0),
        }

    def recent_movements(self, material: Material, limit: int = 20) -> List[StockMovement]:
        return (
            self.db.query(StockMovement)
            .filter(StockMovement.material_id == material.id)
            .order_by(StockMovement.ts.desc(), StockMovement.id.desc())
            .limit(limit)
            .all()
        )

    def get_alerts(self) -> Dict[str, Any]:
        """Current stock and expiry alerts, critical first."""
        alerts: List[Dict[str, Any]] = []
        materials = self.db.query(Material).filter(Material.is_active.is_(True)).all()
        now = datetime.now(timezone.utc)
        horizon = now + timedelta(days=settings.expiry_warning_days)

        for m in materials:
            qty = float(m.current_quantity or 0)
            if m.status == MaterialStatus.OUT_OF_STOCK.value:
                alerts.append({
                    "type": "out_of_stock",
                    "severity": "critical",
                    "material_id": m.id,
                    "material_name": m.name,
                    "current_quantity": qty,
                    "unit": m.unit,
                    "message": f"{m.name} is out of stock",
                })
            elif m.status == MaterialStatus.LOW_STOCK.value:
                alerts.append({
                    "type": "low_stock",
                    "severity": "warning",
                    "material_id": m.id,
                    "material_name": m.name,
                    "current_quantity": qty,
                    "alert_limit": float(m.alert_limit or 0),
                    "min_limit": float(m.min_limit or 0),
                    "unit": m.unit,
                    "message": f"{m.name} is low on stock ({qty} {m.unit})",
                })

            expiry = as_utc(m.expiry_date)
            if expiry is not None and expiry <= horizon:
                days_left = (expiry - now).days
                expired = expiry <= now
                alerts.append({
                    "type": "expired" if expired else "expiring_soon",
                    "severity": "critical" if expired else "warning",
                    "material_id": m.id,
                    "material_name": m.name,
                    "expiry_date": expiry.isoformat(),
                    "days_remaining": days_left,
                    "message": f"{m.name} has expired" if expired else f"{m.name} expires in {days_left} days",
                })

        severity_order = {"critical": 0, "warning": 1, "info": 2}
        alerts.sort(key=lambda a: severity_order.get(a["severity"], 99))
        return {
            "alerts": alerts,
            "total": len(alerts),
            "critical": len([a for a in alerts if a["severity"] == "critical"]),
            "warnings": len([a for a in alerts if a["severity"] == "warning"]),
        }
