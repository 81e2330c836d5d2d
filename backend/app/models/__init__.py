"""SQLAlchemy models."""

from app.models.user import User
from app.models.inventory import Material, StockMovement, MovementReason, MaterialStatus
from app.models.menu import Category, MenuItem, MenuItemIngredient, MenuItemStatus
from app.models.modifier import Modifier, ModifierOption, ModifierType
from app.models.review import MenuItemReview
from app.models.order import Order, OrderItem, OrderStatus, DepartmentStatus
from app.models.notification import Notification, NotificationType, NotificationPriority
from app.models.promotion import Offer, Promotion
from app.models.printer import Printer, PrintJob
from app.models.qr_code import QRCode, QRScan
from app.models.settings import TaxSettings, SiteSettings
from app.models.audit import AuditLogEntry

__all__ = [
    "User",
    "Material",
    "StockMovement",
    "MovementReason",
    "MaterialStatus",
    "Category",
    "MenuItem",
    "MenuItemIngredient",
    "MenuItemStatus",
    "Modifier",
    "ModifierOption",
    "ModifierType",
    "MenuItemReview",
    "Order",
    "OrderItem",
    "OrderStatus",
    "DepartmentStatus",
    "Notification",
    "NotificationType",
    "NotificationPriority",
    "Offer",
    "Promotion",
    "Printer",
    "PrintJob",
    "QRCode",
    "QRScan",
    "TaxSettings",
    "SiteSettings",
    "AuditLogEntry",
]
