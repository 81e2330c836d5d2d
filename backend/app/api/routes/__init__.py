"""API routes."""

from fastapi import APIRouter

from app.api.routes import (
    admin_reviews,
    audit_logs,
    auth,
    categories,
    materials,
    menu_items,
    modifiers,
    notifications,
    offers,
    orders,
    print_jobs,
    printers,
    promotions,
    qrcodes,
    reports,
    settings,
    staff,
    units,
)

api_router = APIRouter()

# Auth and staff
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(staff.router, prefix="/staff", tags=["staff"])

# Catalog
api_router.include_router(categories.router, prefix="/categories", tags=["menu"])
api_router.include_router(menu_items.router, prefix="/menu-items", tags=["menu"])
api_router.include_router(modifiers.router, prefix="/modifiers", tags=["menu"])

# Inventory
api_router.include_router(units.router, prefix="/units", tags=["inventory"])
api_router.include_router(materials.router, prefix="/materials", tags=["inventory"])

# Ordering
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(offers.router, prefix="/offers", tags=["offers"])
api_router.include_router(promotions.router, prefix="/promotions", tags=["promotions"])

# Operations
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(printers.router, prefix="/printers", tags=["printers"])
api_router.include_router(print_jobs.router, prefix="/print-jobs", tags=["printers"])
api_router.include_router(qrcodes.router, prefix="/qrcodes", tags=["qr-codes"])
api_router.include_router(reports.router, prefix="/reports", tags=["reports"])

# Settings are mounted without a prefix: /tax-settings, /site-settings
api_router.include_router(settings.router, tags=["settings"])

# Admin
api_router.include_router(audit_logs.router, prefix="/audit-logs", tags=["audit"])
api_router.include_router(admin_reviews.router, prefix="/admin/menu-item-reviews", tags=["reviews"])
