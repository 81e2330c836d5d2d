"""Tax and site settings routes."""

import logging

from fastapi import APIRouter, Request

from app.core.rate_limit import limiter
from app.core.rbac import RequireAdmin
from app.db.session import DbSession
from app.schemas.settings import SiteSettingsUpdate, TaxSettingsUpdate
from app.services.settings_service import (
    get_site_settings,
    get_tax_settings,
    reset_site_settings,
    serialize_site_settings,
    serialize_tax_settings,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/tax-settings")
@limiter.limit("120/minute")
def read_tax_settings(request: Request, db: DbSession):
    tax = get_tax_settings(db)
    db.commit()
    return serialize_tax_settings(tax)


@router.put("/tax-settings")
@limiter.limit("30/minute")
def update_tax_settings(request: Request, data: TaxSettingsUpdate, db: DbSession, current_user: RequireAdmin):
    tax = get_tax_settings(db)
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is None and field not in ("tax_number", "company_name"):
            continue
        setattr(tax, field, value)
    db.commit()
    db.refresh(tax)
    logger.info(f"Tax settings updated by {current_user.username}")
    return serialize_tax_settings(tax)


@router.get("/site-settings")
@limiter.limit("120/minute")
def read_site_settings(request: Request, db: DbSession):
    """Public theme, branding and contact details."""
    site = get_site_settings(db)
    db.commit()
    return serialize_site_settings(site)


@router.put("/site-settings")
@limiter.limit("30/minute")
def update_site_settings(request: Request, data: SiteSettingsUpdate, db: DbSession, current_user: RequireAdmin):
    site = get_site_settings(db)
    updates = data.model_dump(exclude_unset=True)

    theme = updates.pop("theme", None)
    if theme:
        site.theme = {**(site.theme or {}), **{k: v for k, v in theme.items() if v is not None}}
    contact = updates.pop("contact", None)
    if contact:
        site.contact = {**(site.contact or {}), **{k: v for k, v in contact.items() if v is not None}}
    for field, value in updates.items():
        if value is None and field != "logo_url":
            continue
        setattr(site, field, value)

    db.commit()
    db.refresh(site)
    logger.info(f"Site settings updated by {current_user.username}")
    return serialize_site_settings(site)


@router.post("/site-settings/reset")
@limiter.limit("10/minute")
def reset_site(request: Request, db: DbSession, current_user: RequireAdmin):
    site = reset_site_settings(db)
    db.commit()
    db.refresh(site)
    logger.info(f"Site settings reset to defaults by {current_user.username}")
    return serialize_site_settings(site)
