"""Singleton settings rows (tax and site theme), created on first access."""

import logging
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.settings import DEFAULT_CONTACT, DEFAULT_THEME, SiteSettings, TaxSettings

logger = logging.getLogger(__name__)


def get_tax_settings(db: Session) -> TaxSettings:
    tax = db.query(TaxSettings).order_by(TaxSettings.id).first()
    if tax is None:
        tax = TaxSettings(vat_rate=Decimal(str(settings.default_tax_rate)))
        db.add(tax)
        db.flush()
        logger.info("Created default tax settings")
    return tax


def get_site_settings(db: Session) -> SiteSettings:
    site = db.query(SiteSettings).order_by(SiteSettings.id).first()
    if site is None:
        site = SiteSettings(restaurant_name=settings.restaurant_name)
        db.add(site)
        db.flush()
        logger.info("Created default site settings")
    return site


def reset_site_settings(db: Session) -> SiteSettings:
    site = get_site_settings(db)
    site.restaurant_name = settings.restaurant_name
    site.logo_url = None
    site.logo_position = "center"
    site.layout_template = "classic"
    site.theme = dict(DEFAULT_THEME)
    site.contact = dict(DEFAULT_CONTACT)
    return site


def serialize_tax_settings(tax: TaxSettings) -> Dict[str, Any]:
    return {
        "enable_tax_handling": tax.enable_tax_handling,
        "tax_type": tax.tax_type,
        "vat_rate": float(tax.vat_rate),
        "include_tax_in_price": tax.include_tax_in_price,
        "tax_number": tax.tax_number,
        "company_name": tax.company_name,
        "compliance_mode": tax.compliance_mode,
        "display_tax_breakdown": tax.display_tax_breakdown,
        "updated_at": tax.updated_at.isoformat() if tax.updated_at else None,
    }


def serialize_site_settings(site: SiteSettings) -> Dict[str, Any]:
    return {
        "restaurant_name": site.restaurant_name,
        "logo_url": site.logo_url,
        "logo_position": site.logo_position,
        "layout_template": site.layout_template,
        "theme": {**DEFAULT_THEME, **(site.theme or {})},
        "contact": {**DEFAULT_CONTACT, **(site.contact or {})},
        "updated_at": site.updated_at.isoformat() if site.updated_at else None,
    }
