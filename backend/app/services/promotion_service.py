"""Promotion and offer rules: creation checks, checkout validation and discounts."""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.db.base import as_utc
from app.models.menu import MenuItem
from app.models.promotion import DiscountType, Offer, OfferStatus, Promotion, PromotionType

logger = logging.getLogger(__name__)

MONEY = Decimal("0.01")


class PromotionValidationError(ValueError):
    """A promotion cannot be created or applied."""


class PromotionNotFoundError(LookupError):
    """No promotion exists for the given code."""


def money(value) -> Decimal:
    value = value if isinstance(value, Decimal) else Decimal(str(value))
    return value.quantize(MONEY, rounding=ROUND_HALF_UP)


def check_promotion_rules(data: Dict[str, Any]) -> None:
    """Validate a promotion definition.

    Raises:
        PromotionValidationError: describing the first broken rule.
    """
    promo_type = data.get("type")
    if promo_type == PromotionType.DISCOUNT_CODE.value:
        if not data.get("code"):
            raise PromotionValidationError("Discount code promotions require a code")
        if data.get("discount_type") not in (DiscountType.PERCENT.value, DiscountType.FIXED.value):
            raise PromotionValidationError("Discount code promotions require discount_type 'percent' or 'fixed'")
        value = Decimal(str(data.get("value") or 0))
        if value <= 0:
            raise PromotionValidationError("Discount value must be greater than 0")
        if data["discount_type"] == DiscountType.PERCENT.value and value > 100:
            raise PromotionValidationError("Percentage discount cannot exceed 100")
    elif promo_type == PromotionType.BUY_X_GET_Y.value:
        if not data.get("buy_qty") or data["buy_qty"] < 1:
            raise PromotionValidationError("buy_qty must be at least 1")
        if not data.get("get_qty") or data["get_qty"] < 1:
            raise PromotionValidationError("get_qty must be at least 1")
        if not data.get("applicable_items") and not data.get("applicable_categories"):
            raise PromotionValidationError("Buy X get Y promotions need at least one applicable item or category")
    else:
        raise PromotionValidationError(f"Unknown promotion type '{promo_type}'")

    start, end = as_utc(data.get("start_date")), as_utc(data.get("end_date"))
    if start is None or end is None:
        raise PromotionValidationError("start_date and end_date are required")
    if start >= end:
        raise PromotionValidationError("start_date must be before end_date")


class PromotionService:
    """Checkout-time promotion handling."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_code(self, code: str) -> Optional[Promotion]:
        return self.db.query(Promotion).filter(Promotion.code == code.strip().upper()).first()

    def ensure_applicable(self, promotion: Promotion, cart_total: Decimal) -> None:
        now = datetime.now(timezone.utc)
        if not promotion.is_active:
            raise PromotionValidationError("Promotion is not active")
        if as_utc(promotion.start_date) > now:
            raise PromotionValidationError("Promotion is not yet valid")
        if as_utc(promotion.end_date) < now:
            raise PromotionValidationError("Promotion has expired")
        if promotion.usage_exhausted:
            raise PromotionValidationError("Promotion usage limit reached")
        minimum = Decimal(str(promotion.min_purchase_amount or 0))
        if cart_total < minimum:
            raise PromotionValidationError(f"Minimum purchase of {float(minimum):.2f} required")

    def _line_applies(self, promotion: Promotion, line: Dict[str, Any]) -> bool:
        item_id = line.get("menu_item_id")
        if item_id is not None and item_id in (promotion.applicable_items or []):
            return True
        category_id = line.get("category_id")
        if category_id is None and item_id is not None:
            menu_item = self.db.get(MenuItem, item_id)
            category_id = menu_item.category_id if menu_item else None
        return category_id is not None and category_id in (promotion.applicable_categories or [])

    def calculate_discount(
        self,
        promotion: Promotion,
        cart_total: Decimal,
        items: Optional[List[Dict[str, Any]]] = None,
    ) -> Decimal:
        """Discount for a cart, never more than the cart total."""
        if promotion.type == PromotionType.BUY_X_GET_Y.value:
            group = (promotion.buy_qty or 0) + (promotion.get_qty or 0)
            discount = Decimal("0")
            for line in items or []:
                if group <= 0 or not self._line_applies(promotion, line):
                    continue
                quantity = int(line.get("quantity") or 0)
                free_units = (quantity // group) * (promotion.get_qty or 0)
                discount += Decimal(str(line.get("unit_price") or 0)) * free_units
        elif promotion.discount_type == DiscountType.PERCENT.value:
            discount = cart_total * Decimal(str(promotion.value)) / Decimal("100")
        else:
            discount = Decimal(str(promotion.value))

        return money(min(discount, cart_total))

    def validate(
        self,
        code: str,
        cart_total,
        items: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """Check a code against a cart.

        Raises:
            PromotionNotFoundError: unknown code.
            PromotionValidationError: the promotion cannot be applied.
        """
        cart_total = money(cart_total)
        promotion = self.get_by_code(code)
        if promotion is None:
            raise PromotionNotFoundError("Promotion code not found")
        self.ensure_applicable(promotion, cart_total)

        discount = self.calculate_discount(promotion, cart_total, items)
        return {
            "valid": True,
            "promotion_id": promotion.id,
            "code": promotion.code,
            "name": promotion.name,
            "type": promotion.type,
            "discount_type": promotion.discount_type,
            "discount_amount": float(discount),
            "original_total": float(cart_total),
            "final_total": float(cart_total - discount),
        }

    def redeem(self, promotion: Promotion) -> None:
        """Count one use; callers must have validated the promotion first."""
        if promotion.usage_exhausted:
            raise PromotionValidationError("Promotion usage limit reached")
        promotion.usage_count = (promotion.usage_count or 0) + 1
        logger.info(f"Promotion {promotion.code} redeemed ({promotion.usage_count} uses)")


def refresh_offer_status(offer: Offer, now: Optional[datetime] = None) -> str:
    """Mark an offer expired once its end date has passed."""
    now = now or datetime.now(timezone.utc)
    end = as_utc(offer.end_date)
    if end is not None and end < now and offer.status != OfferStatus.EXPIRED.value:
        offer.status = OfferStatus.EXPIRED.value
    return offer.status


def active_offers_query(db: Session):
    """Offers valid right now."""
    now = datetime.now(timezone.utc)
    return db.query(Offer).filter(
        Offer.status == OfferStatus.ACTIVE.value,
        or_(Offer.start_date.is_(None), Offer.start_date <= now),
        or_(Offer.end_date.is_(None), Offer.end_date >= now),
    )
