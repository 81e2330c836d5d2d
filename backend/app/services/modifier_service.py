"""Modifier groups: definitions, serialization and pricing of customer picks."""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from app.models.menu import MenuItem
from app.models.modifier import Modifier, ModifierOption

logger = logging.getLogger(__name__)


class ModifierSelectionError(ValueError):
    """The modifiers picked for an order line break a group's rules."""


def build_options(options: List[Dict[str, Any]]) -> List[ModifierOption]:
    return [
        ModifierOption(
            name=opt["name"],
            name_en=opt.get("name_en"),
            price=opt.get("price") or Decimal("0"),
            is_default=bool(opt.get("is_default")),
            sort_order=index,
        )
        for index, opt in enumerate(options)
    ]


def serialize_option(option: ModifierOption) -> Dict[str, Any]:
    return {
        "id": option.id,
        "name": option.name,
        "name_en": option.name_en,
        "price": float(option.price),
        "is_default": option.is_default,
    }


def serialize_modifier(modifier: Modifier) -> Dict[str, Any]:
    return {
        "id": modifier.id,
        "name": modifier.name,
        "name_en": modifier.name_en,
        "description": modifier.description,
        "type": modifier.type,
        "required": modifier.required,
        "min_selections": modifier.min_selections,
        "max_selections": modifier.max_selections,
        "sort_order": modifier.sort_order,
        "is_active": modifier.is_active,
        "options": [serialize_option(o) for o in modifier.options],
        "created_at": modifier.created_at.isoformat() if modifier.created_at else None,
        "updated_at": modifier.updated_at.isoformat() if modifier.updated_at else None,
    }


def _check_count(modifier: Modifier, count: int) -> None:
    if modifier.max_selections and count > modifier.max_selections:
        raise ModifierSelectionError(
            f"'{modifier.name}' allows at most {modifier.max_selections} selection(s)"
        )
    if modifier.min_selections and 0 < count < modifier.min_selections:
        raise ModifierSelectionError(
            f"'{modifier.name}' needs at least {modifier.min_selections} selection(s)"
        )


def price_selections(
    menu_item: MenuItem,
    selections: Optional[List[Dict[str, Any]]],
) -> Tuple[Decimal, List[str]]:
    """Price the options picked for one portion of a menu item.

    Required groups left unpicked fall back to their default options.

    Returns:
        (surcharge per portion, "Group: Option" labels for the ticket)

    Raises:
        ModifierSelectionError: unknown group or option, too many or too
            few picks, or a required group without a pick or default.
    """
    groups = {m.id: m for m in menu_item.modifiers if m.is_active}
    chosen: Dict[int, List[ModifierOption]] = {}

    for selection in selections or []:
        modifier = groups.get(selection["modifier_id"])
        if modifier is None:
            raise ModifierSelectionError(
                f"Modifier {selection['modifier_id']} is not available for '{menu_item.name}'"
            )
        if modifier.id in chosen:
            raise ModifierSelectionError(f"'{modifier.name}' was selected more than once")

        option_ids = selection.get("option_ids") or []
        if len(set(option_ids)) != len(option_ids):
            raise ModifierSelectionError(f"Duplicate options for '{modifier.name}'")
        options = {o.id: o for o in modifier.options}
        picked = []
        for option_id in option_ids:
            if option_id not in options:
                raise ModifierSelectionError(f"Option {option_id} does not belong to '{modifier.name}'")
            picked.append(options[option_id])
        _check_count(modifier, len(picked))
        chosen[modifier.id] = picked

    for modifier in groups.values():
        if not modifier.required or chosen.get(modifier.id):
            continue
        defaults = modifier.default_options
        if not defaults:
            raise ModifierSelectionError(f"'{modifier.name}' requires a selection")
        _check_count(modifier, len(defaults))
        chosen[modifier.id] = defaults

    surcharge = Decimal("0")
    labels = []
    for modifier in sorted(groups.values(), key=lambda m: (m.sort_order, m.id)):
        for option in chosen.get(modifier.id, []):
            surcharge += option.price
            labels.append(f"{modifier.name}: {option.name}")
    return surcharge, labels
