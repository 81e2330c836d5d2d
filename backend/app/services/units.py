"""Unit conversion for recipe portions and stock quantities.

Every unit belongs to one category (weight, volume, count) and carries a
factor to the category's base unit (g, ml, piece). Conversions are only
possible inside a category.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# Unit conversion factors (convert TO base unit)
UNIT_CONVERSIONS: Dict[str, Dict[str, Decimal]] = {
    # Weight: base unit = g
    "weight": {
        "g": Decimal("1"),
        "kg": Decimal("1000"),
        "mg": Decimal("0.001"),
        "lb": Decimal("453.592"),
        "oz": Decimal("28.3495"),
    },
    # Volume: base unit = ml
    "volume": {
        "ml": Decimal("1"),
        "l": Decimal("1000"),
        "cup": Decimal("240"),
        "tbsp": Decimal("15"),
        "tsp": Decimal("5"),
    },
    # Count: base unit = piece
    "count": {
        "piece": Decimal("1"),
        "unit": Decimal("1"),
        "dozen": Decimal("12"),
        "serving": Decimal("1"),
        "portion": Decimal("1"),
    },
}

UNIT_ALIASES = {
    "gram": "g",
    "grams": "g",
    "gr": "g",
    "kilogram": "kg",
    "kilograms": "kg",
    "kilo": "kg",
    "milligram": "mg",
    "lbs": "lb",
    "pound": "lb",
    "ounce": "oz",
    "liter": "l",
    "liters": "l",
    "litre": "l",
    "litres": "l",
    "milliliter": "ml",
    "millilitre": "ml",
    "cups": "cup",
    "tablespoon": "tbsp",
    "teaspoon": "tsp",
    "pcs": "piece",
    "pc": "piece",
    "pieces": "piece",
    "ea": "piece",
    "each": "piece",
    "units": "unit",
    "servings": "serving",
    "portions": "portion",
}

_CATEGORY_BY_UNIT = {
    unit: category
    for category, units in UNIT_CONVERSIONS.items()
    for unit in units
}


class UnitConversionError(Exception):
    """Raised when unit conversion between incompatible types is attempted."""

    def __init__(self, from_unit: str, to_unit: str, material_name: str = ""):
        self.from_unit = from_unit
        self.to_unit = to_unit
        self.material_name = material_name
        target = f" for '{material_name}'" if material_name else ""
        super().__init__(f"Cannot convert '{from_unit}' to '{to_unit}'{target}")


def normalize_unit(unit: str) -> str:
    """Lower-case a unit and resolve common aliases to the canonical name."""
    unit = (unit or "").strip().lower()
    return UNIT_ALIASES.get(unit, unit)


def get_unit_category(unit: str) -> Optional[str]:
    """Category of a unit (weight, volume, count), or None when unknown."""
    return _CATEGORY_BY_UNIT.get(normalize_unit(unit))


def is_known_unit(unit: str) -> bool:
    return get_unit_category(unit) is not None


def are_compatible(first: str, second: str) -> bool:
    if normalize_unit(first) == normalize_unit(second):
        return True
    category = get_unit_category(first)
    return category is not None and category == get_unit_category(second)


def convert(quantity, from_unit: str, to_unit: str, material_name: str = "") -> Decimal:
    """Convert a quantity between units of the same category.

    Raises:
        UnitConversionError: when the units belong to different categories
            or either unit is unknown.
    """
    quantity = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
    source = normalize_unit(from_unit)
    target = normalize_unit(to_unit)

    if source == target:
        return quantity

    category = get_unit_category(source)
    if category is None or category != get_unit_category(target):
        raise UnitConversionError(from_unit, to_unit, material_name)

    factors = UNIT_CONVERSIONS[category]
    base_qty = quantity * factors[source]
    return (base_qty / factors[target]).quantize(Decimal("0.0001"))


def list_units() -> List[Dict[str, object]]:
    """Units grouped by category, base unit first."""
    grouped = []
    for category, factors in UNIT_CONVERSIONS.items():
        base = next(unit for unit, factor in factors.items() if factor == 1)
        grouped.append({
            "category": category,
            "base_unit": base,
            "units": [
                {"unit": unit, "factor": float(factor)}
                for unit, factor in factors.items()
            ],
        })
    return grouped
