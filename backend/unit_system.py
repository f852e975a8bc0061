# backend/unit_system.py

"""
Unit System - unit categories, base units and conversion factors

Responsibilities:
- Unit normalization via alias mapping (case-insensitive)
- Base unit resolution per category (weight → g, volume → ml, count → itself)
- Fixed-factor conversion to and from the base unit
- Whole-number rules for count-based units
- Display unit sets offered to the billing screen

Unknown units NEVER raise: a misrecorded unit must not block a sale, so
anything unrecognized is treated as a count unit with identity conversion.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict

from pricing_models import (
    FractionalCountQuantityError,
    InvalidQuantityError,
    NonPositiveQuantityError,
    PricingError,
    QuantityValidation,
    coerce_number,
)

logger = logging.getLogger(__name__)

# ==================== ENUMS ====================

class UnitCategory(str, Enum):
    WEIGHT = "weight"
    VOLUME = "volume"
    COUNT = "count"


# ==================== UNIT ALIAS MAPPING ====================

UNIT_ALIASES: Dict[str, str] = {
    # Weight
    "kg": "kg",
    "kgs": "kg",
    "kilo": "kg",
    "kilos": "kg",
    "kilogram": "kg",
    "kilograms": "kg",
    "g": "g",
    "gm": "g",
    "gms": "g",
    "gram": "g",
    "grams": "g",

    # Volume
    "l": "l",
    "ltr": "l",
    "litre": "l",
    "litres": "l",
    "liter": "l",
    "liters": "l",
    "ml": "ml",
    "millilitre": "ml",
    "millilitres": "ml",
    "milliliter": "ml",
    "milliliters": "ml",

    # Count
    "pcs": "pcs",
    "pc": "pcs",
    "piece": "pcs",
    "pieces": "pcs",
}

UNIT_CATEGORIES: Dict[str, UnitCategory] = {
    "kg": UnitCategory.WEIGHT,
    "g": UnitCategory.WEIGHT,
    "l": UnitCategory.VOLUME,
    "ml": UnitCategory.VOLUME,
}

CATEGORY_BASE_UNITS: Dict[UnitCategory, str] = {
    UnitCategory.WEIGHT: "g",
    UnitCategory.VOLUME: "ml",
}

# Multiplier from the unit to its category base unit
BASE_UNIT_FACTORS: Dict[str, float] = {
    "kg": 1000.0,
    "g": 1.0,
    "l": 1000.0,
    "ml": 1.0,
}

DISPLAY_UNITS: Dict[UnitCategory, List[str]] = {
    UnitCategory.WEIGHT: ["kg", "g"],
    UnitCategory.VOLUME: ["l", "ml"],
}

DEFAULT_UNIT = "pcs"


# ==================== DATA MODELS ====================

class BaseUnit(BaseModel):
    """Canonical base unit of a unit's category"""
    model_config = ConfigDict(frozen=True)

    category: UnitCategory
    unit: str


# ==================== UNIT SYSTEM ====================

class UnitSystem:
    """
    Stateless unit conversion helper.

    All conversions are multiplications by a fixed factor; count units
    (and anything unrecognized) convert with factor 1.
    """

    def __init__(self, quantity_decimals: int = 3):
        self.quantity_decimals = quantity_decimals

    def normalize_unit(self, unit: Any) -> str:
        """
        Normalize a unit string via the alias map.

        Unrecognized units pass through trimmed and lower-cased; empty input
        becomes the default count unit.
        """
        if unit is None:
            return DEFAULT_UNIT
        text = str(unit).strip().lower()
        if not text:
            return DEFAULT_UNIT
        normalized = UNIT_ALIASES.get(text)
        if normalized is None:
            logger.debug(f"Unit '{unit}' not in alias map, treating as count unit '{text}'")
            return text
        return normalized

    def category_for(self, unit: Any) -> UnitCategory:
        return UNIT_CATEGORIES.get(self.normalize_unit(unit), UnitCategory.COUNT)

    def base_unit_for(self, unit: Any) -> BaseUnit:
        normalized = self.normalize_unit(unit)
        category = UNIT_CATEGORIES.get(normalized, UnitCategory.COUNT)
        if category == UnitCategory.COUNT:
            return BaseUnit(category=category, unit=normalized)
        return BaseUnit(category=category, unit=CATEGORY_BASE_UNITS[category])

    def factor_for(self, unit: Any) -> float:
        return BASE_UNIT_FACTORS.get(self.normalize_unit(unit), 1.0)

    def to_base(self, value: Any, unit: Any) -> float:
        number = coerce_number(value)
        if number is None:
            return 0.0
        return number * self.factor_for(unit)

    def from_base(self, value: Any, unit: Any) -> float:
        number = coerce_number(value)
        if number is None:
            return 0.0
        return number / self.factor_for(unit)

    def to_product_units(self, value: Any, unit: Any, product_unit: Any) -> float:
        """Convert a quantity in `unit` into multiples of one `product_unit`"""
        product_unit_in_base = self.to_base(1, product_unit) or 1.0
        return self.to_base(value, unit) / product_unit_in_base

    def from_product_units(self, value: Any, product_unit: Any, unit: Any) -> float:
        return self.from_base(self.to_base(value, product_unit), unit)

    def is_count_based(self, unit: Any) -> bool:
        return self.category_for(unit) == UnitCategory.COUNT

    def is_decimal_allowed(self, unit: Any) -> bool:
        # Weight and volume units always accept decimals, base units included
        return not self.is_count_based(unit)

    def allowed_display_units(self, product_unit: Any) -> List[str]:
        category = self.category_for(product_unit)
        if category in DISPLAY_UNITS:
            return list(DISPLAY_UNITS[category])
        return [self.normalize_unit(product_unit)]

    def round_quantity(self, value: float, unit: Any) -> float:
        """Round a quantity to the precision the unit is entered with"""
        places = 0 if self.is_count_based(unit) else self.quantity_decimals
        rounded = Decimal(str(value)).quantize(Decimal(10) ** -places, rounding=ROUND_HALF_UP)
        return float(rounded)

    def validate_quantity(self, quantity: Any, unit: Any, allow_zero: bool = False) -> float:
        """
        Validate a quantity entered in `unit`.

        Raises:
            InvalidQuantityError: not a finite number
            NonPositiveQuantityError: negative, or zero when not allowed
            FractionalCountQuantityError: fractional count of an indivisible unit
        """
        number = coerce_number(quantity)
        if number is None:
            raise InvalidQuantityError(quantity)

        if number < 0 or (number == 0 and not allow_zero):
            raise NonPositiveQuantityError(number)

        normalized = self.normalize_unit(unit)
        if self.is_count_based(normalized):
            if not float(number).is_integer():
                raise FractionalCountQuantityError(number, normalized)
            return number

        return self.round_quantity(number, normalized)

    def validate_quantity_for_unit(self, quantity: Any, unit: Any, allow_zero: bool = False) -> QuantityValidation:
        """Non-raising variant for entry forms"""
        try:
            return QuantityValidation(valid=True, quantity=self.validate_quantity(quantity, unit, allow_zero))
        except PricingError as e:
            return QuantityValidation(valid=False, message=e.message, error_code=e.error_code)

    def format_quantity(self, value: Any, unit: Any) -> str:
        """Human-readable quantity, e.g. "12.5 kg" or "3 pcs" """
        normalized = self.normalize_unit(unit)
        number = coerce_number(value)
        if number is None:
            number = 0.0

        if self.is_count_based(normalized) and float(number).is_integer():
            text = str(int(number))
        else:
            rounded = Decimal(str(number)).quantize(
                Decimal(10) ** -self.quantity_decimals,
                rounding=ROUND_HALF_UP
            )
            text = format(rounded.normalize(), "f")
            if text == "-0":
                text = "0"
        return f"{text} {normalized}"
