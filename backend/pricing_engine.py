# backend/pricing_engine.py

"""
Pricing Engine - functional interface used by billing, reporting and
inventory collaborators.

Every function accepts either a Product snapshot or a raw product document
and is pure: the same snapshot always yields the same answer.
"""

from datetime import datetime
from typing import Any, List, Optional

from allocation_engine import AllocationEngine
from pricing_models import AllocationResult, AvailabilityResult, Product, SaleMode
from pricing_settings import PricingSettings, get_settings
from stock_availability import StockAvailability


class PricingEngine:
    """Bundles the components behind one settings object"""

    def __init__(self, settings: Optional[PricingSettings] = None):
        self.settings = settings or get_settings()
        self.allocation = AllocationEngine(settings=self.settings)
        self.units = self.allocation.units
        self.ordering = self.allocation.ordering
        self.prices = self.allocation.prices
        self.stock = StockAvailability(settings=self.settings, units=self.units, ordering=self.ordering)
        self.version = "1.0.0"


_engine: Optional[PricingEngine] = None


def get_engine() -> PricingEngine:
    global _engine
    if _engine is None:
        _engine = PricingEngine()
    return _engine


def effective_price(product: Any, mode: Any = SaleMode.RETAIL) -> float:
    return get_engine().prices.effective_price(Product.from_document(product), mode)


def effective_wholesale_moq(product: Any) -> float:
    return get_engine().prices.effective_wholesale_moq(Product.from_document(product))


def allocate_by_quantity(
    product: Any,
    quantity: Any,
    unit: Any,
    mode: Any = SaleMode.RETAIL,
    selected_batch_id: Optional[Any] = None,
    now: Optional[datetime] = None
) -> AllocationResult:
    return get_engine().allocation.allocate_quantity(product, quantity, unit, mode, selected_batch_id, now)


def allocate_by_amount(
    product: Any,
    amount: Any,
    unit: Any,
    mode: Any = SaleMode.RETAIL,
    selected_batch_id: Optional[Any] = None,
    now: Optional[datetime] = None
) -> float:
    return get_engine().allocation.allocate_amount(product, amount, unit, mode, selected_batch_id, now).quantity


def total_stock(product: Any) -> float:
    return get_engine().stock.total_stock(product)


def check_availability(product: Any, quantity: Any, unit: Any) -> AvailabilityResult:
    return get_engine().stock.check_availability(product, quantity, unit)


def to_base_unit(value: Any, unit: Any) -> float:
    return get_engine().units.to_base(value, unit)


def from_base_unit(value: Any, unit: Any) -> float:
    return get_engine().units.from_base(value, unit)


def allowed_display_units(product_unit: Any) -> List[str]:
    return get_engine().units.allowed_display_units(product_unit)
