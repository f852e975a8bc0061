# backend/stock_availability.py

"""
Stock Availability - remaining stock and pre-sale validation

check_availability is consulted by the caller BEFORE allocation: the
allocation engine itself never blocks a sale. Input-validation failures
(fractional counts of indivisible units, non-numeric input) are reported
separately from insufficient stock.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from batch_ordering import BatchOrdering
from pricing_models import (
    AvailabilityResult,
    AvailabilityStatus,
    ExpiringBatch,
    PricingError,
    Product,
    coerce_datetime,
    coerce_number,
)
from pricing_settings import PricingSettings, get_settings
from unit_system import UnitSystem

logger = logging.getLogger(__name__)


class StockAvailability:

    def __init__(
        self,
        settings: Optional[PricingSettings] = None,
        units: Optional[UnitSystem] = None,
        ordering: Optional[BatchOrdering] = None
    ):
        self.settings = settings or get_settings()
        self.units = units or UnitSystem(quantity_decimals=self.settings.quantity_decimals)
        self.ordering = ordering or BatchOrdering()

    def total_stock(self, product: Any) -> float:
        """
        Remaining stock in product units.

        Sums batch quantities (negative counts as 0); products without
        batches fall back to their own quantity/stock field.
        """
        product = Product.from_document(product)
        if product.batches:
            return sum(max(b.quantity, 0.0) for b in product.batches)
        if product.quantity is not None:
            return product.quantity
        if product.stock is not None:
            return product.stock
        return 0.0

    def check_availability(self, product: Any, quantity: Any, unit: Any) -> AvailabilityResult:
        product = Product.from_document(product)
        unit = self.units.normalize_unit(unit)
        total = self.total_stock(product)
        stock_display = self.units.format_quantity(
            self.units.from_product_units(total, product.unit, unit),
            unit
        )

        try:
            self.units.validate_quantity(quantity, unit, allow_zero=True)
        except PricingError as e:
            logger.info(f"Rejected quantity for product '{product.id}': {e.message}")
            return AvailabilityResult(
                available=False,
                stock_display=stock_display,
                status=AvailabilityStatus.INVALID_QUANTITY,
                total_stock=total,
                errors=[e.to_dict()]
            )

        # Compared unrounded, as allocation sees it
        requested_pu = self.units.to_product_units(coerce_number(quantity), unit, product.unit)
        available = requested_pu <= total

        return AvailabilityResult(
            available=available,
            stock_display=stock_display,
            status=AvailabilityStatus.AVAILABLE if available else AvailabilityStatus.INSUFFICIENT_STOCK,
            requested_quantity_in_product_units=requested_pu,
            total_stock=total
        )

    def is_low_stock(self, product: Any, threshold: Optional[float] = None) -> bool:
        if threshold is None:
            threshold = self.settings.low_stock_threshold
        return self.total_stock(product) <= threshold

    def expiring_batches(
        self,
        product: Any,
        within_days: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> List[ExpiringBatch]:
        """Batches with stock expiring within the window (expired ones included), FEFO ordered"""
        product = Product.from_document(product)
        if within_days is None:
            within_days = self.settings.expiry_alert_days
        now = coerce_datetime(now) or datetime.now(timezone.utc)
        threshold = now + timedelta(days=within_days)

        expiring = []
        for batch in self.ordering.order_available(product.batches, True):
            if batch.expiry is None or batch.expiry > threshold:
                continue
            expiring.append(ExpiringBatch(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                quantity=batch.quantity,
                expiry=batch.expiry,
                days_until_expiry=(batch.expiry.date() - now.date()).days,
                is_expired=batch.expiry < now
            ))
        return expiring
