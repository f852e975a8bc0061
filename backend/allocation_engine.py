# backend/allocation_engine.py

"""
Allocation Engine - batch-aware pricing of a sale

Two dual operations share one consumption strategy:
- allocate_quantity: requested quantity → selling/cost totals + batch draws
- allocate_amount: money the customer wants to spend → quantity it buys

Consumption order:
- explicit batch selection: that batch only (its stock is not pre-filtered)
- wholesale: FEFO over batches with stock, whatever the product tracks
- retail: the product's own policy (FIFO or FEFO) over all batches

This engine MUST NOT:
- Mutate batch quantities (it only advises draws)
- Block a sale (oversold remainders are priced at product defaults)
- Raise on malformed numeric input (zero-valued results instead)

Totals are floored to the cent, never rounded up.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from batch_ordering import BatchOrdering
from price_resolver import PriceResolver
from pricing_models import (
    AllocationResult,
    AmountAllocationResult,
    Batch,
    BatchDraw,
    Product,
    SaleMode,
    coerce_datetime,
    coerce_number,
)
from pricing_settings import PricingSettings, get_settings
from unit_system import UnitSystem

logger = logging.getLogger(__name__)

# Remainders below this are float noise from repeated subtraction
QUANTITY_EPSILON = 1e-9
AMOUNT_EPSILON = 1e-9


def floor_to_cent(value: float) -> float:
    """
    Floor a money value to 2 decimal places: floor(x * 100) / 100.

    Applied literally on floats, so 0.29 floors to 0.28.
    """
    return math.floor(float(value) * 100) / 100


class AllocationEngine:
    """
    Stateless allocation engine.

    Identical snapshots (and an identical `now`) always produce identical
    draws and totals: ordering is a stable sort and nothing is cached.
    """

    def __init__(
        self,
        settings: Optional[PricingSettings] = None,
        units: Optional[UnitSystem] = None,
        ordering: Optional[BatchOrdering] = None,
        prices: Optional[PriceResolver] = None
    ):
        self.settings = settings or get_settings()
        self.units = units or UnitSystem(quantity_decimals=self.settings.quantity_decimals)
        self.ordering = ordering or BatchOrdering()
        self.prices = prices or PriceResolver(settings=self.settings, ordering=self.ordering)

    # ==================== CONSUMPTION ORDER ====================

    def consumption_order(
        self,
        product: Product,
        mode: SaleMode,
        selected_batch_id: Optional[Any] = None
    ) -> List[Batch]:
        if selected_batch_id is not None and str(selected_batch_id).strip():
            wanted = str(selected_batch_id).strip()
            selected = [b for b in product.batches if b.id == wanted]
            if not selected:
                logger.warning(
                    f"Selected batch '{wanted}' not found on product '{product.id}', "
                    f"pricing at product defaults"
                )
            return selected[:1]

        if mode == SaleMode.WHOLESALE:
            # Wholesale always clears soon-to-expire stock first
            return self.ordering.order_available(product.batches, True)

        return self.ordering.order(product.batches, product.track_expiry)

    # ==================== QUANTITY → MONEY ====================

    def allocate_quantity(
        self,
        product: Any,
        quantity: Any,
        unit: Any,
        mode: Any = SaleMode.RETAIL,
        selected_batch_id: Optional[Any] = None,
        now: Optional[datetime] = None
    ) -> AllocationResult:
        """
        Price a requested quantity against the product's batches.

        Args:
            product: Product snapshot or product document
            quantity: requested quantity in `unit`
            unit: unit the customer transacts in
            mode: retail or wholesale
            selected_batch_id: restrict consumption to one batch
            now: clock for the near-expiry gate

        Returns:
            AllocationResult (zero-valued for zero, negative or invalid quantity)
        """
        product = Product.from_document(product)
        mode = SaleMode.coerce(mode)
        unit = self.units.normalize_unit(unit)
        now = coerce_datetime(now) or datetime.now(timezone.utc)

        requested = coerce_number(quantity)
        if requested is None or requested <= 0:
            return AllocationResult(requested_unit=unit, sale_mode=mode)

        quantity_pu = self.units.to_product_units(requested, unit, product.unit)
        moq_met = quantity_pu >= self.prices.effective_wholesale_moq(product)

        total_selling = 0.0
        total_cost = 0.0
        draws: List[BatchDraw] = []
        remaining = quantity_pu

        if product.batches:
            for batch in self.consumption_order(product, mode, selected_batch_id):
                if remaining <= QUANTITY_EPSILON:
                    break
                if batch.quantity <= 0:
                    continue

                draw = min(remaining, batch.quantity)
                near_expiry = self.prices.is_near_expiry(batch, now)
                selling, source = self.prices.batch_selling_price(product, batch, mode, moq_met, near_expiry)
                cost = self.prices.batch_cost_price(product, batch)

                if selling <= 0:
                    logger.warning(
                        f"Batch '{batch.id}' of product '{product.id}' resolved to a zero selling price"
                    )

                total_selling += draw * selling
                total_cost += draw * cost
                draws.append(BatchDraw(
                    batch_id=batch.id,
                    batch_number=batch.batch_number,
                    quantity=draw,
                    selling_price=selling,
                    cost_price=cost,
                    is_near_expiry=near_expiry,
                    price_source=source
                ))
                remaining -= draw
                logger.debug(f"Drew {draw} from batch '{batch.id}' at {selling} ({source})")

        unallocated = remaining if remaining > QUANTITY_EPSILON else 0.0
        if unallocated > 0:
            default_selling, source = self.prices.default_selling_price(product, mode)
            default_cost = self.prices.default_cost_price(product)
            total_selling += unallocated * default_selling
            total_cost += unallocated * default_cost
            if product.batches:
                logger.info(
                    f"Product '{product.id}' oversold by {unallocated} {product.unit}, "
                    f"remainder priced at {default_selling} ({source})"
                )

        total_selling = floor_to_cent(total_selling)
        total_cost = floor_to_cent(total_cost)

        return AllocationResult(
            total_selling_price=total_selling,
            total_cost_price=total_cost,
            used_batches=draws,
            average_selling_price=total_selling / quantity_pu if quantity_pu else 0.0,
            average_cost_price=total_cost / quantity_pu if quantity_pu else 0.0,
            requested_quantity=requested,
            requested_unit=unit,
            quantity_in_product_units=quantity_pu,
            unallocated_quantity=unallocated,
            sale_mode=mode,
            wholesale_moq_met=moq_met
        )

    # ==================== MONEY → QUANTITY ====================

    def _walk_amount(
        self,
        product: Product,
        order: List[Batch],
        target: float,
        mode: SaleMode,
        moq_met: bool,
        now: datetime
    ) -> Tuple[float, List[BatchDraw], float]:
        """Spend `target` across `order`; returns (quantity in product units, draws, unspent)"""
        remaining = target
        quantity_pu = 0.0
        draws: List[BatchDraw] = []

        for batch in order:
            if remaining <= AMOUNT_EPSILON:
                break
            if batch.quantity <= 0:
                continue

            near_expiry = self.prices.is_near_expiry(batch, now)
            selling, source = self.prices.batch_selling_price(product, batch, mode, moq_met, near_expiry)
            if selling <= 0:
                # A free or unpriced batch cannot turn money into quantity
                continue

            amount_from_batch = min(remaining, batch.quantity * selling)
            drawn = amount_from_batch / selling
            quantity_pu += drawn
            remaining -= amount_from_batch
            draws.append(BatchDraw(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                quantity=drawn,
                selling_price=selling,
                cost_price=self.prices.batch_cost_price(product, batch),
                is_near_expiry=near_expiry,
                price_source=source
            ))

        if remaining > AMOUNT_EPSILON:
            default_selling, _ = self.prices.default_selling_price(product, mode)
            if default_selling > 0:
                quantity_pu += remaining / default_selling
                remaining = 0.0

        unspent = remaining if remaining > AMOUNT_EPSILON else 0.0
        return quantity_pu, draws, unspent

    def allocate_amount(
        self,
        product: Any,
        amount: Any,
        unit: Any,
        mode: Any = SaleMode.RETAIL,
        selected_batch_id: Optional[Any] = None,
        now: Optional[datetime] = None
    ) -> AmountAllocationResult:
        """
        Find the quantity (in `unit`) that `amount` buys.

        Wholesale MOQ policy: the quantity is first estimated at MOQ-eligible
        prices; if that estimate meets the MOQ it stands, otherwise the walk
        is repeated with the MOQ gate closed (near-expiry batches still sell
        at their own wholesale price). If that second walk reaches the MOQ,
        the first estimate is returned instead, so the quantity never
        re-prices above `amount` and `wholesale_moq_met` matches it.
        """
        product = Product.from_document(product)
        mode = SaleMode.coerce(mode)
        unit = self.units.normalize_unit(unit)
        now = coerce_datetime(now) or datetime.now(timezone.utc)

        target = coerce_number(amount)
        if target is None or target <= 0:
            return AmountAllocationResult(requested_unit=unit, sale_mode=mode)

        order = self.consumption_order(product, mode, selected_batch_id) if product.batches else []

        moq_met = False
        if mode == SaleMode.WHOLESALE:
            moq = self.prices.effective_wholesale_moq(product)
            estimate = self._walk_amount(product, order, target, mode, True, now)
            quantity_pu, draws, unspent = estimate
            moq_met = quantity_pu >= moq
            if not moq_met:
                quantity_pu, draws, unspent = self._walk_amount(product, order, target, mode, False, now)
                if quantity_pu >= moq:
                    # Amount falls between the below-MOQ and MOQ-eligible cost of the MOQ:
                    # no quantity re-prices to it, keep the below-MOQ estimate
                    logger.info(
                        f"Amount {target} for product '{product.id}' cannot reach MOQ {moq} "
                        f"at wholesale prices, keeping estimate {estimate[0]}"
                    )
                    quantity_pu, draws, unspent = estimate
        else:
            quantity_pu, draws, unspent = self._walk_amount(product, order, target, mode, False, now)

        if unspent > 0:
            logger.warning(
                f"Product '{product.id}' has no usable price for {unspent} of the requested amount"
            )

        return AmountAllocationResult(
            quantity=self.units.from_product_units(quantity_pu, product.unit, unit),
            requested_unit=unit,
            quantity_in_product_units=quantity_pu,
            target_amount=target,
            unspent_amount=unspent,
            used_batches=draws,
            sale_mode=mode,
            wholesale_moq_met=moq_met
        )
