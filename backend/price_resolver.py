# backend/price_resolver.py

"""
Price Resolver - ordered fallback resolution of price fields

Every price the engine quotes comes from a named fallback chain: an ordered
list of "source.field" references tried left to right, the first present
(non-None) value winning. Absent fields fall through; a present 0 does not.
Keeping the chains as named constants makes the pricing policy auditable
and testable in one place.

The resolver also answers the display questions that do not depend on a
specific transaction: the price to show "right now" and the effective
wholesale MOQ.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from batch_ordering import BatchOrdering
from pricing_models import Batch, Product, SaleMode, coerce_datetime
from pricing_settings import PricingSettings, get_settings

# ==================== FALLBACK CHAINS ====================

# Product-level display price (no batch applies)
DISPLAY_RETAIL_PRODUCT = ("product.selling_unit_price", "product.selling_price", "product.price")
DISPLAY_WHOLESALE_PRODUCT = ("product.wholesale_price", "product.selling_price", "product.price")

# Display price taken from the first batch in consumption order
DISPLAY_RETAIL_BATCH = ("batch.selling_unit_price", "batch.selling_price")
DISPLAY_WHOLESALE_BATCH = (
    "batch.wholesale_price", "product.wholesale_price",
    "batch.selling_unit_price", "batch.selling_price",
)

# Per-batch selling price applied during allocation
RETAIL_BATCH = ("batch.selling_unit_price", "batch.selling_price", "product.selling_price")
WHOLESALE_BATCH_ELIGIBLE = (
    "batch.wholesale_price", "product.wholesale_price",
    "batch.selling_unit_price", "batch.selling_price", "product.selling_price",
)
# Below MOQ and not near expiry: the batch's own wholesale price is withheld
WHOLESALE_BATCH_BELOW_MOQ = (
    "product.wholesale_price",
    "batch.selling_unit_price", "batch.selling_price", "product.selling_price",
)
BATCH_COST = ("batch.cost_price", "product.cost_price")

# Product-level defaults for products without batches and for oversold remainders
DEFAULT_RETAIL = ("product.selling_price", "product.cost_price")
DEFAULT_WHOLESALE = ("product.wholesale_price",)
DEFAULT_COST = ("product.cost_price", "product.unit_price")

PRICE_CHAINS: Dict[str, Tuple[str, ...]] = {
    "DISPLAY_RETAIL_PRODUCT": DISPLAY_RETAIL_PRODUCT,
    "DISPLAY_WHOLESALE_PRODUCT": DISPLAY_WHOLESALE_PRODUCT,
    "DISPLAY_RETAIL_BATCH": DISPLAY_RETAIL_BATCH,
    "DISPLAY_WHOLESALE_BATCH": DISPLAY_WHOLESALE_BATCH,
    "RETAIL_BATCH": RETAIL_BATCH,
    "WHOLESALE_BATCH_ELIGIBLE": WHOLESALE_BATCH_ELIGIBLE,
    "WHOLESALE_BATCH_BELOW_MOQ": WHOLESALE_BATCH_BELOW_MOQ,
    "BATCH_COST": BATCH_COST,
    "DEFAULT_RETAIL": DEFAULT_RETAIL,
    "DEFAULT_WHOLESALE": DEFAULT_WHOLESALE,
    "DEFAULT_COST": DEFAULT_COST,
}

DEFAULT_WHOLESALE_MOQ = 1.0


def resolve_chain(
    chain: Tuple[str, ...],
    product: Product,
    batch: Optional[Batch] = None,
    default: float = 0.0
) -> float:
    """
    Resolve the first present value of a fallback chain.

    Args:
        chain: ordered "product.<field>" / "batch.<field>" references
        product: product snapshot
        batch: batch snapshot, if the chain refers to batch fields
        default: value when every reference is absent

    Returns:
        First non-None value, or default
    """
    for ref in chain:
        source, field = ref.split(".", 1)
        holder = batch if source == "batch" else product
        if holder is None:
            continue
        value = getattr(holder, field)
        if value is not None:
            return value
    return default


# ==================== PRICE RESOLVER ====================

class PriceResolver:
    """Display pricing and per-batch price selection"""

    def __init__(self, settings: Optional[PricingSettings] = None, ordering: Optional[BatchOrdering] = None):
        self.settings = settings or get_settings()
        self.ordering = ordering or BatchOrdering()

    def effective_price(self, product: Product, mode: SaleMode = SaleMode.RETAIL) -> float:
        """
        Price to display for one product unit right now.

        The first batch in consumption order (among batches with stock, or
        among all batches when everything is sold out) overrides the
        product-level price when it carries a positive price.
        """
        mode = SaleMode.coerce(mode)
        wholesale = mode == SaleMode.WHOLESALE

        price = resolve_chain(DISPLAY_WHOLESALE_PRODUCT if wholesale else DISPLAY_RETAIL_PRODUCT, product)

        if product.batches:
            candidates = [b for b in product.batches if b.quantity > 0]
            if not candidates:
                # Sold out: keep showing the last known batch price
                candidates = product.batches

            ordered = self.ordering.order(candidates, product.track_expiry)
            if ordered:
                first = ordered[0]
                batch_price = resolve_chain(
                    DISPLAY_WHOLESALE_BATCH if wholesale else DISPLAY_RETAIL_BATCH,
                    product,
                    first
                )
                if batch_price > 0:
                    price = batch_price

        return price

    def effective_wholesale_moq(self, product: Product) -> float:
        # Batches never override the MOQ
        if product.wholesale_moq is None:
            return DEFAULT_WHOLESALE_MOQ
        return product.wholesale_moq

    def is_near_expiry(self, batch: Batch, now: Optional[datetime] = None) -> bool:
        if batch.expiry is None:
            return False
        now = coerce_datetime(now) or datetime.now(timezone.utc)
        return batch.expiry <= now + timedelta(days=self.settings.near_expiry_days)

    def batch_selling_price(
        self,
        product: Product,
        batch: Batch,
        mode: SaleMode,
        moq_met: bool,
        near_expiry: bool
    ) -> Tuple[float, str]:
        """
        Selling price applied to units drawn from `batch`.

        Returns:
            (price, name of the chain that produced it)
        """
        if mode != SaleMode.WHOLESALE:
            return resolve_chain(RETAIL_BATCH, product, batch), "RETAIL_BATCH"

        if moq_met or near_expiry:
            return resolve_chain(WHOLESALE_BATCH_ELIGIBLE, product, batch), "WHOLESALE_BATCH_ELIGIBLE"
        return resolve_chain(WHOLESALE_BATCH_BELOW_MOQ, product, batch), "WHOLESALE_BATCH_BELOW_MOQ"

    def batch_cost_price(self, product: Product, batch: Batch) -> float:
        return resolve_chain(BATCH_COST, product, batch)

    def default_selling_price(self, product: Product, mode: SaleMode) -> Tuple[float, str]:
        if mode == SaleMode.WHOLESALE:
            return resolve_chain(DEFAULT_WHOLESALE, product), "DEFAULT_WHOLESALE"
        return resolve_chain(DEFAULT_RETAIL, product), "DEFAULT_RETAIL"

    def default_cost_price(self, product: Product) -> float:
        return resolve_chain(DEFAULT_COST, product)
