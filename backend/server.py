from fastapi import FastAPI, APIRouter, HTTPException
from starlette.middleware.cors import CORSMiddleware
import logging
from pydantic import BaseModel, ConfigDict
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone

from pricing_engine import PricingEngine
from pricing_models import AllocationResult, AmountAllocationResult, AvailabilityResult, Product
from pricing_settings import configure_logging, get_settings

settings = get_settings()
engine = PricingEngine(settings)

app = FastAPI(title="Retail Pricing Engine")

# ==================== CORS CONFIGURATION (MUST BE FIRST) ====================
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "X-Requested-With",
        "Accept",
        "Origin",
    ],
    max_age=600,  # Cache preflight for 10 minutes
)

# ==================== HEALTH ENDPOINT (ROOT LEVEL) ====================
@app.get("/api/health")
async def health_check():
    """Health check endpoint for monitoring"""
    return {
        "ok": True,
        "time": datetime.now(timezone.utc).isoformat(),
        "service": "Retail Pricing Engine",
        "version": engine.version
    }

api_router = APIRouter(prefix="/api/pricing")

# ==================== REQUEST MODELS ====================

class PricingRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    product: Dict[str, Any]


class EffectivePriceRequest(PricingRequest):
    mode: str = "retail"


class QuantityAllocationRequest(PricingRequest):
    quantity: Any = 0
    unit: Optional[str] = None  # Defaults to the product unit
    mode: str = "retail"
    selected_batch_id: Optional[str] = None
    now: Optional[datetime] = None


class AmountAllocationRequest(PricingRequest):
    amount: Any = 0
    unit: Optional[str] = None
    mode: str = "retail"
    selected_batch_id: Optional[str] = None
    now: Optional[datetime] = None


class AvailabilityRequest(PricingRequest):
    quantity: Any = 0
    unit: Optional[str] = None


class UnitInfo(BaseModel):
    unit: str
    category: str
    base_unit: str
    factor_to_base: float
    is_count_based: bool
    is_decimal_allowed: bool
    allowed_display_units: List[str]


# ==================== PRICING ROUTES ====================

@api_router.post("/effective-price")
async def get_effective_price(request: EffectivePriceRequest):
    product = Product.from_document(request.product)
    return {
        "product_id": product.id,
        "mode": request.mode,
        "effective_price": engine.prices.effective_price(product, request.mode),
        "wholesale_moq": engine.prices.effective_wholesale_moq(product)
    }


@api_router.post("/allocate/quantity", response_model=AllocationResult)
async def allocate_quantity(request: QuantityAllocationRequest):
    product = Product.from_document(request.product)
    unit = request.unit or product.unit

    # Fractional counts are rejected before any allocation is attempted
    validation = engine.units.validate_quantity_for_unit(request.quantity, unit, allow_zero=True)
    if not validation.valid:
        raise HTTPException(status_code=400, detail=validation.message)

    return engine.allocation.allocate_quantity(
        product,
        request.quantity,
        unit,
        request.mode,
        request.selected_batch_id,
        request.now
    )


@api_router.post("/allocate/amount", response_model=AmountAllocationResult)
async def allocate_amount(request: AmountAllocationRequest):
    product = Product.from_document(request.product)
    return engine.allocation.allocate_amount(
        product,
        request.amount,
        request.unit or product.unit,
        request.mode,
        request.selected_batch_id,
        request.now
    )


@api_router.post("/availability", response_model=AvailabilityResult)
async def check_availability(request: AvailabilityRequest):
    product = Product.from_document(request.product)
    return engine.stock.check_availability(product, request.quantity, request.unit or product.unit)


@api_router.get("/units/{unit}", response_model=UnitInfo)
async def get_unit_info(unit: str):
    units = engine.units
    base = units.base_unit_for(unit)
    return UnitInfo(
        unit=units.normalize_unit(unit),
        category=base.category.value,
        base_unit=base.unit,
        factor_to_base=units.factor_for(unit),
        is_count_based=units.is_count_based(unit),
        is_decimal_allowed=units.is_decimal_allowed(unit),
        allowed_display_units=units.allowed_display_units(unit)
    )


app.include_router(api_router)
# API routes registered

configure_logging(settings)
logger = logging.getLogger(__name__)

@app.on_event("startup")
async def startup_event():
    logger.info(
        f"Pricing engine ready (near-expiry window {settings.near_expiry_days} days, "
        f"CORS origins {settings.cors_origins})"
    )
