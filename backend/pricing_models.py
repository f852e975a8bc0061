# backend/pricing_models.py

"""
Pricing Models - input snapshots, result contracts and error classes

Products and batches arrive from loosely typed sources (offline caches,
synced documents, form state). Every numeric and date field is coerced
once here, at the boundary, so the engine itself only ever sees:
- prices as non-negative floats or None ("absent, fall through")
- quantities as floats
- dates as timezone-aware UTC datetimes or None
- track_expiry as a real bool

Snapshots are frozen: the engine advises draws, it never mutates stock.
"""

import math
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# ==================== ENUMS ====================

class SaleMode(str, Enum):
    """Pricing mode of a sale"""
    RETAIL = "retail"
    WHOLESALE = "wholesale"

    @classmethod
    def coerce(cls, value: Any) -> "SaleMode":
        if isinstance(value, SaleMode):
            return value
        if isinstance(value, str) and value.strip().lower() == cls.WHOLESALE.value:
            return cls.WHOLESALE
        return cls.RETAIL


class AvailabilityStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    INVALID_QUANTITY = "INVALID_QUANTITY"


# ==================== BOUNDARY COERCION ====================

def coerce_number(value: Any) -> Optional[float]:
    """
    Coerce an external value to a finite float.

    Returns None for anything that is not a usable number: None, empty
    strings, non-numeric strings, booleans, NaN and infinities.
    Numeric strings may carry thousands separators ("1,250.50").
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, Decimal):
        try:
            number = float(value)
        except (InvalidOperation, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None

    if not math.isfinite(number):
        return None
    return number


def coerce_price(value: Any) -> Optional[float]:
    """Prices are non-negative; anything else is treated as absent"""
    number = coerce_number(value)
    if number is None or number < 0:
        return None
    return number


def coerce_quantity(value: Any) -> float:
    number = coerce_number(value)
    return number if number is not None else 0.0


def coerce_datetime(value: Any) -> Optional[datetime]:
    """
    Normalize dates to aware UTC datetimes.

    Accepts datetime, date, ISO-8601 strings (trailing "Z" allowed) and
    epoch milliseconds. Returns None when the value cannot be read.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def coerce_flag(value: Any) -> bool:
    """Boolean-or-string flags: True and "true" mean yes, anything else no"""
    if value is True:
        return True
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def _coerce_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


# ==================== INPUT SNAPSHOTS ====================

class Batch(BaseModel):
    """One purchase batch of a product (read-only snapshot)"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("id", "_id", "batchId", "batch_id"))
    batch_number: Optional[str] = Field(default=None, validation_alias=AliasChoices("batchNumber", "batch_number"))
    quantity: float = 0.0
    expiry: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("expiry", "expiryDate", "expiry_date"))
    created_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("createdAt", "created_at"))
    cost_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("costPrice", "cost_price"))
    selling_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("sellingPrice", "selling_price"))
    selling_unit_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("sellingUnitPrice", "selling_unit_price"))
    wholesale_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("wholesalePrice", "wholesale_price"))

    @field_validator("id", "batch_number", mode="before")
    @classmethod
    def _validate_ids(cls, value):
        return _coerce_id(value)

    @field_validator("quantity", mode="before")
    @classmethod
    def _validate_quantity(cls, value):
        return coerce_quantity(value)

    @field_validator("expiry", "created_at", mode="before")
    @classmethod
    def _validate_dates(cls, value):
        return coerce_datetime(value)

    @field_validator("cost_price", "selling_price", "selling_unit_price", "wholesale_price", mode="before")
    @classmethod
    def _validate_prices(cls, value):
        return coerce_price(value)


class Product(BaseModel):
    """A product and its batches (read-only snapshot)"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("id", "_id", "productId"))
    name: str = ""
    unit: str = Field(default="pcs", validation_alias=AliasChoices("quantityUnit", "unit"))
    price: Optional[float] = None
    selling_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("sellingPrice", "selling_price"))
    selling_unit_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("sellingUnitPrice", "selling_unit_price"))
    wholesale_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("wholesalePrice", "wholesale_price"))
    cost_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("costPrice", "cost_price"))
    unit_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("unitPrice", "unit_price"))
    wholesale_moq: Optional[float] = Field(default=None, validation_alias=AliasChoices("wholesaleMOQ", "wholesale_moq"))
    track_expiry: bool = Field(default=False, validation_alias=AliasChoices("trackExpiry", "track_expiry"))
    quantity: Optional[float] = None
    stock: Optional[float] = None
    batches: List[Batch] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _validate_id(cls, value):
        return _coerce_id(value)

    @field_validator("name", mode="before")
    @classmethod
    def _validate_name(cls, value):
        return "" if value is None else str(value)

    @field_validator("unit", mode="before")
    @classmethod
    def _validate_unit(cls, value):
        if value is None or not str(value).strip():
            return "pcs"
        return str(value).strip()

    @field_validator(
        "price", "selling_price", "selling_unit_price", "wholesale_price",
        "cost_price", "unit_price", "wholesale_moq", mode="before"
    )
    @classmethod
    def _validate_prices(cls, value):
        return coerce_price(value)

    @field_validator("quantity", "stock", mode="before")
    @classmethod
    def _validate_stock(cls, value):
        return coerce_number(value)

    @field_validator("track_expiry", mode="before")
    @classmethod
    def _validate_track_expiry(cls, value):
        return coerce_flag(value)

    @field_validator("batches", mode="before")
    @classmethod
    def _validate_batches(cls, value):
        if not isinstance(value, (list, tuple)):
            return []
        return [b for b in value if isinstance(b, (dict, Batch))]

    @classmethod
    def from_document(cls, document: Any) -> "Product":
        """Build a snapshot from a stored document (dict) or pass through a Product"""
        if isinstance(document, Product):
            return document
        if not isinstance(document, dict):
            return cls()
        return cls.model_validate(document)


# ==================== RESULT CONTRACTS ====================

class BatchDraw(BaseModel):
    """How much would be drawn from one batch, and at which prices"""
    batch_id: Optional[str] = None
    batch_number: Optional[str] = None
    quantity: float
    selling_price: float
    cost_price: float
    is_near_expiry: bool = False
    price_source: str


class AllocationResult(BaseModel):
    """Outcome of a quantity-driven allocation"""
    total_selling_price: float = 0.0
    total_cost_price: float = 0.0
    used_batches: List[BatchDraw] = []
    average_selling_price: float = 0.0
    average_cost_price: float = 0.0
    requested_quantity: float = 0.0
    requested_unit: str = "pcs"
    quantity_in_product_units: float = 0.0
    unallocated_quantity: float = 0.0
    sale_mode: SaleMode = SaleMode.RETAIL
    wholesale_moq_met: bool = False


class AmountAllocationResult(BaseModel):
    """Outcome of an amount-driven allocation"""
    quantity: float = 0.0
    requested_unit: str = "pcs"
    quantity_in_product_units: float = 0.0
    target_amount: float = 0.0
    unspent_amount: float = 0.0
    used_batches: List[BatchDraw] = []
    sale_mode: SaleMode = SaleMode.RETAIL
    wholesale_moq_met: bool = False


class QuantityValidation(BaseModel):
    valid: bool
    quantity: float = 0.0
    message: Optional[str] = None
    error_code: Optional[str] = None


class AvailabilityResult(BaseModel):
    """Stock check outcome, including input-validation rejections"""
    available: bool
    stock_display: str
    status: AvailabilityStatus
    requested_quantity_in_product_units: float = 0.0
    total_stock: float = 0.0
    errors: List[Dict[str, Any]] = []


class ExpiringBatch(BaseModel):
    batch_id: Optional[str] = None
    batch_number: Optional[str] = None
    quantity: float
    expiry: datetime
    days_until_expiry: int
    is_expired: bool


# ==================== ERROR CLASSES ====================

class PricingError(Exception):
    """Base pricing engine error"""
    def __init__(self, error_code: str, message: str, field: Optional[str] = None, severity: str = "VALIDATION_ERROR"):
        self.error_code = error_code
        self.message = message
        self.field = field
        self.severity = severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "field": self.field,
            "severity": self.severity
        }


class InvalidQuantityError(PricingError):
    """Quantity is not a finite number"""
    def __init__(self, quantity: Any):
        super().__init__(
            "INVALID_QUANTITY",
            f"Please enter a valid quantity. Received: {quantity!r}",
            field="quantity"
        )


class NonPositiveQuantityError(PricingError):
    """Quantity must be greater than zero"""
    def __init__(self, quantity: float):
        super().__init__(
            "NON_POSITIVE_QUANTITY",
            f"Quantity must be greater than zero. Received: {quantity}",
            field="quantity"
        )


class FractionalCountQuantityError(PricingError):
    """Count-based units cannot be split"""
    def __init__(self, quantity: float, unit: str):
        super().__init__(
            "FRACTIONAL_COUNT_QUANTITY",
            f"Quantity must be a whole number for '{unit}'. Received: {quantity}",
            field="quantity"
        )
