# backend/tests/conftest.py

import sys
from pathlib import Path
from datetime import datetime, timedelta, timezone

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pricing_settings import PricingSettings
from allocation_engine import AllocationEngine
from price_resolver import PriceResolver
from stock_availability import StockAvailability
from unit_system import UnitSystem

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def days_from_now(days: int) -> str:
    """ISO timestamp relative to the fixed test clock"""
    return (NOW + timedelta(days=days)).isoformat()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def settings():
    """Default settings, independent of the environment"""
    return PricingSettings()


@pytest.fixture
def units():
    return UnitSystem()


@pytest.fixture
def resolver(settings):
    return PriceResolver(settings=settings)


@pytest.fixture
def engine(settings):
    return AllocationEngine(settings=settings)


@pytest.fixture
def stock(settings):
    return StockAvailability(settings=settings)


@pytest.fixture
def wholesale_product():
    """MOQ 10, batch wholesale 50, product wholesale 60, selling 80"""
    return {
        "id": "RICE_25",
        "name": "Basmati Rice",
        "unit": "kg",
        "sellingPrice": 80,
        "wholesalePrice": 60,
        "costPrice": 40,
        "wholesaleMOQ": 10,
        "trackExpiry": False,
        "batches": [
            {
                "id": "B1",
                "batchNumber": "LOT-001",
                "quantity": 100,
                "createdAt": days_from_now(-60),
                "expiry": days_from_now(180),
                "costPrice": 42,
                "sellingUnitPrice": 82,
                "wholesalePrice": 50,
            }
        ],
    }
