# backend/pricing_settings.py

"""
Pricing engine settings.

Values come from the environment (optionally a backend/.env file) so the
same engine can run with shop-specific windows and thresholds.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:3001",
    "http://127.0.0.1:3001",
]

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class PricingSettings(BaseModel):
    """Runtime knobs of the pricing engine"""
    near_expiry_days: int = Field(default=30, ge=0)
    expiry_alert_days: int = Field(default=30, ge=0)
    low_stock_threshold: float = Field(default=5, ge=0)
    quantity_decimals: int = Field(default=3, ge=0, le=6)
    log_level: str = "INFO"
    cors_origins: List[str] = Field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def load_settings() -> PricingSettings:
    """Build settings from the current environment"""
    cors_origins_env = os.environ.get('CORS_ORIGINS', '')
    if cors_origins_env:
        cors_origins = [origin.strip() for origin in cors_origins_env.split(',') if origin.strip()]
    else:
        cors_origins = list(DEFAULT_CORS_ORIGINS)

    return PricingSettings(
        near_expiry_days=_env_int('PRICING_NEAR_EXPIRY_DAYS', 30),
        expiry_alert_days=_env_int('PRICING_EXPIRY_ALERT_DAYS', 30),
        low_stock_threshold=_env_float('PRICING_LOW_STOCK_THRESHOLD', 5),
        quantity_decimals=_env_int('PRICING_QUANTITY_DECIMALS', 3),
        log_level=os.environ.get('PRICING_LOG_LEVEL', 'INFO').upper(),
        cors_origins=cors_origins,
    )


_settings: Optional[PricingSettings] = None


def get_settings() -> PricingSettings:
    """Process-wide settings, loaded on first use"""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def configure_logging(settings: Optional[PricingSettings] = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT
    )
