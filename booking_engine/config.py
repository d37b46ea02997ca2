"""
Centralized configuration with environment variable overrides.

Tax rate, cancellation windows, retry bounds, and booking number format
are configurable here. Nothing is hardcoded in scheduling or lifecycle logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from booking_engine.logging_context import RequestIdFilter

load_dotenv()

logger = logging.getLogger(__name__)

SUPPORTED_CURRENCIES = ("AED", "USD", "INR", "EUR", "GBP")
LOG_FORMAT = "%(asctime)s [%(name)s] [%(request_id)s] %(levelname)s: %(message)s"


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def parse_tiers(raw: str) -> tuple[tuple[float, float], ...]:
    """Parse ``"24:50,2:0"`` into ``((24.0, 50.0), (2.0, 0.0))``.

    Each pair is ``hours_before_start:refund_percentage``. An empty string
    means no late-cancellation tiers.
    """
    tiers = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        hours, sep, percentage = chunk.partition(":")
        if not sep:
            raise ValueError(f"Invalid cancellation tier {chunk!r}, expected HOURS:PERCENT")
        try:
            tiers.append((float(hours), float(percentage)))
        except ValueError:
            raise ValueError(f"Invalid cancellation tier {chunk!r}") from None
    return tuple(tiers)


@dataclass(frozen=True)
class PricingConfig:
    """Tax and currency settings applied at booking creation."""

    tax_rate: float = _safe_float("TAX_RATE", "0.18")
    default_currency: str = os.getenv("DEFAULT_CURRENCY", "INR")


@dataclass(frozen=True)
class CancellationConfig:
    """Free-cancellation window and late-cancellation refund tiers."""

    free_cancellation_hours: float = _safe_float("FREE_CANCELLATION_HOURS", "24")
    late_tiers: tuple[tuple[float, float], ...] = parse_tiers(
        os.getenv("LATE_CANCELLATION_TIERS", "")
    )


@dataclass(frozen=True)
class SchedulingConfig:
    """Slot suggestion, duration bounds, and commit retry settings."""

    suggestion_step_minutes: int = _safe_int("SUGGESTION_STEP_MINUTES", "30")
    min_duration_minutes: int = _safe_int("MIN_DURATION_MINUTES", "15")
    max_duration_minutes: int = _safe_int("MAX_DURATION_MINUTES", "480")
    commit_retries: int = _safe_int("COMMIT_RETRIES", "1")
    default_timezone: str = os.getenv("DEFAULT_TIMEZONE", "UTC")


@dataclass(frozen=True)
class BookingConfig:
    """Booking record settings."""

    booking_number_prefix: str = os.getenv("BOOKING_NUMBER_PREFIX", "RZ")
    max_message_length: int = _safe_int("MAX_MESSAGE_LENGTH", "1000")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    pricing: PricingConfig = field(default_factory=PricingConfig)
    cancellation: CancellationConfig = field(default_factory=CancellationConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    booking: BookingConfig = field(default_factory=BookingConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    engine_name: str = os.getenv("ENGINE_NAME", "booking-engine")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if not 0.0 <= config.pricing.tax_rate <= 1.0:
        raise ValueError(
            f"TAX_RATE must be between 0.0 and 1.0, got {config.pricing.tax_rate}"
        )
    if config.pricing.default_currency not in SUPPORTED_CURRENCIES:
        raise ValueError(
            f"DEFAULT_CURRENCY must be one of {SUPPORTED_CURRENCIES}, "
            f"got {config.pricing.default_currency!r}"
        )
    if config.cancellation.free_cancellation_hours < 0:
        raise ValueError(
            "FREE_CANCELLATION_HOURS must be >= 0, "
            f"got {config.cancellation.free_cancellation_hours}"
        )
    for hours, percentage in config.cancellation.late_tiers:
        if hours <= 0:
            raise ValueError(f"LATE_CANCELLATION_TIERS hours must be > 0, got {hours}")
        if not 0.0 <= percentage <= 100.0:
            raise ValueError(
                f"LATE_CANCELLATION_TIERS percentage must be between 0 and 100, got {percentage}"
            )
    if config.scheduling.suggestion_step_minutes < 1:
        raise ValueError(
            "SUGGESTION_STEP_MINUTES must be >= 1, "
            f"got {config.scheduling.suggestion_step_minutes}"
        )
    if config.scheduling.min_duration_minutes < 1:
        raise ValueError(
            f"MIN_DURATION_MINUTES must be >= 1, got {config.scheduling.min_duration_minutes}"
        )
    if config.scheduling.max_duration_minutes < config.scheduling.min_duration_minutes:
        raise ValueError(
            "MAX_DURATION_MINUTES must be >= MIN_DURATION_MINUTES, "
            f"got {config.scheduling.max_duration_minutes}"
        )
    if config.scheduling.commit_retries < 0:
        raise ValueError(
            f"COMMIT_RETRIES must be >= 0, got {config.scheduling.commit_retries}"
        )
    if not config.booking.booking_number_prefix:
        raise ValueError("BOOKING_NUMBER_PREFIX must not be empty")
    if config.booking.max_message_length < 1:
        raise ValueError(
            f"MAX_MESSAGE_LENGTH must be >= 1, got {config.booking.max_message_length}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler],
    )
    logger.info("Configuration loaded for '%s'", config.engine_name)
    return config


# Singleton instance
settings = load_config()
