"""What "today" is, in the configured timezone and with the debug day offset applied."""

import logging
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from src.core.config import settings


logger = logging.getLogger(__name__)

_extra_offset_days = 0


def today() -> date:
    """Current local date, shifted by the configured and runtime debug offsets."""
    now = datetime.now(ZoneInfo(settings.timezone))
    return now.date() + timedelta(days=settings.debug_date_offset_days + _extra_offset_days)


def advance(days: int = 1) -> date:
    """Move the debug clock forward and return the new today."""
    global _extra_offset_days  # noqa: PLW0603
    _extra_offset_days += days
    new_today = today()
    logger.info("Advanced debug date", extra={"days": days, "today": new_today.isoformat()})
    return new_today


def reset() -> None:
    """Drop any runtime debug offset."""
    global _extra_offset_days  # noqa: PLW0603
    _extra_offset_days = 0
