import asyncio
import logging
from typing import Optional

from marketplace.core.exceptions import ValidationError
from marketplace.models.market import MarketStatistics

logger = logging.getLogger(__name__)


def discount_rate(face_value: int, sale_value: int) -> float:
    """Effective cost of early liquidation, in percent."""
    return (face_value - sale_value) / face_value * 100


class MarketAggregator:
    """
    Running market statistics.

    Seeded once at startup and only moved forward by completed deals. The
    average discount rate is a cumulative moving average kept at one decimal
    place, which is also the value carried into the next update.
    """

    def __init__(self, initial: Optional[MarketStatistics] = None):
        self._stats = initial.model_copy() if initial else MarketStatistics()
        self._lock = asyncio.Lock()

    async def record_completion(self, face_value: int, sale_value: int) -> MarketStatistics:
        if face_value <= 0:
            raise ValidationError(f"Face value must be positive: {face_value}")
        if sale_value < 0:
            raise ValidationError(f"Sale value must not be negative: {sale_value}")

        async with self._lock:
            previous = self._stats
            completed = previous.completed_deals + 1
            average = (
                previous.average_discount_rate * previous.completed_deals
                + discount_rate(face_value, sale_value)
            ) / completed

            self._stats = previous.model_copy(update={
                "total_volume": previous.total_volume + sale_value,
                "completed_deals": completed,
                "average_discount_rate": round(average, 1),
            })
            logger.info(
                "Deal completion recorded: face=%s sale=%s, %d deals, avg discount %.1f%%",
                face_value, sale_value, completed, self._stats.average_discount_rate
            )
            return self._stats.model_copy()

    def snapshot(self) -> MarketStatistics:
        return self._stats.model_copy()

    def set_active_users(self, count: int) -> None:
        self._stats = self._stats.model_copy(update={"active_users": count})
