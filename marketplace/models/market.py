from pydantic import BaseModel


class MarketStatistics(BaseModel):
    """Process-wide market aggregates shown on the ticker."""
    total_volume: int = 0
    completed_deals: int = 0
    average_discount_rate: float = 0.0  # %
    avg_funding_days: float = 0.0
    active_users: int = 0
    accident_rate: float = 0.0  # %
