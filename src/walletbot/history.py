"""In-memory balance history per wallet, feeding the balance chart."""

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class BalancePoint:
    timestamp: datetime
    total_usd: Decimal


class BalanceHistory:
    """Last ``max_points`` total USD values observed for each wallet."""

    def __init__(self, max_points: int = 30):
        self.max_points = max(1, max_points)
        self._series: dict[str, deque[BalancePoint]] = {}

    def record(
        self, wallet_id: str, total_usd: Decimal, at: Optional[datetime] = None
    ) -> BalancePoint:
        point = BalancePoint(at or datetime.now(timezone.utc), Decimal(total_usd))
        series = self._series.get(wallet_id)
        if series is None:
            series = self._series[wallet_id] = deque(maxlen=self.max_points)
        series.append(point)
        return point

    def points(self, wallet_id: str) -> list[BalancePoint]:
        return list(self._series.get(wallet_id, ()))

    def forget(self, wallet_id: str) -> None:
        self._series.pop(wallet_id, None)
