from datetime import date, datetime, timedelta
from functools import lru_cache
from typing import FrozenSet, Optional

import holidays

from app.core.config import settings


class HolidayService:
    """Public holidays on which no slots are offered.

    Backed by the `holidays` library. The country comes from
    ``HOLIDAY_COUNTRY``; with no country configured every lookup is empty.
    """

    def __init__(self, country: Optional[str] = None):
        self.country = country if country is not None else settings.HOLIDAY_COUNTRY

    @staticmethod
    @lru_cache(maxsize=16)
    def _calendar(country: str, year: int) -> holidays.HolidayBase:
        return holidays.country_holidays(country, years=year)

    def is_holiday(self, dt: datetime) -> bool:
        if not self.country:
            return False
        d: date = dt.date() if isinstance(dt, datetime) else dt  # type: ignore
        return d in self._calendar(self.country, d.year)

    def get_holiday_name(self, dt: datetime) -> Optional[str]:
        if not self.country:
            return None
        d: date = dt.date() if isinstance(dt, datetime) else dt  # type: ignore
        return self._calendar(self.country, d.year).get(d)

    def closed_dates(self, start: date, days: int) -> FrozenSet[date]:
        """Holidays within ``[start, start + days)``."""
        if not self.country or days <= 0:
            return frozenset()
        window = (start + timedelta(days=offset) for offset in range(days))
        return frozenset(d for d in window if self.is_holiday(d))
