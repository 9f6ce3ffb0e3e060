import calendar
from datetime import datetime


def add_months(start: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping to the last day of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def add_period(start: datetime, billing_period: str) -> datetime:
    if billing_period == "year":
        return add_months(start, 12)
    return add_months(start, 1)
