"""Date defaults applied to new and derived documents."""

import calendar
from datetime import date, timedelta


def end_of_next_month(reference: date) -> date:
    """Last day of the month after ``reference`` (invoice payment due date).

    end_of_next_month(date(2024, 1, 31)) -> date(2024, 2, 29)
    end_of_next_month(date(2024, 12, 5)) -> date(2025, 1, 31)
    """
    year = reference.year + reference.month // 12
    month = reference.month % 12 + 1
    return date(year, month, calendar.monthrange(year, month)[1])


def days_after(reference: date, days: int) -> date:
    return reference + timedelta(days=days)
