"""
Due-date arithmetic for deals and template-generated tasks.

All arithmetic is on date-only values: whole calendar days are added to a
``date``, so no timezone offset can shift the result across midnight.
"""

from datetime import date, datetime, timedelta

from diligence.core.exceptions import ValidationError

REVIEW_WINDOW_DAYS = 90


def _as_date(value) -> date:
    # datetime is a subclass of date; drop the time part explicitly.
    if isinstance(value, datetime):
        return value.date()
    return value


def resolve_due_date(deal_start_date: date | None, day_offset: int) -> date | None:
    """Concrete due date for a task *day_offset* days after the deal start.

    A deal without a start date yields ``None`` ("no due date"), never an
    error and never a fallback date.

    Raises:
        ValidationError: *day_offset* is not a non-negative integer.
    """
    if isinstance(day_offset, bool) or not isinstance(day_offset, int):
        raise ValidationError(
            "Day offset must be an integer.", details={"days_from_start": "integer required"}
        )
    if day_offset < 0:
        raise ValidationError(
            "Day offset must be ≥ 0.", details={"days_from_start": "must be ≥ 0"}
        )
    if deal_start_date is None:
        return None
    return _as_date(deal_start_date) + timedelta(days=day_offset)


def derive_end_date(start_date: date | None, window_days: int = REVIEW_WINDOW_DAYS) -> date | None:
    """End of the diligence review window; ``None`` without a start date."""
    if start_date is None:
        return None
    return _as_date(start_date) + timedelta(days=window_days)
