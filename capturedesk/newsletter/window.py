"""UTC day windows for newsletter digests."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from capturedesk.core.exceptions import ValidationError

WINDOW_DAYS = {"daily": 1, "weekly": 7}


@dataclass(frozen=True)
class NewsletterWindow:
    """Half-open interval ``[start_inclusive, end_exclusive)`` of whole UTC days."""

    type: str
    start_inclusive: datetime
    end_exclusive: datetime
    anchor_date: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start_inclusive <= moment < self.end_exclusive

    @property
    def last_day(self) -> date:
        return (self.end_exclusive - timedelta(microseconds=1)).date()

    @property
    def date_label(self) -> str:
        """``YYYY-MM-DD..YYYY-MM-DD`` covering the first and last included day."""
        return f"{self.start_inclusive.date().isoformat()}..{self.last_day.isoformat()}"


def parse_anchor(value: str) -> datetime:
    """Parse a ``YYYY-MM-DD`` anchor as UTC midnight.

    Raises:
        ValidationError: If the value is not a calendar date.
    """
    try:
        day = date.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError(f"Invalid date: {value}")
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def compute_window(
    window_type: str,
    anchor: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> NewsletterWindow:
    """Window of 1 (daily) or 7 (weekly) days ending with the anchor day.

    Args:
        window_type: ``daily`` or ``weekly``.
        anchor: ``YYYY-MM-DD``; defaults to today (UTC).
        now: Clock override for the default anchor.

    Raises:
        ValidationError: On an unknown type or unparseable anchor.
    """
    if window_type not in WINDOW_DAYS:
        raise ValidationError(f"Invalid newsletter type: {window_type}")

    if anchor:
        anchor_moment = parse_anchor(anchor)
    else:
        anchor_moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)

    anchor_day = datetime(
        anchor_moment.year, anchor_moment.month, anchor_moment.day, tzinfo=timezone.utc
    )
    end_exclusive = anchor_day + timedelta(days=1)
    start_inclusive = end_exclusive - timedelta(days=WINDOW_DAYS[window_type])
    return NewsletterWindow(
        type=window_type,
        start_inclusive=start_inclusive,
        end_exclusive=end_exclusive,
        anchor_date=anchor_day,
    )
