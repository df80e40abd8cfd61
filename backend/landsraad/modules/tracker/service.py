from __future__ import annotations

import math
from datetime import date


def week_key(day: date | None = None) -> str:
    """Return the tracker week key (``YYYY-W<n>``) for ``day``.

    Weeks start on Sunday; week 1 is the (partial) week containing January 1st.
    The browser stores one state blob per key, so this must not drift from
    what already-saved data uses.
    """
    day = day or date.today()
    start = date(day.year, 1, 1)
    days = (day - start).days
    start_weekday = (start.weekday() + 1) % 7  # Sunday = 0
    week = math.ceil((days + start_weekday + 1) / 7)
    return f"{day.year}-W{week}"
