"""Human-readable formatting helpers for chat replies."""
from __future__ import annotations

from datetime import datetime
from typing import Optional


def format_megabytes(mb: Optional[float]) -> str:
    """Format a size given in megabytes: 512 → '512.00 MB', 2048 → '2.00 GB'."""
    if mb is None:
        return "N/A"
    value = float(mb)
    for unit in ("MB", "GB", "TB"):
        if abs(value) < 1024 or unit == "TB":
            return f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} TB"


def percentage(part: Optional[float], whole: Optional[float], digits: int = 1) -> str:
    """'12.5' style percentage; 'N/A' when the denominator is missing or zero."""
    if not whole or part is None:
        return "N/A"
    return f"{(float(part) / float(whole)) * 100:.{digits}f}"


def format_count(value: Optional[int]) -> str:
    if value is None:
        return "N/A"
    return f"{int(value):,}"


def format_date(dt: Optional[datetime]) -> str:
    return dt.strftime("%d %b %Y") if dt else "Unknown"


def format_datetime(dt: Optional[datetime]) -> str:
    return dt.strftime("%d %b %Y %H:%M") if dt else "Unknown"


def format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    return f"{days}d {hours}h {minutes}m"
