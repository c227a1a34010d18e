"""Human-readable durations for status and stats output."""


def format_duration(seconds: float) -> str:
    """
    Format a duration as "1d 2h 3m 4s", dropping leading zero units.

    Args:
        seconds: Duration in seconds (negative values count as zero)

    Returns:
        Formatted duration string
    """
    total = max(0, int(seconds))
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)

    if days:
        return f"{days}d {hours}h {minutes}m {secs}s"
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
