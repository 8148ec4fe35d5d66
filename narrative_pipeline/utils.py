"""Small formatting helpers."""


def format_ms_to_time(ms: int) -> str:
    """Format a duration in milliseconds as ``HH:MM:SS.mmm``.

    >>> format_ms_to_time(3723001)
    '01:02:03.001'
    """
    ms = int(ms)
    hours, rest = divmod(ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{millis:03d}"
