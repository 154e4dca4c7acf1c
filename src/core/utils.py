import re
import time

_ISO_DURATION = re.compile(r"^P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?$")


def collapse(s: str) -> str:
    """
    Combine runs of whitespace into a single space and trim both ends.
    """
    return re.sub(r'\s+', ' ', s).strip()


def join_terms(*terms: str | None) -> str:
    """
    Build a search query from optional terms, skipping empty ones.
    """
    return collapse(" ".join(t for t in terms if t))


def parse_iso_duration(value: str | None) -> int:
    """
    Convert an ISO 8601 duration (PT4M13S, PT1H2M, P1DT2H) into whole seconds.
    Anything unparseable counts as 0 (unknown).
    """
    if not value:
        return 0
    match = _ISO_DURATION.match(value.strip())
    if not match:
        return 0
    days, hours, minutes, seconds = (int(g or 0) for g in match.groups())
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


def format_time(seconds: float) -> str:
    s = max(0, int(seconds or 0))
    m = s // 60
    s = s % 60
    return f"{m}:{s:02d}"


def now_ms() -> int:
    return int(time.time() * 1000)
