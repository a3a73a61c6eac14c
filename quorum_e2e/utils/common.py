import time
from datetime import datetime
from typing import Optional


def format_timestamp(ts: Optional[float] = None) -> str:
    """Format timestamp to ISO format"""
    if ts is None:
        ts = time.time()
    return datetime.fromtimestamp(ts).isoformat()


def parse_duration(value) -> float:
    """Parse '500ms', '1s', '2m' or a bare number into seconds"""
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower()
    for suffix, factor in (("ms", 0.001), ("s", 1.0), ("m", 60.0)):
        if text.endswith(suffix):
            return float(text[: -len(suffix)]) * factor
    return float(text)


def format_duration(seconds: float) -> str:
    """Render seconds the way the cluster API expects time values"""
    return f"{int(round(seconds * 1000))}ms"
