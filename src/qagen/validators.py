from __future__ import annotations

import re
import shutil
from urllib.parse import urlsplit

MIN_FREE_MB = 100

_CRON_FIELD_RE = re.compile(r"^[\d,\-*/]+$")


def is_valid_url(value: str | None) -> bool:
    if not value or not isinstance(value, str):
        return False
    try:
        parsed = urlsplit(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_valid_cron_expression(expression: object) -> bool:
    """Accept 5-field crontab or 6-field (seconds first) expressions."""
    if not expression or not isinstance(expression, str):
        return False
    parts = expression.split()
    if len(parts) not in (5, 6):
        return False
    return all(part == "*" or _CRON_FIELD_RE.match(part) for part in parts)


def sanitize_limit(value: object, default: int = 50, maximum: int = 1000) -> int:
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if parsed < 1:
        return default
    return min(parsed, maximum)


def check_disk_space(path: str) -> dict[str, object]:
    try:
        usage = shutil.disk_usage(path)
    except OSError:
        return {"available_mb": 0.0, "sufficient": False}
    available_mb = usage.free / (1024 * 1024)
    return {"available_mb": round(available_mb, 1), "sufficient": available_mb > MIN_FREE_MB}
