import posixpath
import re
import time

LEADING_DIGITS = re.compile(r"\s*(\d+)")


def now_millis() -> int:
    return int(time.time() * 1000)


def normalize_path(path: str) -> str:
    """Normalize a vault-relative path to forward slashes without leading/trailing separators."""
    path = path.strip().replace("\\", "/")
    if not path:
        return ""
    normalized = posixpath.normpath(path).strip("/")
    return "" if normalized == "." else normalized


def parse_version(version: str) -> tuple[int, ...] | None:
    """Parse a dotted version into a tuple, or None if it is not one.

    Each part contributes its leading digits, so `1.2.1-beta` parses as (1, 2, 1).
    """
    parts = []
    for part in version.strip().split("."):
        match = LEADING_DIGITS.match(part)
        if match is None:
            return None
        parts.append(int(match.group(1)))
    return tuple(parts)


def is_version_less_than(version: str, other: str) -> bool:
    """Check whether `version` precedes `other`. Unparseable versions never compare as less."""
    parsed = parse_version(version)
    parsed_other = parse_version(other)
    if parsed is None or parsed_other is None:
        return False
    length = max(len(parsed), len(parsed_other))
    return parsed + (0,) * (length - len(parsed)) < parsed_other + (0,) * (length - len(parsed_other))
