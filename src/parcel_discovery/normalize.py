import re
from typing import Iterable, Optional


_WHITESPACE_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)


def normalize_text(value: Optional[str]) -> str:
    if value is None:
        return ""
    cleaned = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return cleaned.casefold()


def normalize_address(value: Optional[str]) -> str:
    cleaned = normalize_text(value)
    cleaned = _PUNCT_RE.sub("", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    return cleaned


def clean_str(value: object) -> Optional[str]:
    """Trimmed string, or None for missing/blank values."""
    if value is None or isinstance(value, (dict, list)):
        return None
    s = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return s or None


def as_number(value: object) -> Optional[float]:
    """Parse a provider number.

    Zero and unparseable values are treated as absent: providers use 0 as a
    placeholder for "unknown" on money and size fields.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        s = str(value).strip().replace(",", "").replace("$", "")
        if not s:
            return None
        try:
            number = float(s)
        except ValueError:
            return None
    if number != number or number == 0:
        return None
    return number


def as_int(value: object) -> Optional[int]:
    number = as_number(value)
    if number is None:
        return None
    return int(round(number))


def as_coordinate(value: object) -> Optional[float]:
    # 0.0 is a real coordinate, so unlike as_number it is kept.
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return None
    if number != number:
        return None
    return number


def join_nonempty(parts: Iterable[Optional[str]], sep: str = ", ") -> str:
    return sep.join(p.strip() for p in parts if p and p.strip())
