"""Field extraction for the loosely typed upstream payloads.

The upstream names the same concept differently depending on the endpoint
(``variantSku`` / ``cjSku`` / ``sku``, ``sellPrice`` / ``nowPrice`` ...).
A FieldChain lists the candidate names in priority order and returns the
first value that is present and parses.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

Accessor = Callable[[Any], Any]

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_UNSIGNED_RE = re.compile(r"\d+(?:\.\d+)?")
_CJK_RE = re.compile(r"[\u4e00-\u9fff]+")
SIZE_RE = re.compile(r"^(XXS|XS|S|M|L|XL|XXL|XXXL|[2-6]XL|\d{1,3}(?:\.\d)?)$", re.IGNORECASE)


def dig(record: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts. Missing keys yield None."""
    current = record
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def as_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _NUMBER_RE.search(str(value))
    return float(match.group()) if match else None


def as_price(value: Any) -> Optional[float]:
    """Prices may come as ranges like "3.20 -- 5.80"; the lowest bound wins."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) if value > 0 else None
    if value is None:
        return None
    numbers = [float(n) for n in _UNSIGNED_RE.findall(str(value))]
    numbers = [n for n in numbers if n > 0]
    return min(numbers) if numbers else None


def as_max_float(value: Any) -> Optional[float]:
    """Weights may come as ranges like "120.00-150.00"; the heaviest bound wins."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) if value > 0 else None
    if value is None:
        return None
    numbers = [float(n) for n in _UNSIGNED_RE.findall(str(value))]
    numbers = [n for n in numbers if n > 0]
    return max(numbers) if numbers else None


def as_int(value: Any) -> Optional[int]:
    number = as_float(value)
    return int(number) if number is not None else None


def as_list(value: Any) -> Optional[List[Any]]:
    if isinstance(value, list):
        return value or None
    if isinstance(value, str) and value.strip().startswith("["):
        items = [s.strip(' "\'') for s in value.strip("[]").split(",")]
        return [s for s in items if s] or None
    return None


class FieldChain:
    """Ordered (field-name, accessor) candidates evaluated until one yields a value."""

    def __init__(self, name: str, candidates: Sequence[Tuple[str, Accessor]], default: Any = None) -> None:
        self.name = name
        self.candidates = list(candidates)
        self.default = default

    def extract(self, record: Any) -> Any:
        for path, accessor in self.candidates:
            value = accessor(dig(record, path))
            if value is not None:
                return value
        return self.default

    def extract_with_source(self, record: Any) -> Tuple[Any, Optional[str]]:
        for path, accessor in self.candidates:
            value = accessor(dig(record, path))
            if value is not None:
                return value, path
        return self.default, None


def chain(name: str, paths: Iterable[str], accessor: Accessor = as_str, default: Any = None) -> FieldChain:
    return FieldChain(name, [(p, accessor) for p in paths], default=default)


def normalize_key(value: Any) -> str:
    """Lowercase and strip separators so "BLK-L_01" and "blk l 01" compare equal."""
    text = as_str(value)
    if not text:
        return ""
    return re.sub(r"[\s\-_.]", "", text.lower())


def strip_cjk(value: Any) -> str:
    text = as_str(value) or ""
    return _CJK_RE.sub("", text).strip()


def parse_variant_key(variant_key: str) -> Tuple[str, str]:
    """Split a variant key like "Black-L" into (color, size)."""
    cleaned = strip_cjk(variant_key)
    parts = [p.strip() for p in re.split(r"[-/|_]+", cleaned) if p.strip()]
    size = ""
    color = ""
    for part in parts:
        if not size and SIZE_RE.match(part):
            size = part.upper()
        elif not color:
            color = part[:1].upper() + part[1:]
    return color, size


def parse_day_range(value: Any) -> Tuple[Optional[int], Optional[int]]:
    numbers = [int(float(n)) for n in _UNSIGNED_RE.findall(str(value or ""))]
    if not numbers:
        return None, None
    return min(numbers), max(numbers)
