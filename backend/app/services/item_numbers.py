import re
from typing import Iterable, Tuple

_NON_DIGITS = re.compile(r"\D", re.ASCII)


def numeric_part(item_number: str) -> int:
    digits = _NON_DIGITS.sub("", item_number or "")
    return int(digits) if digits else 0


def natural_key(item_number: str) -> Tuple[int, str]:
    """Sort key: digits of the item number as an integer, then the raw string."""
    return numeric_part(item_number), item_number or ""


def next_item_number(existing: Iterable[str]) -> str:
    """Highest purely numeric item number + 1, or "1" when there is none."""
    highest = 0
    for item_number in existing:
        value = (item_number or "").strip()
        if value.isascii() and value.isdigit():
            highest = max(highest, int(value))
    return str(highest + 1)
