"""
Extract an item number from scanner input during stocktake quick-verify.

Input is either a plain item number or the content of an asset label QR code:

    "Name\\nItem:AST-001\\nModel\\nS/N:123\\nOrg"

Some scanners strip the newlines, producing "NameItem:AST-001ModelS/N:123Org",
so the regex form is tried before the line-based fallback.
"""
import re

ITEM_MARKER = "Item:"

_ITEM_RE = re.compile(r"Item:\s?([A-Z]+-\d+|[A-Z]+\d+|\d+)", re.IGNORECASE | re.ASCII)


def extract_item_number(raw: str) -> str:
    item_number = raw.strip()
    if ITEM_MARKER not in raw:
        return item_number

    match = _ITEM_RE.search(raw)
    if match:
        return match.group(1)

    for line in raw.split("\n"):
        line = line.strip()
        if line.startswith(ITEM_MARKER):
            return line[len(ITEM_MARKER):].strip()
    return item_number
