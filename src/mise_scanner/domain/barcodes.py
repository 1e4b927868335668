# src/mise_scanner/domain/barcodes.py
from __future__ import annotations

import math
import re
from typing import Any

_NON_DIGITS = re.compile(r"\D")

# Reihenfolge ist relevant: der erste Treffer schneidet ab
NAME_SEPARATORS = (" | ", " - ", " — ", " – ")


def normalize_code(raw: Any) -> str:
    """
    Canonicalizes a raw barcode into a digits-only key.

    Spreadsheet exports often turn long EANs into scientific notation
    ("7.8913E+12"). Those values are expanded through float, so digits beyond
    float precision are lost. That imprecision is accepted.
    """
    if raw is None:
        return ""
    text = str(raw).strip()
    if not text:
        return ""

    if "e" in text.lower():
        try:
            value = float(text)
        except ValueError:
            return _NON_DIGITS.sub("", text)
        if not math.isfinite(value):
            return _NON_DIGITS.sub("", text)
        return _NON_DIGITS.sub("", f"{value:.0f}")

    return _NON_DIGITS.sub("", text)


def clean_product_name(name: str | None) -> str:
    """Keeps only the part of a product title before the first separator."""
    if not name:
        return ""
    cleaned = name.strip()
    for separator in NAME_SEPARATORS:
        if separator in cleaned:
            cleaned = cleaned.split(separator, 1)[0].strip()
    return cleaned
