"""Candidate selection for parts sourcing.

Price is the dominant signal, but stock status is a hard pre-filter: an
available part beats any cheaper part that cannot ship.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any


def normalize_price(raw: Any) -> float | None:
    """Coerce a marketplace price into a positive amount in dollars.

    Accepts numbers and strings such as ``"$1,234.50"``. Returns None for
    anything missing, unparseable, non-finite or not strictly positive.
    Amounts are rounded to cents.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        text = raw.replace("$", "").replace(",", "").strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    else:
        return None

    if not math.isfinite(value) or value <= 0:
        return None
    return round(value, 2)


@dataclass
class Candidate:
    """A priced search result for one requested part."""

    price: float | None
    """Normalized price, or None when the listing had no usable price."""

    brand: str | None = None
    part_number: str | None = None
    in_stock: bool = False
    supplier: str | None = None
    description: str | None = None

    @classmethod
    def from_listing(cls, listing: Mapping[str, Any]) -> Candidate:
        """Build a candidate from a marketplace listing dict.

        Recognizes the common key spellings (``partNumber``/``part_number``,
        ``inStock``/``in_stock``, ``shopPrice``/``price``/``cost``).
        """
        raw_price = next(
            (listing[k] for k in ("shopPrice", "price", "cost") if listing.get(k) is not None),
            None,
        )
        in_stock = listing.get("inStock", listing.get("in_stock", False))
        return cls(
            price=normalize_price(raw_price),
            brand=listing.get("brand") or listing.get("manufacturer"),
            part_number=listing.get("partNumber") or listing.get("part_number"),
            in_stock=bool(in_stock),
            supplier=listing.get("supplier"),
            description=listing.get("description") or listing.get("name"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "price": self.price,
            "brand": self.brand,
            "part_number": self.part_number,
            "in_stock": self.in_stock,
            "supplier": self.supplier,
            "description": self.description,
        }


def pick_best(candidates: Iterable[Candidate]) -> Candidate | None:
    """Choose the cheapest in-stock candidate.

    Candidates without a positive price are discarded first. If none of the
    remainder is in stock, the cheapest overall is returned. Ties keep the
    first candidate encountered.
    """
    priced = [c for c in candidates if normalize_price(c.price) is not None]
    if not priced:
        return None

    pool = [c for c in priced if c.in_stock] or priced
    # min() returns the first minimal element, which gives encounter-order ties
    return min(pool, key=lambda c: normalize_price(c.price) or 0.0)


__all__ = ["Candidate", "normalize_price", "pick_best"]
