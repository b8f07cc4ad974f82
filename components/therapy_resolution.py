"""
Therapy Resolution
==================
Match free-text therapy names (or invoice prices) against the user's catalog.
"""

import logging
from typing import Iterable, List, Tuple

from components.import_types import PRICE_MARKER_PREFIX, TherapyResolution, TherapyType

logger = logging.getLogger(__name__)

PRICE_TOLERANCE = 0.01


def _key(name: str) -> str:
    return (name or "").strip().lower()


def resolve_therapies(names: Iterable[str], catalog: List[TherapyType]) -> TherapyResolution:
    """
    Partition source names into matched catalog entries and missing names.

    Comparison is case-insensitive exact match on stripped text. The first
    catalog entry wins when two entries share a name.
    """
    by_name = {}
    for therapy in catalog:
        by_name.setdefault(_key(therapy.name), therapy)

    resolution = TherapyResolution()
    missing_keys = set()
    for name in names:
        key = _key(name)
        if not key:
            continue
        therapy = by_name.get(key)
        if therapy is not None:
            resolution.matched.setdefault(name, therapy)
        elif key not in missing_keys:
            missing_keys.add(key)
            resolution.missing.append(name)

    return resolution


def resolve_by_price(
    price: float,
    catalog: List[TherapyType],
    tolerance: float = PRICE_TOLERANCE,
) -> List[TherapyType]:
    """Catalog entries whose price per session is within `tolerance` of `price`."""
    return [t for t in catalog if abs(t.price_per_session - price) < tolerance + 1e-9]


def parse_price_marker(name: str) -> float:
    """'__price:80.0' -> 80.0. Raises ValueError for anything else."""
    if not name.startswith(PRICE_MARKER_PREFIX):
        raise ValueError(f"Not a price marker: {name!r}")
    return float(name[len(PRICE_MARKER_PREFIX):])


def price_marker(amount: float) -> str:
    return f"{PRICE_MARKER_PREFIX}{amount}"


def resolve_price_markers(
    markers: Iterable[str],
    catalog: List[TherapyType],
) -> Tuple[TherapyResolution, List[str]]:
    """
    Resolve price markers to catalog entries.

    Returns the resolution and a list of ambiguity warnings (more than one
    therapy at the same price; the first in catalog order is used).
    """
    resolution = TherapyResolution()
    ambiguities: List[str] = []
    for marker in markers:
        if marker in resolution.matched or marker in resolution.missing:
            continue
        try:
            price = parse_price_marker(marker)
        except ValueError:
            resolution.missing.append(marker)
            continue
        hits = resolve_by_price(price, catalog)
        if not hits:
            resolution.missing.append(marker)
            continue
        if len(hits) > 1:
            names = ", ".join(t.name for t in hits)
            ambiguities.append(
                f"Multiple therapy types match price €{price:.2f} ({names}); using {hits[0].name}"
            )
            logger.warning("Ambiguous price %.2f matches %s", price, names)
        resolution.matched[marker] = hits[0]
    return resolution, ambiguities
