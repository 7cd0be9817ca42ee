"""Visible POI subset from category, name search and radius."""

from typing import Iterable, Optional

from .config import CONFIG
from .geo import poi_distance_km
from .models import FilterCriteria, Location, POI


def apply_filters(catalog: Iterable[POI], criteria: FilterCriteria,
                  position: Optional[Location]) -> Optional[list[POI]]:
    """Filter the catalog, keeping catalog order.

    Returns None while the position is unknown; callers keep their previous
    result in that case rather than evaluating the radius against nothing.
    """
    if position is None:
        return None

    results = list(catalog)

    if criteria.category != CONFIG["all_categories"]:
        results = [p for p in results if p.category == criteria.category]

    if criteria.search_text.strip():
        needle = criteria.search_text.lower()
        results = [p for p in results if needle in p.name.lower()]

    if criteria.radius_km != 0:
        results = [p for p in results if poi_distance_km(position, p) <= criteria.radius_km]

    return results
