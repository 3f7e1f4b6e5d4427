"""Name based classification of incoming data.

Pure functions only: a file or collection name maps onto the closed
``ChangeCategory`` set and a subject identifier is pulled out of file names.
"""

import re
import time
from collections.abc import Iterable

from changeloop.core.types import ChangeCategory

# Checked in order; the first matching rule wins.
_CATEGORY_RULES: tuple[tuple[ChangeCategory, tuple[str, ...]], ...] = (
    (ChangeCategory.REVIEWS, ("review", "feedback")),
    (ChangeCategory.METRICS, ("metric", "analytics")),
    (ChangeCategory.SALES, ("sales", "revenue")),
    (ChangeCategory.CUSTOMERS, ("customer", "user")),
)

_SUBJECT_PATTERN = re.compile(r"startup[_-]?(\w+)", re.IGNORECASE)


def classify_name(name: str) -> ChangeCategory:
    """Classify a file or collection name by substring.

    >>> classify_name("App_Reviews_2024.json")
    <ChangeCategory.REVIEWS: 'reviews'>
    """
    lower = name.lower()
    for category, needles in _CATEGORY_RULES:
        if any(needle in lower for needle in needles):
            return category
    return ChangeCategory.GENERAL


def extract_subject_id(filenames: Iterable[str]) -> str | None:
    """Return the token following ``startup_``/``startup-`` in the first match."""
    for filename in filenames:
        match = _SUBJECT_PATTERN.search(filename)
        if match:
            return match.group(1)
    return None


def synthesize_subject_id(prefix: str) -> str:
    """Time based fallback identifier, e.g. ``auto_1718000000000``."""
    return f"{prefix}_{int(time.time() * 1000)}"
