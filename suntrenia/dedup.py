"""
NEAR-DUPLICATE REMOVAL

The same incident is usually reported by several outlets with slightly
different headlines ("Gunmen kill five..." / "Gunmen kill 5..."). Items
are compared on their normalized titles using Levenshtein similarity;
the first report of an incident wins.
"""

import re
import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Iterable, TYPE_CHECKING

from .aggregator import RawItem

if TYPE_CHECKING:
    from .processor import Enrichment

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.8

_NON_ALNUM = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")


def normalize_title(title: Optional[str]) -> str:
    """Lowercase, strip punctuation, collapse whitespace"""
    if not title:
        return ""
    text = _NON_ALNUM.sub("", title.lower())
    return _WHITESPACE.sub(" ", text).strip()


def levenshtein_distance(a: str, b: str) -> int:
    """Unit-cost edit distance, two-row dynamic programming"""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,                 # deletion
                current[j - 1] + 1,              # insertion
                previous[j - 1] + (ca != cb),    # substitution
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1 - distance / longer length; two empty strings are identical"""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def dedupe(items: Iterable[RawItem], threshold: float = SIMILARITY_THRESHOLD) -> List[RawItem]:
    """
    Drop items whose normalized title is too similar to an earlier one.

    Order-preserving and idempotent. Quadratic in the number of items,
    which stays in the low hundreds per refresh.
    """
    accepted: List[RawItem] = []
    accepted_titles: List[str] = []
    total = 0

    for item in items:
        total += 1
        title = normalize_title(getattr(item, "title", "") or "")
        if any(similarity(title, seen) >= threshold for seen in accepted_titles):
            continue
        accepted.append(item)
        accepted_titles.append(title)

    logger.info(f"Dedup: {len(accepted)}/{total} items kept")
    return accepted


@dataclass(frozen=True)
class CanonicalItem:
    """A deduplicated incident report, optionally carrying AI enrichment"""
    item: RawItem
    normalized_title: str
    enrichment: Optional["Enrichment"] = None

    @property
    def title(self) -> str:
        return self.item.title

    @property
    def summary(self) -> str:
        return self.item.summary

    @property
    def timestamp(self) -> str:
        return self.item.timestamp

    @property
    def is_enriched(self) -> bool:
        return self.enrichment is not None

    def with_enrichment(self, enrichment: "Enrichment") -> "CanonicalItem":
        return replace(self, enrichment=enrichment)

    def to_dict(self) -> dict:
        data = self.item.to_dict()
        data["normalized_title"] = self.normalized_title
        data["enrichment"] = self.enrichment.to_dict() if self.enrichment is not None else None
        return data


def canonicalize(items: Iterable[RawItem]) -> List[CanonicalItem]:
    return [CanonicalItem(item=item, normalized_title=normalize_title(item.title)) for item in items]
