"""
INCIDENT STATISTICS
State attribution, category classification, date buckets and casualty
estimates over a deduplicated batch of incident reports.

STATE_KEYWORDS is the single state mapping used by aggregation, AI state
risk filtering and map identifiers.
"""

import re
import logging
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Iterable, Optional, Tuple

from .shared.validation import FreshnessValidator

logger = logging.getLogger(__name__)


# =============================================================================
# STATES
# =============================================================================

STATE_KEYWORDS: Dict[str, List[str]] = {
    "Abia": ["abia"],
    "Adamawa": ["adamawa"],
    "Akwa Ibom": ["akwa ibom", "akwa-ibom", "akwaibom"],
    "Anambra": ["anambra"],
    "Bauchi": ["bauchi"],
    "Bayelsa": ["bayelsa"],
    "Benue": ["benue"],
    "Borno": ["borno"],
    "Cross River": ["cross river", "cross-river", "cross–river", "cross—river", "crossriver"],
    "Delta": ["delta"],
    "Ebonyi": ["ebonyi"],
    "Edo": ["edo"],
    "Ekiti": ["ekiti"],
    "Enugu": ["enugu"],
    "Gombe": ["gombe"],
    "Imo": ["imo"],
    "Jigawa": ["jigawa"],
    "Kaduna": ["kaduna"],
    "Kano": ["kano"],
    "Katsina": ["katsina"],
    "Kebbi": ["kebbi"],
    "Kogi": ["kogi"],
    "Kwara": ["kwara"],
    "Lagos": ["lagos"],
    "Nasarawa": ["nasarawa", "nassarawa"],
    "Niger": ["niger"],
    "Ogun": ["ogun"],
    "Ondo": ["ondo"],
    "Osun": ["osun"],
    "Oyo": ["oyo"],
    "Plateau": ["plateau"],
    "Rivers": ["rivers"],
    "Sokoto": ["sokoto"],
    "Taraba": ["taraba"],
    "Yobe": ["yobe"],
    "Zamfara": ["zamfara"],
    "FCT": ["fct", "abuja", "federal capital territory"],
}

# the Niger Delta is a region, not Niger or Delta state
STATE_EXCLUSIONS: Dict[str, List[str]] = {
    "Niger": ["niger delta"],
    "Delta": ["niger delta"],
}

NIGERIAN_STATES: List[str] = list(STATE_KEYWORDS)

STATE_ISO_CODES: Dict[str, str] = {
    "Abia": "NG-AB", "Adamawa": "NG-AD", "Akwa Ibom": "NG-AK", "Anambra": "NG-AN",
    "Bauchi": "NG-BA", "Bayelsa": "NG-BY", "Benue": "NG-BE", "Borno": "NG-BO",
    "Cross River": "NG-CR", "Delta": "NG-DE", "Ebonyi": "NG-EB", "Edo": "NG-ED",
    "Ekiti": "NG-EK", "Enugu": "NG-EN", "Gombe": "NG-GO", "Imo": "NG-IM",
    "Jigawa": "NG-JI", "Kaduna": "NG-KD", "Kano": "NG-KN", "Katsina": "NG-KT",
    "Kebbi": "NG-KE", "Kogi": "NG-KO", "Kwara": "NG-KW", "Lagos": "NG-LA",
    "Nasarawa": "NG-NA", "Niger": "NG-NI", "Ogun": "NG-OG", "Ondo": "NG-ON",
    "Osun": "NG-OS", "Oyo": "NG-OY", "Plateau": "NG-PL", "Rivers": "NG-RI",
    "Sokoto": "NG-SO", "Taraba": "NG-TA", "Yobe": "NG-YO", "Zamfara": "NG-ZA",
    "FCT": "NG-FC",
}


def _word_pattern(terms: Iterable[str]) -> re.Pattern:
    alternatives = "|".join(re.escape(term) for term in terms)
    return re.compile(rf"\b(?:{alternatives})\b")


_STATE_PATTERNS: Dict[str, re.Pattern] = {
    state: _word_pattern(keywords) for state, keywords in STATE_KEYWORDS.items()
}


def canonical_state(name: str) -> Optional[str]:
    """Resolve a state name or alias ("abuja", "akwa-ibom") to its canonical name"""
    if not name:
        return None
    lowered = name.strip().lower()
    for state, keywords in STATE_KEYWORDS.items():
        if lowered == state.lower() or lowered in keywords:
            return state
    return None


def state_to_iso_code(name: str) -> str:
    """ISO 3166-2 code used as the path id on the Nigeria map, '' when unknown"""
    state = canonical_state(name)
    return STATE_ISO_CODES.get(state, "") if state else ""


def attribute_states(text: str) -> List[str]:
    """All states mentioned in text, each once, in canonical order"""
    if not text:
        return []
    lowered = text.lower()
    found = []
    for state, pattern in _STATE_PATTERNS.items():
        candidate = lowered
        for phrase in STATE_EXCLUSIONS.get(state, []):
            candidate = candidate.replace(phrase, " ")
        if pattern.search(candidate):
            found.append(state)
    return found


def mentions_state(text: str, state: str) -> bool:
    return state in attribute_states(text)


# =============================================================================
# CATEGORIES
# =============================================================================

OTHER_CATEGORY = "Other"

# first match wins
CATEGORY_RULES: Tuple[Tuple[str, re.Pattern], ...] = (
    ("Kidnapping", re.compile(r"\b(?:kidnap|abduct|hostage|ransom)")),
    ("Banditry", re.compile(r"\bbandit")),
    ("Terrorism", re.compile(r"\b(?:boko|iswap|ipob|esn\b)")),
    ("Communal/Herder-Farmer Conflict", re.compile(r"\b(?:herder|herdsm|communal|fulani)")),
)

ABDUCTION_PATTERN = re.compile(r"\b(?:kidnap|abduct)")
DEATH_PATTERN = re.compile(r"\b(?:kill|death|dead|died)")

FATALITY_MULTIPLIER = 2


def classify_incident(text: str) -> str:
    lowered = (text or "").lower()
    for category, pattern in CATEGORY_RULES:
        if pattern.search(lowered):
            return category
    return OTHER_CATEGORY


# =============================================================================
# AGGREGATION
# =============================================================================

@dataclass
class AggregateStats:
    total_incidents: int = 0
    by_state: Dict[str, int] = field(default_factory=dict)
    by_category: Dict[str, int] = field(default_factory=dict)
    by_date: Dict[str, int] = field(default_factory=dict)
    abduction_count: int = 0
    estimated_fatalities: int = 0
    states_affected: int = 0

    @classmethod
    def empty(cls) -> "AggregateStats":
        return cls()

    @property
    def affected_states(self) -> List[str]:
        return [state for state, count in self.by_state.items() if count > 0]

    def copy(self) -> "AggregateStats":
        return replace(
            self,
            by_state=dict(self.by_state),
            by_category=dict(self.by_category),
            by_date=dict(self.by_date),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def _item_text(item) -> str:
    return f"{getattr(item, 'title', '') or ''} {getattr(item, 'summary', '') or ''}".lower()


def aggregate(items: Iterable, fatality_multiplier: int = FATALITY_MULTIPLIER) -> AggregateStats:
    """
    Compute AggregateStats over RawItems or CanonicalItems.

    Items with unparsable timestamps are counted everywhere except by_date.
    """
    stats = AggregateStats()
    by_state: Dict[str, int] = {}
    by_date: Dict[str, int] = {}
    death_items = 0

    for item in items:
        text = _item_text(item)
        stats.total_incidents += 1

        for state in attribute_states(text):
            by_state[state] = by_state.get(state, 0) + 1

        category = classify_incident(text)
        stats.by_category[category] = stats.by_category.get(category, 0) + 1

        if ABDUCTION_PATTERN.search(text):
            stats.abduction_count += 1
        if DEATH_PATTERN.search(text):
            death_items += 1

        parsed = FreshnessValidator.parse_timestamp(getattr(item, "timestamp", None))
        if parsed is not None:
            day = parsed.date().isoformat()
            by_date[day] = by_date.get(day, 0) + 1

    stats.by_state = {state: by_state[state] for state in NIGERIAN_STATES if by_state.get(state)}
    stats.by_date = dict(sorted(by_date.items()))
    stats.estimated_fatalities = death_items * fatality_multiplier
    stats.states_affected = len(stats.by_state)

    logger.info(
        f"Aggregated {stats.total_incidents} incidents across {stats.states_affected} states"
    )
    return stats


def week_label(now: Optional[datetime] = None) -> str:
    """'Week 3 | Mon Jan 13 2025 - Sun Jan 19 2025' for the ISO week containing now"""
    now = now or datetime.now(timezone.utc)
    start = (now - timedelta(days=now.weekday())).date()
    end = start + timedelta(days=6)
    week = now.isocalendar()[1]
    return f"Week {week} | {start:%a %b %d %Y} - {end:%a %b %d %Y}"


def split_by_week(items: Iterable, now: Optional[datetime] = None) -> Tuple[List, List]:
    """
    Split items into (last 7 days, the 7 days before that).

    Items with unparsable or future timestamps count as current; anything
    older than 14 days is left out of both.
    """
    now = now or datetime.now(timezone.utc)
    week_ago = now - timedelta(days=7)
    two_weeks_ago = now - timedelta(days=14)
    current, previous = [], []

    for item in items:
        parsed = FreshnessValidator.parse_timestamp(getattr(item, "timestamp", None))
        if parsed is None or parsed >= week_ago:
            current.append(item)
        elif parsed >= two_weeks_ago:
            previous.append(item)

    return current, previous
