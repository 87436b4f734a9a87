"""
SUNTRENIA PROCESSOR
Claude-based incident classification, weekly briefings and state risk
assessments

Features:
- Retry, circuit breaker and rate limiting around every Claude call
- JSON parsing resilience with multiple fallback strategies
- Batch enrichment with partial failure tolerance
- Works without an API key: enrichment is skipped with a warning
"""

import os
import re
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from typing import List, Optional, Dict, Any, Tuple

import anthropic

from .dedup import CanonicalItem
from .stats import (
    CATEGORY_RULES,
    OTHER_CATEGORY,
    AggregateStats,
    canonical_state,
    mentions_state,
    state_to_iso_code,
)
from .shared.resilience import (
    OPEN,
    CircuitOpenError,
    RateLimitError,
    RetryExhaustedError,
    guard_for,
    guarded,
    with_fallback,
)

logger = logging.getLogger(__name__)


# =============================================================================
# ENRICHMENT MODEL
# =============================================================================

# keyword-rule categories plus the ones only the model assigns
VALID_CATEGORIES = [label for label, _ in CATEGORY_RULES] + ["Cult Violence", "Armed Robbery", OTHER_CATEGORY]
VALID_SEVERITIES = ["Low", "Medium", "High", "Critical"]
RISK_LEVELS = ("Critical", "High", "Medium", "Low")

ENRICH_BATCH_SIZE = 5
PATTERN_SAMPLE = 20
DEFAULT_MODEL = "claude-sonnet-4-20250514"
CLAUDE_KEY = "anthropic"


@dataclass(frozen=True)
class Enrichment:
    """Structured facts the model extracted from one incident report"""
    category: str = OTHER_CATEGORY
    severity: str = "Medium"
    deaths: int = 0
    injuries: int = 0
    abducted: int = 0
    perpetrators: str = "Unknown"
    locations: Tuple[str, ...] = ()
    extracted_facts: Tuple[str, ...] = ()
    fallback: bool = False       # True when the reply could not be parsed

    @classmethod
    def fallback_for(cls, reply: str = "") -> "Enrichment":
        facts = (reply[:100],) if reply else ()
        return cls(extracted_facts=facts, fallback=True)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["locations"] = list(self.locations)
        data["extracted_facts"] = list(self.extracted_facts)
        return data


def extract_json_from_text(text: str) -> Optional[Dict[str, Any]]:
    """
    Pull a JSON object out of a model reply.

    Handles clean JSON, markdown code blocks, leading/trailing prose and
    trailing commas.
    """
    if not text:
        return None

    try:
        parsed = json.loads(text.strip())
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass

    patterns = [
        r"```json\s*([\s\S]*?)\s*```",
        r"```\s*([\s\S]*?)\s*```",
        r"\{[\s\S]*\}",
    ]
    for pattern in patterns:
        for match in re.findall(pattern, text):
            cleaned = match.strip()
            cleaned = re.sub(r",\s*}", "}", cleaned)
            cleaned = re.sub(r",\s*]", "]", cleaned)
            try:
                parsed = json.loads(cleaned)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict):
                return parsed

    return None


def _as_count(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _as_strings(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value else ()
    if isinstance(value, list):
        return tuple(str(v) for v in value if v)
    return ()


def _pick(value: Any, choices: List[str], default: str) -> str:
    text = str(value or "").strip().lower()
    for choice in choices:
        if text == choice.lower():
            return choice
    if text:
        for choice in choices:
            if choice.lower() in text or text in choice.lower():
                return choice
    return default


def enrichment_from_result(result: Dict[str, Any]) -> Enrichment:
    """Validate a parsed classification reply and coerce it into an Enrichment"""
    casualties = result.get("casualties") or {}
    if not isinstance(casualties, dict):
        casualties = {}

    perpetrators = result.get("perpetrators")
    if isinstance(perpetrators, list):
        perpetrators = ", ".join(str(p) for p in perpetrators if p)

    return Enrichment(
        category=_pick(result.get("category"), VALID_CATEGORIES, OTHER_CATEGORY),
        severity=_pick(result.get("severity"), VALID_SEVERITIES, "Medium"),
        deaths=_as_count(casualties.get("deaths")),
        injuries=_as_count(casualties.get("injuries")),
        abducted=_as_count(casualties.get("abducted")),
        perpetrators=str(perpetrators or "Unknown"),
        locations=_as_strings(result.get("locations")),
        extracted_facts=_as_strings(result.get("extracted_facts")),
    )


def extract_risk_level(text: str, default: str = "Medium") -> str:
    """Find 'Risk Level: High', 'High Risk' or 'risk level is high' in free text"""
    if not text:
        return default
    for level in RISK_LEVELS:
        patterns = [
            rf"risk\s+level\s*[:\-]\s*\**\s*{level}\b",
            rf"\b{level}\s+risk\b",
            rf"risk\s+level\s+is\s+{level}\b",
        ]
        if any(re.search(p, text, re.IGNORECASE) for p in patterns):
            return level
    return default


@dataclass
class StateRiskAssessment:
    state: str
    risk_level: str
    analysis: str
    incident_count: int
    iso_code: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class IncidentAnalysis:
    """Overall read of one batch of incidents"""
    risk_level: str
    analysis: str
    incident_count: int

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# PROMPTS
# =============================================================================

SYSTEM_PROMPT = (
    "You are a professional security intelligence analyst specializing in "
    "Nigerian security affairs. Provide accurate, actionable, and "
    "well-structured analysis."
)


def build_classification_prompt(title: str, summary: str) -> str:
    return f"""Classify this security incident into ONE category and extract key details:

Title: {title}
Summary: {summary}

Respond with ONLY valid JSON in this exact format:
{{
  "category": "{'|'.join(VALID_CATEGORIES)}",
  "severity": "{'|'.join(VALID_SEVERITIES)}",
  "casualties": {{"deaths": number, "injuries": number, "abducted": number}},
  "perpetrators": "identified group or unknown",
  "locations": ["specific locations mentioned"],
  "extracted_facts": ["key fact 1", "key fact 2"]
}}"""


def build_briefing_prompt(stats: AggregateStats, items: List[CanonicalItem], affected_states: List[str]) -> str:
    top = "\n".join(f"{i + 1}. {item.title}" for i, item in enumerate(items[:10]))
    return f"""Generate a professional executive briefing for Nigerian security stakeholders.

STATISTICS:
- Total Incidents: {stats.total_incidents}
- States Affected: {len(affected_states)}
- Estimated Casualties: {stats.estimated_fatalities}
- Abductions: {stats.abduction_count}

TOP INCIDENTS:
{top}

AFFECTED STATES: {', '.join(affected_states)}

Create a briefing with:
1. SITUATION OVERVIEW (2-3 paragraphs)
2. HOTSPOT ANALYSIS (identify 3-4 critical areas)
3. EMERGING THREATS (new patterns or escalations)
4. RECOMMENDATIONS (3-5 actionable items)

Write in professional intelligence briefing style."""


def build_state_risk_prompt(state: str, items: List[CanonicalItem]) -> str:
    listed = "\n".join(f"{i + 1}. {item.title}" for i, item in enumerate(items))
    return f"""Analyze the security situation in {state} state, Nigeria:

INCIDENTS ({len(items)} reported):
{listed}

Provide:
1. Risk Level: Low/Medium/High/Critical
2. Primary Threats (categorized)
3. Vulnerable Areas
4. Trend Analysis
5. Specific Recommendations for {state}

Format as structured analysis."""


def build_analysis_prompt(items: List[CanonicalItem]) -> str:
    listed = "\n".join(f"{i + 1}. {item.title} - {item.summary}" for i, item in enumerate(items))
    return f"""Analyze these Nigerian security incidents and provide:
1. Executive Summary (2-3 sentences)
2. Key Trends
3. Most Affected Regions
4. Risk Level: Low/Medium/High/Critical
5. Recommended Actions

Incidents:
{listed}

Provide structured analysis."""


def build_narrative_prompt(item: CanonicalItem, location: str = "") -> str:
    return f"""Convert this security incident into a flowing narrative paragraph suitable for a report:

Incident: {item.title}
Details: {item.summary}
Location: {location or "Not specified"}
Date: {item.timestamp or "Not specified"}

Write a concise, professional 2-3 sentence summary that captures the key facts."""


def build_pattern_prompt(current: List[CanonicalItem], previous: List[CanonicalItem]) -> str:
    this_week = "\n".join(item.title for item in current[:PATTERN_SAMPLE])
    last_week = "\n".join(item.title for item in previous[:PATTERN_SAMPLE])
    return f"""Compare these two weeks of Nigerian security incidents:

CURRENT WEEK ({len(current)} incidents):
{this_week}

PREVIOUS WEEK ({len(previous)} incidents):
{last_week}

Identify:
1. Escalating threats (increase in frequency or severity)
2. New patterns or tactics
3. Geographic shifts
4. Changes in perpetrator activity
5. Notable differences

Provide actionable intelligence insights."""


def build_alert_prompt(item: CanonicalItem) -> str:
    return f"""Generate a concise security alert for this incident:

{item.title}
{item.summary}

Format:
ALERT: [Category] - [Location]
SEVERITY: [Level]
DETAILS: [2-3 sentences]
ACTION REQUIRED: [Yes/No and why]

Keep it under 100 words, urgent tone."""


# =============================================================================
# CLAUDE ENRICHER
# =============================================================================

class IncidentEnricher:
    """Enrich incidents and write briefings through the Anthropic Messages API"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        enrich_limit: int = 50,
        client: Optional[Any] = None,
    ):
        self.model = model
        self.enrich_limit = enrich_limit

        key = api_key if api_key is not None else os.getenv("ANTHROPIC_API_KEY", "")
        if client is not None:
            self.client = client
        elif key:
            self.client = anthropic.Anthropic(api_key=key)
        else:
            logger.warning("ANTHROPIC_API_KEY not set, AI enrichment disabled")
            self.client = None

    @classmethod
    def from_settings(cls, settings) -> "IncidentEnricher":
        return cls(
            api_key=settings.anthropic_api_key,
            model=settings.ai_model,
            enrich_limit=settings.enrich_limit,
        )

    def is_available(self) -> bool:
        if self.client is None:
            return False
        return guard_for(CLAUDE_KEY).state != OPEN

    @guarded(
        CLAUDE_KEY,
        retries=2,
        backoff=2.0,
        retry_on=(anthropic.APIConnectionError, anthropic.InternalServerError),
    )
    def _complete(self, prompt: str, max_tokens: int = 1000, temperature: float = 0.3) -> str:
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as e:
            raise RateLimitError(CLAUDE_KEY, retry_after=60) from e
        return response.content[0].text

    def classify(self, item: CanonicalItem) -> Optional[Enrichment]:
        """
        Classify one incident.

        Returns None when the API call fails, a fallback Enrichment when the
        reply is not parsable JSON.
        """
        prompt = build_classification_prompt(item.title, item.summary)
        try:
            reply = self._complete(prompt, temperature=0.1)
        except (CircuitOpenError, RateLimitError) as e:
            logger.warning(f"Claude unavailable for '{item.title[:50]}': {e}")
            return None
        except RetryExhaustedError as e:
            logger.error(f"Claude failed after retries for '{item.title[:50]}': {e}")
            return None
        except Exception as e:
            logger.error(f"Failed to enrich incident '{item.title[:50]}': {e}")
            return None

        result = extract_json_from_text(reply)
        if result is None:
            logger.warning(f"Could not parse classification for '{item.title[:50]}'")
            return Enrichment.fallback_for(reply)
        return enrichment_from_result(result)

    def enrich_batch(self, items: List[CanonicalItem]) -> List[CanonicalItem]:
        """
        Classify up to enrich_limit items in groups of ENRICH_BATCH_SIZE.

        Items past the limit, and items whose call failed, are returned
        un-enriched. Order is preserved.
        """
        if not self.is_available():
            logger.warning("Claude enricher not available, returning items un-enriched")
            return list(items)

        head = list(items[:self.enrich_limit])
        enriched: List[CanonicalItem] = []

        with ThreadPoolExecutor(max_workers=ENRICH_BATCH_SIZE) as executor:
            for start in range(0, len(head), ENRICH_BATCH_SIZE):
                batch = head[start:start + ENRICH_BATCH_SIZE]
                results = list(executor.map(self.classify, batch))
                for item, enrichment in zip(batch, results):
                    enriched.append(item.with_enrichment(enrichment) if enrichment is not None else item)

        count = sum(1 for item in enriched if item.enrichment is not None)
        logger.info(f"Enriched {count}/{len(head)} incidents ({len(items)} total)")
        return enriched + list(items[self.enrich_limit:])

    @with_fallback(None)
    def generate_briefing(
        self,
        stats: AggregateStats,
        items: List[CanonicalItem],
        affected_states: List[str],
    ) -> Optional[str]:
        """Weekly executive briefing, None when the model is unavailable"""
        if not self.is_available():
            logger.warning("Claude enricher not available, skipping briefing")
            return None
        return self._complete(build_briefing_prompt(stats, items, affected_states), max_tokens=2000)

    def assess_state_risk(self, state: str, items: List[CanonicalItem]) -> StateRiskAssessment:
        name = canonical_state(state) or state.strip().title()
        state_items = [item for item in items if mentions_state(f"{item.title} {item.summary}", name)]

        if not state_items:
            return StateRiskAssessment(
                state=name,
                risk_level="Low",
                analysis=f"No significant security incidents reported for {name} this week.",
                incident_count=0,
                iso_code=state_to_iso_code(name),
            )

        analysis = None
        if self.is_available():
            try:
                analysis = self._complete(build_state_risk_prompt(name, state_items))
            except Exception as e:
                logger.error(f"State risk assessment failed for {name}: {e}")

        return StateRiskAssessment(
            state=name,
            risk_level=extract_risk_level(analysis or ""),
            analysis=analysis or f"{len(state_items)} incidents reported for {name}; AI analysis unavailable.",
            incident_count=len(state_items),
            iso_code=state_to_iso_code(name),
        )

    @with_fallback(None)
    def analyze_incidents(self, items: List[CanonicalItem]) -> Optional[IncidentAnalysis]:
        """Executive summary, trends and an overall risk level, None when unavailable"""
        if not items or not self.is_available():
            return None
        analysis = self._complete(build_analysis_prompt(items[:self.enrich_limit]))
        return IncidentAnalysis(
            risk_level=extract_risk_level(analysis),
            analysis=analysis,
            incident_count=len(items),
        )

    @with_fallback(None)
    def summarize_incident(self, item: CanonicalItem) -> Optional[str]:
        """Two or three report-ready sentences about one incident"""
        if not self.is_available():
            return None
        location = ", ".join(item.enrichment.locations) if item.enrichment is not None else ""
        return self._complete(build_narrative_prompt(item, location), max_tokens=200)

    @with_fallback(None)
    def detect_patterns(self, current: List[CanonicalItem], previous: List[CanonicalItem]) -> Optional[str]:
        """Week-over-week comparison, None when there is nothing to compare or no model"""
        if not current and not previous:
            return None
        if not self.is_available():
            return None
        return self._complete(build_pattern_prompt(current, previous))

    @with_fallback(None)
    def generate_alert(self, item: CanonicalItem) -> Optional[str]:
        """Short urgent alert text for one incident"""
        if not self.is_available():
            return None
        return self._complete(build_alert_prompt(item), max_tokens=150)
