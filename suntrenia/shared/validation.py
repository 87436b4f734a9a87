"""
SUNTRENIA DATA VALIDATION MODULE
Schema checks for upstream payloads and tolerant timestamp parsing

Upstream feeds are unreliable and inconsistently structured. Validation
here never drops a usable incident: missing fields are reported as issues
and replaced with safe defaults by the callers.
"""

import re
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Any, Optional, List, Tuple, Union
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


# =============================================================================
# VALIDATION RESULT TYPES
# =============================================================================

class ValidationSeverity(Enum):
    """Severity levels for validation issues"""
    INFO = "info"           # Informational, data is valid
    WARNING = "warning"     # Data is usable but flagged
    ERROR = "error"         # Data is invalid, should not be used


@dataclass
class ValidationIssue:
    """Represents a single validation issue"""
    field: str
    message: str
    severity: ValidationSeverity
    actual_value: Any = None


@dataclass
class ValidationResult:
    """Result of a validation operation"""
    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_issue(
        self,
        field: str,
        message: str,
        severity: ValidationSeverity,
        actual_value: Any = None,
    ):
        self.issues.append(ValidationIssue(
            field=field,
            message=message,
            severity=severity,
            actual_value=actual_value,
        ))
        if severity == ValidationSeverity.ERROR:
            self.valid = False

    def merge(self, other: "ValidationResult"):
        for issue in other.issues:
            self.add_issue(issue.field, issue.message, issue.severity, issue.actual_value)

    def log_issues(self, prefix: str = ""):
        """Log all issues at appropriate levels"""
        for issue in self.issues:
            msg = f"{prefix}[{issue.field}] {issue.message}"
            if issue.severity == ValidationSeverity.INFO:
                logger.info(msg)
            elif issue.severity == ValidationSeverity.WARNING:
                logger.warning(msg)
            else:
                logger.error(msg)


# =============================================================================
# SCHEMAS
# =============================================================================

# GNews-style search response article
NEWS_SEARCH_ARTICLE_SCHEMA = {
    "required": ["title", "url"],
    "types": {
        "title": str,
        "url": str,
        "description": (str, type(None)),
        "content": (str, type(None)),
        "publishedAt": str,
        "source": dict,
    },
}


class SchemaValidator:
    """Validates data structures against defined schemas"""

    @staticmethod
    def validate_schema(
        data: Dict[str, Any],
        schema: Dict[str, Any],
        schema_name: str = "data",
    ) -> ValidationResult:
        """
        Validate a dictionary against a schema definition.

        Missing required fields are ERRORs, type mismatches are WARNINGs.
        """
        result = ValidationResult(valid=True)

        if not isinstance(data, dict):
            result.add_issue(
                schema_name, f"Expected dict, got {type(data).__name__}",
                ValidationSeverity.ERROR,
                actual_value=type(data).__name__,
            )
            return result

        for name in schema.get("required", []):
            if data.get(name) in (None, ""):
                result.add_issue(
                    f"{schema_name}.{name}",
                    f"Required field '{name}' is missing or empty",
                    ValidationSeverity.ERROR,
                )

        for name, expected_types in schema.get("types", {}).items():
            value = data.get(name)
            if value is None:
                continue
            if not isinstance(expected_types, tuple):
                expected_types = (expected_types,)
            if not isinstance(value, expected_types):
                result.add_issue(
                    f"{schema_name}.{name}",
                    f"Type mismatch: expected {expected_types}, got {type(value).__name__}",
                    ValidationSeverity.WARNING,
                    actual_value=type(value).__name__,
                )

        return result


# =============================================================================
# TIMESTAMPS
# =============================================================================

_COMPACT_FORMATS = [
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%Y%m%dT%H%M%S",
    "%d/%m/%Y",
]

_ISO_Z = re.compile(r"Z$")


class FreshnessValidator:
    """Timestamp parsing for the formats our sources emit"""

    @staticmethod
    def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
        """
        Parse an ISO-8601, RFC-822 (feed pubDate) or compact timestamp.

        Returns a timezone-aware UTC datetime, or None when unparsable.
        Naive values are assumed to be UTC.
        """
        if value is None:
            return None

        if isinstance(value, datetime):
            ts = value
        else:
            text = str(value).strip()
            if not text:
                return None

            ts = None
            try:
                ts = datetime.fromisoformat(_ISO_Z.sub("+00:00", text))
            except ValueError:
                pass

            if ts is None:
                try:
                    ts = parsedate_to_datetime(text)
                except (TypeError, ValueError, IndexError):
                    ts = None

            if ts is None:
                for fmt in _COMPACT_FORMATS:
                    try:
                        ts = datetime.strptime(text, fmt)
                        break
                    except ValueError:
                        continue

            if ts is None:
                return None

        if ts.tzinfo is None:
            return ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def validate_article_batch(
    articles: List[Any],
    schema: Dict[str, Any] = NEWS_SEARCH_ARTICLE_SCHEMA,
    schema_name: str = "article",
) -> Tuple[List[Dict[str, Any]], ValidationResult]:
    """
    Split a payload list into usable articles and an aggregated result.

    Only entries that are not mappings are dropped. Articles with missing
    fields are kept; callers substitute defaults.
    """
    usable = []
    batch_result = ValidationResult(valid=True)

    for i, article in enumerate(articles or []):
        result = SchemaValidator.validate_schema(article, schema, f"{schema_name}[{i}]")
        if not isinstance(article, dict):
            batch_result.merge(result)
            continue
        for issue in result.issues:
            # a malformed article is recoverable, so downgrade to a warning
            batch_result.add_issue(issue.field, issue.message, ValidationSeverity.WARNING, issue.actual_value)
        usable.append(article)

    batch_result.metadata = {
        "total": len(articles or []),
        "usable": len(usable),
        "dropped": len(articles or []) - len(usable),
    }
    return usable, batch_result
