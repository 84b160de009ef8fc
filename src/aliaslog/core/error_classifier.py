"""
Error classification: buckets warning/error/critical entries into categories.

The rule table is configuration data (classification_rules.yaml), tested in
order; the first rule with any matching pattern claims the entry.
"""

import re
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Pattern

from .models import ISSUE_LEVELS, LogEntry, LogLevel
from .statistics import error_timeline, repeating_messages
from ..utils.config import ConfigManager, config as default_config
from ..utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

OTHER_CATEGORY = "Other"

PRIORITY_ORDER = {"CRITICAL": 4, "HIGH": 3, "MEDIUM": 2, "LOW": 1}

HIGH_IMPACT_CATEGORIES = {"Memory Issues", "Database Issues", "Application Errors"}
MEDIUM_IMPACT_CATEGORIES = {"Network Issues", "File System Issues"}


class Urgency(Enum):
    IMMEDIATE = "IMMEDIATE"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


URGENCY_ORDER = {Urgency.IMMEDIATE: 4, Urgency.HIGH: 3, Urgency.MEDIUM: 2, Urgency.LOW: 1}


class OverallStatus(Enum):
    CRITICAL = "CRITICAL"
    NEEDS_ATTENTION = "NEEDS_ATTENTION"
    HEALTHY = "HEALTHY"


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the rule table."""
    category: str
    patterns: List[Pattern]
    severity: str = "HIGH"

    def matches(self, message: str) -> bool:
        return any(pattern.search(message) for pattern in self.patterns)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassificationRule":
        try:
            category = data["category"]
            raw_patterns = data.get("patterns") or []
        except (KeyError, TypeError):
            raise ConfigurationError(f"Classification rule needs a 'category': {data!r}")

        try:
            patterns = [re.compile(p, re.IGNORECASE) for p in raw_patterns]
        except re.error as e:
            raise ConfigurationError(f"Invalid pattern in rule '{category}': {e}")

        return cls(category=category, patterns=patterns, severity=str(data.get("severity", "HIGH")).upper())


@dataclass(frozen=True)
class Remediation:
    """Static remediation text for a category."""
    priority: str = "LOW"
    common_causes: List[str] = field(default_factory=list)
    actions: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Remediation":
        return cls(
            priority=str(data.get("priority", "LOW")).upper(),
            common_causes=list(data.get("common_causes", [])),
            actions=list(data.get("actions", [])),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority,
            "commonCauses": list(self.common_causes),
            "actions": list(self.actions),
        }


@dataclass
class ClassificationReport:
    """Result of classifying a batch of entries."""
    categories: Dict[str, List[LogEntry]]
    most_common_category: Optional[str]
    has_critical: bool
    overall_status: OverallStatus
    urgency: Dict[str, Urgency]
    remediation: Dict[str, Remediation]
    total_issues: int = 0
    category_breakdown: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    severity_breakdown: Dict[str, int] = field(default_factory=dict)
    timeline: List[Dict[str, Any]] = field(default_factory=list)
    repeating: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    recommendations: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def critical_entries(self) -> List[LogEntry]:
        return [e for entries in self.categories.values() for e in entries if e.level is LogLevel.CRITICAL]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "totalIssues": self.total_issues,
                "totalCategories": len(self.categories),
                "mostCommonIssue": self.most_common_category,
                "criticalIssuesFound": self.has_critical,
                "overallStatus": self.overall_status.value,
                "severityBreakdown": dict(self.severity_breakdown),
            },
            "categoryBreakdown": self.category_breakdown,
            "urgency": {category: u.value for category, u in self.urgency.items()},
            "timeline": self.timeline,
            "repeatingErrors": self.repeating,
            "recommendations": self.recommendations,
        }


class ErrorClassifier:
    """
    Categorizes WARNING/ERROR/CRITICAL entries using an ordered rule table.

    Unmatched entries land in the "Other" bucket. Categories, patterns and
    remediation text come from configuration so they can be extended without
    code changes.
    """

    def __init__(
        self,
        rules: Optional[Iterable[ClassificationRule]] = None,
        solutions: Optional[Dict[str, Remediation]] = None,
        config_manager: Optional[ConfigManager] = None,
    ):
        cfg = config_manager or default_config
        if rules is None:
            rules = [ClassificationRule.from_dict(r) for r in cfg.get_classification_rules()]
        if solutions is None:
            solutions = {name: Remediation.from_dict(data or {}) for name, data in cfg.get_solutions().items()}

        self.rules: List[ClassificationRule] = list(rules)
        self.solutions: Dict[str, Remediation] = dict(solutions)
        logger.debug(f"ErrorClassifier loaded {len(self.rules)} rules")

    def categorize_entry(self, entry: LogEntry) -> Optional[str]:
        """Category for one entry, or None when its level is not an issue level."""
        if entry.level not in ISSUE_LEVELS:
            return None
        for rule in self.rules:
            if rule.matches(entry.message):
                return rule.category
        return OTHER_CATEGORY

    def annotate(self, entries: Iterable[LogEntry]) -> List[LogEntry]:
        """Return entries with ``category`` filled for issue-level entries."""
        annotated = []
        for entry in entries:
            category = self.categorize_entry(entry)
            annotated.append(entry.with_category(category) if category else entry)
        return annotated

    def categorize(self, entries: Iterable[LogEntry]) -> Dict[str, List[LogEntry]]:
        """
        Bucket issue-level entries by category.

        Buckets follow rule-table order with "Other" last; empty buckets
        are omitted.
        """
        buckets: Dict[str, List[LogEntry]] = {rule.category: [] for rule in self.rules}
        buckets[OTHER_CATEGORY] = []

        for entry in entries:
            category = self.categorize_entry(entry)
            if category is None:
                continue
            buckets.setdefault(category, []).append(entry.with_category(category))

        return {name: items for name, items in buckets.items() if items}

    @staticmethod
    def calculate_urgency(entries: List[LogEntry]) -> Urgency:
        critical_count = sum(1 for e in entries if e.level is LogLevel.CRITICAL)
        error_count = sum(1 for e in entries if e.level is LogLevel.ERROR)

        if critical_count > 0:
            return Urgency.IMMEDIATE
        if error_count > 10:
            return Urgency.HIGH
        if error_count > 5:
            return Urgency.MEDIUM
        return Urgency.LOW

    @staticmethod
    def assess_impact(category: str, count: int) -> str:
        if category in HIGH_IMPACT_CATEGORIES and count > 5:
            return "HIGH"
        if category in MEDIUM_IMPACT_CATEGORIES and count > 10:
            return "MEDIUM"
        return "LOW"

    def _severity_of(self, entry: LogEntry) -> str:
        for rule in self.rules:
            if rule.category == entry.category:
                return rule.severity
        return {
            LogLevel.CRITICAL: "CRITICAL",
            LogLevel.ERROR: "HIGH",
            LogLevel.WARNING: "MEDIUM",
        }.get(entry.level, "LOW")

    def classify(self, entries: Iterable[LogEntry]) -> ClassificationReport:
        """Categorize entries and build the full analysis report."""
        categories = self.categorize(entries)
        all_issues = [e for items in categories.values() for e in items]
        total = len(all_issues)

        most_common = None
        max_count = 0
        for name, items in categories.items():
            if len(items) > max_count:
                max_count = len(items)
                most_common = name

        has_critical = any(e.level is LogLevel.CRITICAL for e in all_issues)
        if has_critical:
            status = OverallStatus.CRITICAL
        elif categories:
            status = OverallStatus.NEEDS_ATTENTION
        else:
            status = OverallStatus.HEALTHY

        urgency = {name: self.calculate_urgency(items) for name, items in categories.items()}
        remediation = {name: self.solutions[name] for name in categories if name in self.solutions}

        severity_breakdown = {"CRITICAL": 0, "HIGH": 0, "MEDIUM": 0, "LOW": 0}
        for entry in all_issues:
            severity = self._severity_of(entry)
            severity_breakdown[severity] = severity_breakdown.get(severity, 0) + 1

        breakdown = {}
        for name, items in categories.items():
            breakdown[name] = {
                "errorCount": len(items),
                "percentage": round(len(items) / total * 100, 1) if total else 0.0,
                "samples": [
                    {
                        "message": e.message[:150] + ("..." if len(e.message) > 150 else ""),
                        "timestamp": e.timestamp.isoformat() if e.timestamp else None,
                        "level": e.level.value,
                        "lineNumber": e.line_number,
                    }
                    for e in items[:3]
                ],
            }

        report = ClassificationReport(
            categories=categories,
            most_common_category=most_common,
            has_critical=has_critical,
            overall_status=status,
            urgency=urgency,
            remediation=remediation,
            total_issues=total,
            category_breakdown=breakdown,
            severity_breakdown=severity_breakdown,
            timeline=error_timeline(all_issues),
            repeating=repeating_messages(all_issues),
        )
        report.recommendations = self.build_recommendations(report)
        return report

    def build_recommendations(self, report: ClassificationReport) -> List[Dict[str, Any]]:
        """Remediation for each category that has one, most pressing first."""
        recommendations = []
        for name, items in report.categories.items():
            solution = report.remediation.get(name)
            if solution is None:
                continue
            recommendations.append({
                "category": name,
                "priority": solution.priority,
                "errorCount": len(items),
                "commonCauses": list(solution.common_causes),
                "recommendedActions": list(solution.actions),
                "urgency": report.urgency[name].value,
                "impact": self.assess_impact(name, len(items)),
            })

        recommendations.sort(
            key=lambda r: (
                PRIORITY_ORDER.get(r["priority"], 1),
                URGENCY_ORDER[Urgency(r["urgency"])],
            ),
            reverse=True,
        )
        return recommendations
