"""Retention policy table: which audit events expire after how many days."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import and_, not_, or_
from sqlalchemy.sql.elements import ColumnElement

from app.config import Settings
from app.models.audit import AuditEvent

logger = logging.getLogger(__name__)

DEFAULT_PATTERN = "DEFAULT"

FALLBACK_RETENTION_POLICIES: Dict[str, int] = {
    "LOGIN": 180,
    "LOGOUT": 90,
    "REGISTER": 365,
    "PROFILE_UPDATED": 365,
    "BOOK_CREATED": 730,
    "BOOK_DELETED": 730,
    "BOOK_DOWNLOADED": 90,
    "BOOK_VIEWED": 30,
    "FAVORITE_ADDED": 90,
    "FAVORITE_REMOVED": 90,
    "UNAUTHORIZED_ACCESS": 365,
    "RATE_LIMIT_EXCEEDED": 90,
    "SYSTEM_ERROR": 365,
    DEFAULT_PATTERN: 180,
}


def _action_contains(pattern: str) -> ColumnElement:
    # Case-insensitive on every backend. LIKE treats "_" as a wildcard and
    # action tags are full of underscores.
    return AuditEvent.action.icontains(pattern, autoescape=True)


@dataclass(frozen=True)
class PolicyRule:
    pattern: str
    retention_days: int

    def cutoff(self, now: datetime) -> datetime:
        return now - timedelta(days=self.retention_days)


class RetentionPolicy:
    """
    Ordered ``pattern -> days`` table with a ``DEFAULT`` entry.

    Patterns match actions by case-insensitive substring. Each action belongs to exactly one
    rule: the longest specific pattern it contains (first in table order on
    ties), or ``DEFAULT`` when it contains none.
    """

    def __init__(self, policies: Mapping[str, int], default_days: int = 180) -> None:
        specific = [(p, int(d)) for p, d in policies.items() if p != DEFAULT_PATTERN]
        self.default_days = int(policies.get(DEFAULT_PATTERN, default_days))
        # Stable sort keeps table order among equal lengths.
        self._ranked: List[PolicyRule] = [
            PolicyRule(p, d) for p, d in sorted(specific, key=lambda item: -len(item[0]))
        ]
        self._table: Dict[str, int] = dict(specific)
        self._table[DEFAULT_PATTERN] = self.default_days

    @property
    def patterns(self) -> List[str]:
        return [rule.pattern for rule in self._ranked]

    def rules(self) -> List[PolicyRule]:
        """Specific rules in table order, then ``DEFAULT`` last."""
        ordered = [PolicyRule(p, d) for p, d in self._table.items() if p != DEFAULT_PATTERN]
        ordered.append(PolicyRule(DEFAULT_PATTERN, self.default_days))
        return ordered

    def as_dict(self) -> Dict[str, int]:
        return dict(self._table)

    def resolve(self, action: str) -> str:
        """Return the pattern that governs ``action``."""
        for rule in self._ranked:
            if rule.pattern.lower() in action.lower():
                return rule.pattern
        return DEFAULT_PATTERN

    def match_clause(self, pattern: str) -> ColumnElement:
        """SQL filter selecting exactly the actions governed by ``pattern``."""
        if pattern == DEFAULT_PATTERN:
            if not self._ranked:
                return AuditEvent.action.isnot(None)
            return not_(or_(*[_action_contains(rule.pattern) for rule in self._ranked]))

        position = self.patterns.index(pattern)
        stronger = [_action_contains(rule.pattern) for rule in self._ranked[:position]]
        clause = _action_contains(pattern)
        if stronger:
            clause = and_(clause, not_(or_(*stronger)))
        return clause


def _coerce_policies(raw: Mapping[str, Any], source: str) -> Dict[str, int]:
    policies: Dict[str, int] = {}
    for key, value in raw.items():
        pattern = str(key).strip()
        try:
            days = int(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring retention policy %s=%r from %s: not an integer", pattern, value, source)
            continue
        if not pattern or days < 0:
            logger.warning("Ignoring retention policy %s=%r from %s", pattern, value, source)
            continue
        policies[pattern] = days
    return policies


def _read_policy_file(path: str) -> Optional[Dict[str, Any]]:
    policy_file = Path(path)
    if not policy_file.is_file():
        logger.warning("Retention policy file %s not found", policy_file)
        return None
    try:
        data = json.loads(policy_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Retention policy file %s unreadable: %s", policy_file, exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Retention policy file %s must hold a JSON object", policy_file)
        return None
    return data


def load_retention_policy(config: Optional[Settings] = None) -> RetentionPolicy:
    """
    Build the policy table from current configuration.

    A fresh ``Settings`` is read on every call so edits to the environment,
    ``.env`` or the policy file apply on the next cleanup cycle.
    """
    config = config or Settings()
    policies: Dict[str, int] = {}

    if config.AUDIT_RETENTION_POLICY_FILE:
        raw = _read_policy_file(config.AUDIT_RETENTION_POLICY_FILE)
        if raw:
            policies = _coerce_policies(raw, config.AUDIT_RETENTION_POLICY_FILE)

    if not policies and config.AUDIT_RETENTION_POLICIES:
        policies = _coerce_policies(config.AUDIT_RETENTION_POLICIES, "AUDIT_RETENTION_POLICIES")

    if not policies:
        logger.warning("No retention policies configured, using built-in defaults")
        policies = dict(FALLBACK_RETENTION_POLICIES)

    return RetentionPolicy(policies, default_days=config.AUDIT_DEFAULT_RETENTION_DAYS)


def summarize(stats: Mapping[str, int]) -> Tuple[int, str]:
    """Total and ``PATTERN: n`` breakdown text for cleanup audit messages."""
    total = sum(stats.values())
    return total, ", ".join(f"{pattern}: {count}" for pattern, count in stats.items())
