"""Declarative achievement requirements as explicit predicate variants.

A definition stores its requirement as a JSON object such as
``{"min_classifications": 20, "min_accuracy": 90, "time_window": 1}``.
``parse_requirements`` turns that object into one predicate per present key;
each predicate is checked independently against an ``AccountStats`` snapshot.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from wastewise.classification.history import WASTE_CATEGORIES
from wastewise.errors import ValidationError


@dataclass(frozen=True)
class AccountStats:
    """Read-only snapshot of the facts requirements are checked against."""

    net_score: int = 0
    classification_count: int = 0
    accuracy: float = 0.0
    consecutive_days: int = 0
    correct_categories: frozenset[str] = frozenset()
    window_counts: Mapping[int, int] = field(default_factory=dict)


class Predicate(Protocol):
    def check(self, stats: AccountStats) -> str | None:
        """Return None when satisfied, otherwise a "needs X, has Y" message."""
        ...


def _fmt_percent(value: float) -> str:
    return f"{value:g}"


@dataclass(frozen=True)
class MinScore:
    threshold: int

    def check(self, stats: AccountStats) -> str | None:
        if stats.net_score >= self.threshold:
            return None
        return f"needs {self.threshold} points, has {stats.net_score}"


@dataclass(frozen=True)
class MinAccuracy:
    threshold: float

    def check(self, stats: AccountStats) -> str | None:
        if stats.accuracy >= self.threshold:
            return None
        return f"needs {_fmt_percent(self.threshold)}% accuracy, has {_fmt_percent(stats.accuracy)}%"


@dataclass(frozen=True)
class MinClassifications:
    threshold: int

    def check(self, stats: AccountStats) -> str | None:
        if stats.classification_count >= self.threshold:
            return None
        return f"needs {self.threshold} classifications, has {stats.classification_count}"


@dataclass(frozen=True)
class ConsecutiveDays:
    days: int

    def check(self, stats: AccountStats) -> str | None:
        if stats.consecutive_days >= self.days:
            return None
        return f"needs {self.days} consecutive active days, has {stats.consecutive_days}"


@dataclass(frozen=True)
class SpecificCategories:
    categories: tuple[str, ...]

    def check(self, stats: AccountStats) -> str | None:
        missing = [c for c in self.categories if c not in stats.correct_categories]
        if not missing:
            return None
        return f"needs correct classifications in: {', '.join(missing)}"


@dataclass(frozen=True)
class TimeWindow:
    """``count`` correct classifications inside some span of ``hours`` hours."""

    hours: int
    count: int = 1

    def check(self, stats: AccountStats) -> str | None:
        best = stats.window_counts.get(self.hours, 0)
        if best >= self.count:
            return None
        return f"needs {self.count} correct classifications within {self.hours}h, has {best}"


REQUIREMENT_KEYS: tuple[str, ...] = (
    "min_score",
    "min_accuracy",
    "min_classifications",
    "consecutive_days",
    "specific_categories",
    "time_window",
)


def _non_negative_int(key: str, value: Any) -> int:  # noqa: ANN401
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"Requirement {key} must be a non-negative integer", field=key)
    return value


def parse_requirements(requirement: Mapping[str, Any] | None) -> list[Predicate]:
    """Build the predicate list for a requirement object.

    Unknown keys and ill-typed values raise ValidationError, so definitions
    are validated once at write time rather than silently ignored at read time.
    """
    if not requirement:
        return []
    if not isinstance(requirement, Mapping):
        raise ValidationError("Requirement must be an object")

    unknown = set(requirement) - set(REQUIREMENT_KEYS)
    if unknown:
        raise ValidationError(f"Unknown requirement keys: {', '.join(sorted(unknown))}")

    predicates: list[Predicate] = []
    if "min_score" in requirement:
        predicates.append(MinScore(_non_negative_int("min_score", requirement["min_score"])))

    if "min_accuracy" in requirement:
        value = requirement["min_accuracy"]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 100:
            raise ValidationError("Requirement min_accuracy must be between 0 and 100", field="min_accuracy")
        predicates.append(MinAccuracy(float(value)))

    if "min_classifications" in requirement:
        predicates.append(
            MinClassifications(_non_negative_int("min_classifications", requirement["min_classifications"]))
        )

    if "consecutive_days" in requirement:
        predicates.append(ConsecutiveDays(_non_negative_int("consecutive_days", requirement["consecutive_days"])))

    if "specific_categories" in requirement:
        value = requirement["specific_categories"]
        if not isinstance(value, (list, tuple)) or not value:
            raise ValidationError("Requirement specific_categories must be a non-empty list", field="specific_categories")
        invalid = [c for c in value if c not in WASTE_CATEGORIES]
        if invalid:
            raise ValidationError(f"Unknown waste categories: {', '.join(map(str, invalid))}", field="specific_categories")
        predicates.append(SpecificCategories(tuple(value)))

    if "time_window" in requirement:
        hours = _non_negative_int("time_window", requirement["time_window"])
        if hours == 0:
            raise ValidationError("Requirement time_window must be at least 1 hour", field="time_window")
        predicates.append(TimeWindow(hours=hours, count=max(1, int(requirement.get("min_classifications", 1)))))

    return predicates


def window_hours(requirement: Mapping[str, Any] | None) -> set[int]:
    """Sliding-window sizes a requirement needs in its stats snapshot."""
    return {p.hours for p in parse_requirements(requirement) if isinstance(p, TimeWindow)}
